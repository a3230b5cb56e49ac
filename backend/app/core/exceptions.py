"""Custom exception classes for the application."""


class AlgumonCrawlerError(Exception):
    """Base exception for all crawler errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class FetchFailure(AlgumonCrawlerError):
    """Raised when a category page cannot be fetched or parsed."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"Fetch failed for category {category}: {message}")


class StoreFailure(AlgumonCrawlerError):
    """Raised when the backing store rejects a query or a write."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Store {operation} failed: {message}")


class CleanupFailure(StoreFailure):
    """Raised when retention cleanup fails. Never fails a cycle."""

    def __init__(self, message: str):
        super().__init__("cleanup", message)


class CycleInProgressError(AlgumonCrawlerError):
    """Raised when an ingestion cycle is started while another is running."""

    def __init__(self):
        super().__init__("An ingestion cycle is already running")
