"""Health check schemas."""

from typing import Dict

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    cache_size: int = 0
    scheduler: str = "disabled"
    services: Dict[str, str] = {}
