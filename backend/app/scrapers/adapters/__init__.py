"""Listing source implementations.

Each adapter module implements a class inheriting from BaseListingSource.
"""

from .algumon import AlgumonAdapter

__all__ = [
    "AlgumonAdapter",
]
