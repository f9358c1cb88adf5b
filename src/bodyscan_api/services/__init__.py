"""Business logic services."""

from .photos import PhotoFetcher, get_photo_fetcher
from .pipeline import ScanPipeline
from .retry import RetryPolicy, is_transient

__all__ = [
    "PhotoFetcher",
    "RetryPolicy",
    "ScanPipeline",
    "get_photo_fetcher",
    "is_transient",
]
