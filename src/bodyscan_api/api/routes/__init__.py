"""API routes."""

from . import scans

__all__ = ["scans"]
