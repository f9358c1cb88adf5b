"""Repository classes for database access."""

from .day_context import DayContextRepository
from .pipeline_runs import PipelineRunRepository
from .scans import ScanRepository

__all__ = ["DayContextRepository", "PipelineRunRepository", "ScanRepository"]
