"""Database layer."""

from .mongo import MongoDB
from .stores import DayContextStore, PipelineRunStore, ScanStore
from .unit_of_work import UnitOfWork

__all__ = [
    "DayContextStore",
    "MongoDB",
    "PipelineRunStore",
    "ScanStore",
    "UnitOfWork",
]
