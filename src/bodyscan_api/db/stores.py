"""
Store interfaces used by the scan pipeline.

The pipeline only depends on these abstract contracts. MongoDB-backed
implementations live in `db.repositories`; tests supply in-memory ones.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from bodyscan_api.models.pipeline import PipelineRun, RunStatus
from bodyscan_api.models.scan import (
    CreateScanInput,
    DayLog,
    PipelineStage,
    Scan,
    ScanStatus,
    UserProfile,
)


class ScanStore(ABC):
    """
    Single writer of durable scan state.

    Writes are "apply result of stage X" updates touching one field group;
    there is no full-document overwrite.
    """

    @abstractmethod
    async def get(self, scan_id: str) -> Scan | None:
        """Fetch a scan by id."""
        ...

    @abstractmethod
    async def get_by_subject(self, user_id: str, date: str) -> Scan | None:
        """Fetch the most recently updated scan for a user's day."""
        ...

    @abstractmethod
    async def create(self, data: CreateScanInput, scan_id: str | None = None) -> Scan:
        """Register a scan whose photos are already uploaded."""
        ...

    @abstractmethod
    async def apply_stage_result(
        self,
        scan_id: str,
        stage: PipelineStage,
        result: dict[str, Any],
        status: ScanStatus,
    ) -> bool:
        """
        Write a stage result into its field, only if that field is empty.

        Returns:
            True if written, False if the field already held a value
        """
        ...

    @abstractmethod
    async def mark_status(self, scan_id: str, status: ScanStatus) -> None:
        """Record a status transition."""
        ...

    @abstractmethod
    async def mark_resumed(self, scan_id: str, status: ScanStatus) -> None:
        """Restore a failed scan to `status` and clear its failure fields."""
        ...

    @abstractmethod
    async def mark_processing_started(self, scan_id: str) -> None:
        """Stamp `processing_started_at` the first time a run touches the scan."""
        ...

    @abstractmethod
    async def mark_failed(self, scan_id: str, stage: PipelineStage, reason: str) -> None:
        """Record Failed(stage, reason), leaving partial results in place."""
        ...

    @abstractmethod
    async def publish(self, scan_id: str, view: dict[str, Any]) -> bool:
        """Write the published view and flip status to completed in one update."""
        ...

    @abstractmethod
    async def list_completed_before(
        self,
        user_id: str,
        date: str,
        limit: int = 90,
    ) -> list[Scan]:
        """Completed scans strictly before `date`, newest first."""
        ...

    @abstractmethod
    async def list_stalled(self, older_than: datetime, limit: int = 50) -> list[Scan]:
        """Non-terminal scans not updated since `older_than`."""
        ...


class DayContextStore(ABC):
    """Read-only lookups of the user's day log and profile."""

    @abstractmethod
    async def get_day_log(self, user_id: str, date: str) -> DayLog | None:
        ...

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        ...


class PipelineRunStore(ABC):
    """Registry of pipeline runs keyed by instance key."""

    @abstractmethod
    async def claim(
        self,
        key: str,
        *,
        scan_id: str,
        user_id: str,
        date: str,
        owner: str,
        lease_seconds: int,
    ) -> bool:
        """
        Atomically take ownership of a run.

        Succeeds when no run exists, the previous run finished, its lease
        expired, or `owner` already holds it.
        """
        ...

    @abstractmethod
    async def renew(self, key: str, owner: str, lease_seconds: int) -> bool:
        """Extend the lease held by `owner`."""
        ...

    @abstractmethod
    async def release(self, key: str, owner: str, status: RunStatus) -> None:
        """Finish the run held by `owner` with a final status."""
        ...

    @abstractmethod
    async def get(self, key: str) -> PipelineRun | None:
        ...

    @abstractmethod
    async def request_cancel(self, key: str) -> bool:
        """Flag a running run for cancellation. Returns False if none is running."""
        ...

    @abstractmethod
    async def is_cancel_requested(self, key: str) -> bool:
        ...
