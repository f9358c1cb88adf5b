"""Repository for the scans collection (daily body scans + pipeline results)."""

import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorCollection

from bodyscan_api.db.stores import ScanStore
from bodyscan_api.models.scan import (
    CreateScanInput,
    PipelineStage,
    Scan,
    ScanStatus,
)
from bodyscan_api.utils.dates import utc_now

from .base import BaseRepository

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = [
    status.value for status in ScanStatus if not status.is_terminal
]


def generate_scan_id(date: str) -> str:
    """Scan ids embed the scan day for readability in the console."""
    return f"scn_{date}_{uuid4().hex[:12]}"


class ScanRepository(BaseRepository[Scan], ScanStore):
    """
    Repository for daily body scans.

    Stored in the `scans` collection with the scan id as `_id`. Each stage
    result field starts as null and is written at most once: the update
    filter requires the field to still be null, so a replayed stage can
    never clobber or duplicate an earlier result.
    """

    model_class = Scan

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def ensure_indexes(self) -> None:
        """
        Ensure required indexes exist on the collection.

        Should be called during application startup.
        """
        # Subject lookups and "previous completed scans" queries
        await self.collection.create_index(
            [("user_id", 1), ("date", -1), ("status", 1)],
            name="user_date_status_idx",
        )

        # Resume sweeper
        await self.collection.create_index(
            [("status", 1), ("updated_at", 1)],
            name="status_updated_idx",
        )

    async def get(self, scan_id: str) -> Scan | None:
        """
        Get scan by ID.

        Args:
            scan_id: The scan identifier

        Returns:
            Scan or None if not found
        """
        return await self.find_by_id(scan_id)

    async def get_by_subject(self, user_id: str, date: str) -> Scan | None:
        """
        Get the most recently updated scan for a user's day.

        Args:
            user_id: User identifier
            date: Scan day (YYYY-MM-DD)

        Returns:
            Scan or None if the user has no scan that day
        """
        return await self.find_one(
            {"user_id": user_id, "date": date},
            sort=[("updated_at", -1), ("_id", -1)],
        )

    async def create(self, data: CreateScanInput, scan_id: str | None = None) -> Scan:
        """
        Create a scan record after its photos are uploaded.

        Args:
            data: Caller-supplied scan fields
            scan_id: Optional explicit id (generated if omitted)

        Returns:
            The created Scan
        """
        scan_id = scan_id or generate_scan_id(data.date)
        now = utc_now()

        document = {
            "_id": scan_id,
            "user_id": data.user_id,
            "date": data.date,
            "angle_urls": data.angle_urls.model_dump(),
            "weight_lb": data.weight_lb,
            "notes": data.notes,
            # Results will be filled in stage by stage
            "qc": None,
            "estimate": None,
            "context": None,
            "deltas": None,
            "insight": None,
            "published_view": None,
            "status": ScanStatus.CREATED.value,
            "failed_stage": None,
            "error_message": None,
            "processing_started_at": None,
            "processing_completed_at": None,
            "created_at": now,
            "updated_at": now,
        }

        await self.insert_one(document)
        logger.info(f"Created scan {scan_id} for user={data.user_id} date={data.date}")
        return Scan.from_mongo(document)

    async def apply_stage_result(
        self,
        scan_id: str,
        stage: PipelineStage,
        result: dict[str, Any],
        status: ScanStatus,
    ) -> bool:
        """
        Write one stage's result into its field if the field is still empty.

        Args:
            scan_id: Scan identifier
            stage: Stage that produced the result
            result: Serialized stage output
            status: Status to record alongside the result

        Returns:
            True if written, False if an earlier run already wrote it
        """
        field = stage.scan_field
        written = await self.update_where(
            {"_id": scan_id, field: None},
            {field: result, "status": status.value},
        )
        if not written:
            logger.info(f"Scan {scan_id}: '{field}' already recorded, keeping existing value")
        return written

    async def mark_status(self, scan_id: str, status: ScanStatus) -> None:
        """Record a status transition."""
        await self.update_where({"_id": scan_id}, {"status": status.value})

    async def mark_resumed(self, scan_id: str, status: ScanStatus) -> None:
        """Re-open a failed scan; the stale failure is cleared in the same update."""
        await self.update_where(
            {"_id": scan_id},
            {"status": status.value, "failed_stage": None, "error_message": None},
        )

    async def mark_processing_started(self, scan_id: str) -> None:
        """Stamp the first processing start time; later runs keep it."""
        await self.update_where(
            {"_id": scan_id, "processing_started_at": None},
            {"processing_started_at": utc_now()},
        )

    async def mark_failed(self, scan_id: str, stage: PipelineStage, reason: str) -> None:
        """
        Record Failed(stage, reason).

        Partial results stay on the document so operators can see how far
        processing got.
        """
        await self.update_where(
            {"_id": scan_id},
            {
                "status": ScanStatus.FAILED.value,
                "failed_stage": stage.value,
                "error_message": reason,
            },
        )

    async def publish(self, scan_id: str, view: dict[str, Any]) -> bool:
        """
        Write the published view and complete the scan in a single update.

        A single-document `$set` is atomic, so readers see either no view
        (status not completed) or the full view with status completed.
        """
        return await self.update_where(
            {"_id": scan_id, "published_view": None},
            {
                "published_view": view,
                "status": ScanStatus.COMPLETED.value,
                "failed_stage": None,
                "error_message": None,
                "processing_completed_at": utc_now(),
            },
        )

    async def list_completed_before(
        self,
        user_id: str,
        date: str,
        limit: int = 90,
    ) -> list[Scan]:
        """
        Get completed scans strictly before a date, newest first.

        Args:
            user_id: User identifier
            date: Exclusive upper bound (YYYY-MM-DD)
            limit: Maximum scans to return

        Returns:
            List of Scan objects
        """
        return await self.find_many(
            filter={
                "user_id": user_id,
                "date": {"$lt": date},
                "status": ScanStatus.COMPLETED.value,
            },
            sort=[("date", -1), ("updated_at", -1)],
            limit=limit,
        )

    async def list_stalled(self, older_than: datetime, limit: int = 50) -> list[Scan]:
        """
        Get non-terminal scans that have not progressed since `older_than`.

        Args:
            older_than: Cutoff on `updated_at`
            limit: Maximum scans to return

        Returns:
            List of Scan objects, oldest first
        """
        return await self.find_many(
            filter={
                "status": {"$in": NON_TERMINAL_STATUSES},
                "updated_at": {"$lt": older_than},
            },
            sort=[("updated_at", 1)],
            limit=limit,
        )
