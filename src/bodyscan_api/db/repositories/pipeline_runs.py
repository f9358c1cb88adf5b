"""Repository for the pipeline run registry (one active run per user/day)."""

import logging
from datetime import timedelta

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from bodyscan_api.db.stores import PipelineRunStore
from bodyscan_api.models.pipeline import PipelineRun, RunStatus
from bodyscan_api.utils.dates import utc_now

from .base import BaseRepository

logger = logging.getLogger(__name__)


class PipelineRunRepository(BaseRepository[PipelineRun], PipelineRunStore):
    """
    Registry of pipeline runs keyed by instance key.

    The instance key (`daily-scan-{user_id}-{date}`) is the document `_id`,
    so MongoDB's unique `_id` index is the cross-process dedup mechanism:
    a conditional upsert either takes the run over or fails with a
    duplicate-key error because someone else holds a live lease.
    """

    model_class = PipelineRun

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def ensure_indexes(self) -> None:
        """Index for operator dashboards listing active runs."""
        await self.collection.create_index(
            [("status", 1), ("lease_expires_at", 1)],
            name="status_lease_idx",
        )

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
        Take ownership of the run for `key`.

        Args:
            key: Instance key
            scan_id: Scan being processed
            user_id: Subject user
            date: Subject day
            owner: Unique id of the claiming worker
            lease_seconds: Lease length; an expired lease may be taken over

        Returns:
            True if this worker now owns the run
        """
        now = utc_now()
        claimable = {
            "_id": key,
            "$or": [
                {"status": {"$ne": RunStatus.RUNNING.value}},
                {"lease_expires_at": {"$lt": now}},
                {"owner": owner},
            ],
        }
        try:
            await self.collection.find_one_and_update(
                claimable,
                {
                    "$set": {
                        "scan_id": scan_id,
                        "user_id": user_id,
                        "date": date,
                        "status": RunStatus.RUNNING.value,
                        "owner": owner,
                        "lease_expires_at": now + timedelta(seconds=lease_seconds),
                        "cancel_requested": False,
                        "updated_at": now,
                    },
                    "$inc": {"attempt_count": 1},
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            logger.info(f"Run {key} is held by another worker")
            return False
        return True

    async def renew(self, key: str, owner: str, lease_seconds: int) -> bool:
        """Extend the lease; False if `owner` no longer holds the run."""
        now = utc_now()
        return await self.update_where(
            {"_id": key, "owner": owner, "status": RunStatus.RUNNING.value},
            {"lease_expires_at": now + timedelta(seconds=lease_seconds)},
        )

    async def release(self, key: str, owner: str, status: RunStatus) -> None:
        """Finish the run with its final status and drop the lease."""
        await self.update_where(
            {"_id": key, "owner": owner},
            {"status": status.value, "lease_expires_at": None},
        )

    async def get(self, key: str) -> PipelineRun | None:
        """Get a run by instance key."""
        return await self.find_by_id(key)

    async def request_cancel(self, key: str) -> bool:
        """
        Flag a running run for cancellation.

        The owning worker checks the flag between stages.
        """
        return await self.update_where(
            {"_id": key, "status": RunStatus.RUNNING.value},
            {"cancel_requested": True},
        )

    async def is_cancel_requested(self, key: str) -> bool:
        doc = await self.collection.find_one(
            {"_id": key},
            projection={"cancel_requested": 1},
        )
        return bool(doc and doc.get("cancel_requested"))
