"""Unit of Work pattern for managing repository access."""

from motor.motor_asyncio import AsyncIOMotorDatabase

from .repositories.day_context import DayContextRepository
from .repositories.pipeline_runs import PipelineRunRepository
from .repositories.scans import ScanRepository


class UnitOfWork:
    """
    Unit of Work pattern implementation.

    Groups repository access and provides a single injection point for
    services.

    Usage:
        uow = UnitOfWork(db)
        scan = await uow.scans.get(scan_id)
        day_log = await uow.day_context.get_day_log(user_id, date)
    """

    SCANS_COLLECTION = "scans"
    DAY_LOGS_COLLECTION = "day_logs"
    USERS_COLLECTION = "users"
    PIPELINE_RUNS_COLLECTION = "pipeline_runs"

    def __init__(self, db: AsyncIOMotorDatabase):
        """
        Initialize Unit of Work with database instance.

        Args:
            db: Motor database instance
        """
        self._db = db
        self._scans: ScanRepository | None = None
        self._day_context: DayContextRepository | None = None
        self._pipeline_runs: PipelineRunRepository | None = None

    @property
    def scans(self) -> ScanRepository:
        """
        Get Scan repository (lazy loaded).

        Returns:
            ScanRepository instance
        """
        if self._scans is None:
            self._scans = ScanRepository(self._db[self.SCANS_COLLECTION])
        return self._scans

    @property
    def day_context(self) -> DayContextRepository:
        """
        Get day-log / profile repository (lazy loaded).

        Returns:
            DayContextRepository instance
        """
        if self._day_context is None:
            self._day_context = DayContextRepository(
                self._db[self.DAY_LOGS_COLLECTION],
                self._db[self.USERS_COLLECTION],
            )
        return self._day_context

    @property
    def pipeline_runs(self) -> PipelineRunRepository:
        """
        Get pipeline run registry (lazy loaded).

        Returns:
            PipelineRunRepository instance
        """
        if self._pipeline_runs is None:
            self._pipeline_runs = PipelineRunRepository(
                self._db[self.PIPELINE_RUNS_COLLECTION]
            )
        return self._pipeline_runs

    async def ensure_indexes(self) -> None:
        """Create indexes for every collection the pipeline writes."""
        await self.scans.ensure_indexes()
        await self.pipeline_runs.ensure_indexes()
