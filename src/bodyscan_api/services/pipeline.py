"""
Daily scan pipeline orchestrator.

Runs QC -> Estimate -> Bind -> Delta -> Insight -> Publish for one scan,
persisting each stage's result on the scan before moving on. A stage whose
result is already stored is skipped, so re-invoking a failed or interrupted
run picks up where it stopped.

At most one run per (user, date) is active:
- within a process, callers share one asyncio.Task per instance key
- across processes, a lease in the run registry decides the owner and
  everyone else polls the scan until it settles
"""

import asyncio
import logging
import os
import socket
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Literal, TypeVar
from uuid import uuid4

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import (
    BusinessRejection,
    InvalidInputError,
    NotFoundError,
    PipelineError,
    StageCancelledError,
    TransientInfraError,
)
from bodyscan_api.db.stores import DayContextStore, PipelineRunStore, ScanStore
from bodyscan_api.models.pipeline import (
    CancelResponse,
    PipelineOutcome,
    RunStatus,
    instance_key,
)
from bodyscan_api.models.scan import (
    STAGE_ORDER,
    BodyEstimate,
    PipelineStage,
    Scan,
    ScanStatus,
)
from bodyscan_api.services.retry import RetryPolicy, is_transient
from bodyscan_api.services.stages import (
    BFEstimator,
    DeltaComparator,
    InsightWriter,
    MetaBinder,
    PrivacyPublisher,
    VisionQC,
)
from bodyscan_api.services.stages.delta_comparator import latest_per_date
from bodyscan_api.utils.dates import format_duration, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_REASON = "cancelled by operator"

# Status recorded once a stage's result is stored
DONE_STATUS = {
    PipelineStage.QC: ScanStatus.QC_PASSED,
    PipelineStage.ESTIMATE: ScanStatus.ESTIMATE_DONE,
    PipelineStage.BIND: ScanStatus.BIND_DONE,
    PipelineStage.DELTA: ScanStatus.DELTA_DONE,
    PipelineStage.INSIGHT: ScanStatus.INSIGHT_DONE,
    PipelineStage.PUBLISH: ScanStatus.COMPLETED,
}

# Status recorded while a long-running stage is in flight
IN_PROGRESS_STATUS = {
    PipelineStage.QC: ScanStatus.QC_IN_PROGRESS,
    PipelineStage.ESTIMATE: ScanStatus.ESTIMATE_IN_PROGRESS,
}

RUN_STATUS = {
    ScanStatus.COMPLETED: RunStatus.COMPLETED,
    ScanStatus.QC_FAILED: RunStatus.QC_FAILED,
}


class LeaseLostError(Exception):
    """Another worker took over the run after our lease expired."""


def resume_status(scan: Scan) -> ScanStatus:
    """Status matching the last stage whose result is stored."""
    if not scan.status.is_terminal:
        return scan.status
    for stage in reversed(STAGE_ORDER):
        if scan.has_result(stage):
            return DONE_STATUS[stage]
    return ScanStatus.CREATED


def default_owner() -> str:
    """Identifier for this worker in the run registry."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class ScanPipeline:
    """
    Orchestrates the daily scan stages.

    All collaborators are passed in; nothing here reaches for a global
    client, so the whole pipeline runs against in-memory stores in tests.
    """

    def __init__(
        self,
        scans: ScanStore,
        day_context: DayContextStore,
        runs: PipelineRunStore,
        *,
        vision_qc: VisionQC,
        bf_estimator: BFEstimator,
        meta_binder: MetaBinder,
        delta_comparator: DeltaComparator,
        insight_writer: InsightWriter,
        privacy_publisher: PrivacyPublisher,
        retry_policy: RetryPolicy | None = None,
        stage_timeout: float | None = 300.0,
        lease_seconds: int = 900,
        attach_poll_interval: float = 2.0,
        attach_timeout: float = 600.0,
        insight_failure_policy: Literal["degrade", "fail"] = "degrade",
        owner: str | None = None,
    ):
        self.scans = scans
        self.day_context = day_context
        self.runs = runs
        self.vision_qc = vision_qc
        self.bf_estimator = bf_estimator
        self.meta_binder = meta_binder
        self.delta_comparator = delta_comparator
        self.insight_writer = insight_writer
        self.privacy_publisher = privacy_publisher
        self.retry = retry_policy or RetryPolicy()
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        self.stage_timeout = stage_timeout
        self.lease_seconds = lease_seconds
        self.attach_poll_interval = attach_poll_interval
        self.attach_timeout = attach_timeout
        self.insight_failure_policy = insight_failure_policy
        self.owner = owner or default_owner()
        self._tasks: dict[str, asyncio.Task[PipelineOutcome]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scans: ScanStore,
        day_context: DayContextStore,
        runs: PipelineRunStore,
        **stages,
    ) -> "ScanPipeline":
        """Build a pipeline with retry, timeout and lease values from settings."""
        return cls(
            scans,
            day_context,
            runs,
            retry_policy=RetryPolicy.from_settings(settings),
            stage_timeout=settings.stage_timeout_seconds,
            lease_seconds=settings.lease_seconds,
            attach_poll_interval=settings.attach_poll_interval,
            attach_timeout=settings.attach_timeout_seconds,
            insight_failure_policy=settings.insight_failure_policy,
            **stages,
        )

    # =========================================================================
    # Entry points
    # =========================================================================

    async def process_scan(
        self,
        user_id: str,
        date: str,
        scan_id: str,
        wait: bool = True,
    ) -> PipelineOutcome:
        """
        Start, resume or attach to the pipeline for a user's scan day.

        Args:
            user_id: Scan owner
            date: Scan day (YYYY-MM-DD)
            scan_id: Scan to process
            wait: Await the final outcome; False returns once the run is started

        Returns:
            PipelineOutcome (final when `wait`, otherwise possibly in progress)

        Raises:
            InvalidInputError: Unknown scan, wrong owner/date, or no photos
        """
        scan = await self._load_scan(user_id, date, scan_id)
        key = instance_key(user_id, date)

        if scan.status in (ScanStatus.COMPLETED, ScanStatus.QC_FAILED):
            logger.info(f"Run {key} already finished ({scan.status.value})")
            return PipelineOutcome.from_scan(scan)

        # No await between lookup and registration, so concurrent callers in
        # this process always share one task
        task = self._tasks.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._claim_and_run(key, scan), name=key)
            self._tasks[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.info(f"Attaching to in-flight run {key}")

        if not wait:
            return PipelineOutcome(
                instance_key=key,
                status=resume_status(scan),
                scan=scan,
                message="Daily scan processing in progress",
            )

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The run was cancelled by an operator, not this caller
            if not task.cancelled():
                raise
            return PipelineOutcome.from_scan(await self.scans.get(scan_id))

    async def get_outcome(self, user_id: str, date: str) -> PipelineOutcome:
        """
        Current outcome for a user's scan day.

        Raises:
            NotFoundError: The user has no scan on that date
        """
        scan = await self.scans.get_by_subject(user_id, date)
        if scan is None:
            raise NotFoundError("Scan", f"{user_id}/{date}")
        return PipelineOutcome.from_scan(scan)

    async def cancel(self, user_id: str, date: str) -> CancelResponse:
        """
        Cancel the active run for a user's scan day.

        The run stops before its next stage (or immediately if it runs in
        this process) and is recorded as failed; re-invoking resumes it.

        Raises:
            NotFoundError: No run is active for that key
        """
        key = instance_key(user_id, date)
        requested = await self.runs.request_cancel(key)

        task = self._tasks.get(key)
        local = task is not None and not task.done()
        if local:
            task.cancel()

        if not requested and not local:
            raise NotFoundError("Pipeline run", key)

        logger.info(f"Cancellation requested for {key} (local task: {local})")
        return CancelResponse(
            instance_key=key,
            cancel_requested=requested,
            local_task_cancelled=local,
        )

    async def resume_stalled(self, stale_after: timedelta) -> int:
        """
        Restart runs that stopped progressing (e.g. their worker died).

        Args:
            stale_after: How long a non-terminal scan may sit untouched

        Returns:
            Number of scans handed back to the pipeline
        """
        stalled = await self.scans.list_stalled(utc_now() - stale_after)
        resumed = 0
        for scan in stalled:
            try:
                await self.process_scan(scan.user_id, scan.date, scan.scan_id, wait=False)
                resumed += 1
            except PipelineError as e:
                logger.warning(f"Could not resume scan {scan.scan_id}: {e.message}")
        if stalled:
            logger.info(f"Resumed {resumed}/{len(stalled)} stalled scans")
        return resumed

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    async def _load_scan(self, user_id: str, date: str, scan_id: str) -> Scan:
        scan = await self.scans.get(scan_id)
        if scan is None:
            raise InvalidInputError(f"Scan '{scan_id}' not found", details={"scan_id": scan_id})
        if scan.user_id != user_id or scan.date != date:
            raise InvalidInputError(
                f"Scan '{scan_id}' does not belong to {user_id} on {date}",
                details={"scan_id": scan_id, "user_id": user_id, "date": date},
            )
        if scan.angle_urls.is_empty:
            raise InvalidInputError(
                f"Scan '{scan_id}' has no uploaded photos",
                details={"scan_id": scan_id},
            )
        return scan

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Fire-and-forget runs have no awaiter to collect the error
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Run {key} ended with an error: {task.exception()!r}")

    async def _claim(self, key: str, scan: Scan) -> bool:
        return await self.runs.claim(
            key,
            scan_id=scan.scan_id,
            user_id=scan.user_id,
            date=scan.date,
            owner=self.owner,
            lease_seconds=self.lease_seconds,
        )

    async def _claim_and_run(self, key: str, scan: Scan) -> PipelineOutcome:
        if not await self._claim(key, scan):
            return await self._attach(key, scan)
        try:
            return await self._run(key, scan)
        except LeaseLostError:
            logger.warning(f"Lost lease on {key}, attaching to the new owner")
            return await self._attach(key, scan)

    async def _attach(self, key: str, scan: Scan) -> PipelineOutcome:
        """Wait for another worker's run, taking over if its lease lapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.attach_timeout

        while True:
            current = await self.scans.get(scan.scan_id) or scan
            if current.status.is_terminal:
                return PipelineOutcome.from_scan(current)

            if await self._claim(key, current):
                logger.info(f"Took over run {key} after its lease expired")
                return await self._run(key, current)

            if loop.time() >= deadline:
                logger.info(f"Stopped waiting on {key}, still in progress")
                return PipelineOutcome(
                    instance_key=key,
                    status=current.status,
                    scan=current,
                    message="Daily scan processing in progress",
                )
            await asyncio.sleep(self.attach_poll_interval)

    async def _run(self, key: str, scan: Scan) -> PipelineOutcome:
        """Execute the stages while holding the lease, then release it."""
        started = asyncio.get_running_loop().time()
        final_status = RunStatus.FAILED
        heartbeat = asyncio.create_task(self._heartbeat(key), name=f"{key}-lease")
        try:
            outcome = await self._execute(key, scan)
            final_status = RUN_STATUS.get(outcome.status, RunStatus.FAILED)
            return outcome
        finally:
            heartbeat.cancel()
            if heartbeat.done() and not heartbeat.cancelled() and heartbeat.exception():
                logger.warning(f"Lease heartbeat for {key} stopped: {heartbeat.exception()!r}")
            await self.runs.release(key, self.owner, final_status)
            elapsed = asyncio.get_running_loop().time() - started
            logger.info(f"Run {key} finished as {final_status.value} in {format_duration(elapsed)}")

    async def _execute(self, key: str, scan: Scan) -> PipelineOutcome:
        scan_id = scan.scan_id
        logger.info(f"Starting run {key} for scan {scan_id} (status={scan.status.value})")

        stage = STAGE_ORDER[0]
        try:
            await self.scans.mark_processing_started(scan_id)
            if scan.status == ScanStatus.FAILED:
                await self.scans.mark_resumed(scan_id, resume_status(scan))

            for stage in STAGE_ORDER:
                if scan.has_result(stage):
                    logger.debug(f"Scan {scan_id}: {stage.value} already stored, skipping")
                    if stage == PipelineStage.QC and not scan.qc.passed:
                        await self.scans.mark_status(scan_id, ScanStatus.QC_FAILED)
                        raise BusinessRejection(scan.qc.reasons)
                    continue

                await self._checkpoint(key, stage)
                scan = await self._run_stage(stage, scan)

        except BusinessRejection as e:
            logger.info(f"Scan {scan_id} rejected by QC: {e.message}")
        except LeaseLostError:
            raise
        except StageCancelledError:
            await self._fail(scan_id, stage, CANCELLED_REASON)
        except asyncio.CancelledError:
            # Local cancel() lands here; record it and hand back an outcome
            logger.info(f"Run {key} cancelled during {stage.value}")
            await self._fail(scan_id, stage, CANCELLED_REASON)
        except PipelineError as e:
            await self._fail(scan_id, stage, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error in stage '{stage.value}' of {key}")
            await self._fail(scan_id, stage, f"unexpected error: {e}")
            raise

        final = await self.scans.get(scan_id)
        return PipelineOutcome.from_scan(final)

    async def _checkpoint(self, key: str, stage: PipelineStage) -> None:
        """Between stages: honour cancellation and extend the lease."""
        if await self.runs.is_cancel_requested(key):
            raise StageCancelledError(stage=stage.value)
        if not await self.runs.renew(key, self.owner, self.lease_seconds):
            raise LeaseLostError(key)

    async def _heartbeat(self, key: str) -> None:
        """Keep the lease alive while a stage is in flight."""
        interval = self.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.runs.renew(key, self.owner, self.lease_seconds)
            except Exception as e:
                if not is_transient(e):
                    raise
                logger.warning(f"Lease renewal for {key} failed, retrying: {e}")
                continue
            if not renewed:
                # The next checkpoint raises LeaseLostError
                logger.warning(f"Lease on {key} could not be renewed")
                return

    async def _fail(self, scan_id: str, stage: PipelineStage, reason: str) -> None:
        logger.error(f"Scan {scan_id} failed at {stage.value}: {reason}")
        await self.scans.mark_failed(scan_id, stage, reason)

    # =========================================================================
    # Stages
    # =========================================================================

    async def _call(self, stage: PipelineStage, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a stage call under the retry policy and stage timeout."""
        return await self.retry.run(operation, stage=stage.value, timeout=self.stage_timeout)

    async def _store(self, stage: PipelineStage, scan_id: str, result: dict) -> Scan:
        """Persist a stage result (write-once) and reload the scan."""
        await self.retry.run(
            lambda: self.scans.apply_stage_result(scan_id, stage, result, DONE_STATUS[stage]),
            stage=stage.value,
        )
        return await self.scans.get(scan_id)

    async def _run_stage(self, stage: PipelineStage, scan: Scan) -> Scan:
        logger.info(f"Scan {scan.scan_id}: running {stage.value}")

        if stage in IN_PROGRESS_STATUS:
            await self.scans.mark_status(scan.scan_id, IN_PROGRESS_STATUS[stage])

        match stage:
            case PipelineStage.QC:
                qc = await self._call(stage, lambda: self.vision_qc.check_quality(scan.angle_urls))
                await self.retry.run(
                    lambda: self.scans.apply_stage_result(
                        scan.scan_id,
                        stage,
                        qc.model_dump(mode="json"),
                        ScanStatus.QC_PASSED if qc.passed else ScanStatus.QC_FAILED,
                    ),
                    stage=stage.value,
                )
                if not qc.passed:
                    raise BusinessRejection(qc.reasons)
                return await self.scans.get(scan.scan_id)

            case PipelineStage.ESTIMATE:
                prior = await self._prior_estimate(scan)
                profile = await self.day_context.get_user_profile(scan.user_id)
                estimate = await self._call(
                    stage,
                    lambda: self.bf_estimator.estimate(
                        scan.angle_urls,
                        prior_estimate=prior,
                        weight_lb=scan.weight_lb,
                        profile=profile,
                    ),
                )
                return await self._store(stage, scan.scan_id, estimate.model_dump(mode="json"))

            case PipelineStage.BIND:
                context = await self._call(
                    stage,
                    lambda: self.meta_binder.bind_context(scan.user_id, scan.date, scan.estimate),
                )
                return await self._store(stage, scan.scan_id, context.model_dump(mode="json"))

            case PipelineStage.DELTA:
                deltas = await self._call(
                    stage,
                    lambda: self.delta_comparator.compute_deltas(
                        scan.user_id, scan.date, scan.estimate
                    ),
                )
                return await self._store(stage, scan.scan_id, deltas.model_dump(mode="json"))

            case PipelineStage.INSIGHT:
                try:
                    insight = await self._call(
                        stage,
                        lambda: self.insight_writer.write_insight(
                            scan.estimate, scan.deltas, scan.context
                        ),
                    )
                except TransientInfraError as e:
                    if self.insight_failure_policy != "degrade":
                        raise
                    logger.warning(f"Insight for {scan.scan_id} degraded to template: {e.message}")
                    insight = self.insight_writer.fallback(scan.estimate, scan.deltas, scan.context)
                return await self._store(stage, scan.scan_id, insight.model_dump(mode="json"))

            case PipelineStage.PUBLISH:
                view = await self._call(
                    stage, lambda: self.privacy_publisher.publish(scan.user_id, scan)
                )
                await self.retry.run(
                    lambda: self.scans.publish(scan.scan_id, view.to_document()),
                    stage=stage.value,
                )
                return await self.scans.get(scan.scan_id)

        raise ValueError(f"Unknown stage: {stage}")

    async def _prior_estimate(self, scan: Scan) -> BodyEstimate | None:
        history = await self.scans.list_completed_before(scan.user_id, scan.date, limit=5)
        for previous in latest_per_date(history):
            if previous.estimate is not None:
                return previous.estimate
        return None
