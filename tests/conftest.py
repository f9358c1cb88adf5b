"""Pytest configuration and fixtures."""

import io
from datetime import timedelta
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from bodyscan_api.db.stores import DayContextStore, PipelineRunStore, ScanStore
from bodyscan_api.models.pipeline import PipelineRun, RunStatus
from bodyscan_api.models.scan import (
    AngleUrls,
    BodyEstimate,
    CreateScanInput,
    DayLog,
    PipelineStage,
    QCResult,
    Scan,
    ScanStatus,
    UserProfile,
)
from bodyscan_api.services.pipeline import ScanPipeline
from bodyscan_api.services.retry import RetryPolicy
from bodyscan_api.services.stages import (
    DeltaComparator,
    InsightWriter,
    MetaBinder,
    PrivacyPublisher,
)
from bodyscan_api.utils.dates import utc_now

ALL_ANGLES = AngleUrls(
    front="https://cdn.example.com/u1/front.jpg",
    back="https://cdn.example.com/u1/back.jpg",
    left="https://cdn.example.com/u1/left.jpg",
    right="https://cdn.example.com/u1/right.jpg",
)


# =============================================================================
# In-memory stores
# =============================================================================


class InMemoryScanStore(ScanStore):
    """ScanStore over a dict, with the same write-once rules as MongoDB."""

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, str]] = []  # (scan_id, field)
        self._counter = 0

    def seed(self, scan_id: str | None = None, **fields: Any) -> Scan:
        """Insert a scan synchronously (test setup helper)."""
        self._counter += 1
        scan_id = scan_id or f"scn_{self._counter}"
        now = utc_now()
        data = {
            "scan_id": scan_id,
            "user_id": "u1",
            "date": "2025-01-10",
            "angle_urls": ALL_ANGLES,
            "created_at": now,
            "updated_at": now,
        }
        data.update(fields)
        scan = Scan.model_validate(data)
        self.docs[scan_id] = scan.model_dump()
        return scan

    def _touch(self, scan_id: str, fields: dict[str, Any]) -> None:
        doc = self.docs[scan_id]
        doc.update(fields)
        doc["updated_at"] = utc_now()

    async def get(self, scan_id: str) -> Scan | None:
        doc = self.docs.get(scan_id)
        return Scan.model_validate(doc) if doc else None

    async def get_by_subject(self, user_id: str, date: str) -> Scan | None:
        matches = [
            d for d in self.docs.values() if d["user_id"] == user_id and d["date"] == date
        ]
        if not matches:
            return None
        best = max(matches, key=lambda d: (d["updated_at"], d["scan_id"]))
        return Scan.model_validate(best)

    async def create(self, data: CreateScanInput, scan_id: str | None = None) -> Scan:
        return self.seed(scan_id, **data.model_dump())

    async def apply_stage_result(
        self,
        scan_id: str,
        stage: PipelineStage,
        result: dict[str, Any],
        status: ScanStatus,
    ) -> bool:
        doc = self.docs.get(scan_id)
        if doc is None or doc.get(stage.scan_field) is not None:
            return False
        self._touch(scan_id, {stage.scan_field: result, "status": status})
        self.writes.append((scan_id, stage.scan_field))
        return True

    async def mark_status(self, scan_id: str, status: ScanStatus) -> None:
        self._touch(scan_id, {"status": status})

    async def mark_resumed(self, scan_id: str, status: ScanStatus) -> None:
        self._touch(scan_id, {"status": status, "failed_stage": None, "error_message": None})

    async def mark_processing_started(self, scan_id: str) -> None:
        if self.docs[scan_id].get("processing_started_at") is None:
            self._touch(scan_id, {"processing_started_at": utc_now()})

    async def mark_failed(self, scan_id: str, stage: PipelineStage, reason: str) -> None:
        self._touch(
            scan_id,
            {"status": ScanStatus.FAILED, "failed_stage": stage, "error_message": reason},
        )

    async def publish(self, scan_id: str, view: dict[str, Any]) -> bool:
        if self.docs[scan_id].get("published_view") is not None:
            return False
        self._touch(
            scan_id,
            {
                "published_view": view,
                "status": ScanStatus.COMPLETED,
                "failed_stage": None,
                "error_message": None,
                "processing_completed_at": utc_now(),
            },
        )
        self.writes.append((scan_id, "published_view"))
        return True

    async def list_completed_before(self, user_id: str, date: str, limit: int = 90) -> list[Scan]:
        matches = [
            d for d in self.docs.values()
            if d["user_id"] == user_id and d["date"] < date and d["status"] == ScanStatus.COMPLETED
        ]
        matches.sort(key=lambda d: (d["date"], d["updated_at"]), reverse=True)
        return [Scan.model_validate(d) for d in matches[:limit]]

    async def list_stalled(self, older_than, limit: int = 50) -> list[Scan]:
        matches = [
            d for d in self.docs.values()
            if not ScanStatus(d["status"]).is_terminal and d["updated_at"] < older_than
        ]
        matches.sort(key=lambda d: d["updated_at"])
        return [Scan.model_validate(d) for d in matches[:limit]]


class InMemoryDayContextStore(DayContextStore):
    """Day logs and profiles held in dicts."""

    def __init__(self) -> None:
        self.day_logs: dict[tuple[str, str], DayLog] = {}
        self.profiles: dict[str, UserProfile] = {}

    async def get_day_log(self, user_id: str, date: str) -> DayLog | None:
        return self.day_logs.get((user_id, date))

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)


class InMemoryPipelineRunStore(PipelineRunStore):
    """Run registry with the same claim rules as the MongoDB repository."""

    def __init__(self) -> None:
        self.runs: dict[str, PipelineRun] = {}

    async def claim(self, key, *, scan_id, user_id, date, owner, lease_seconds) -> bool:
        now = utc_now()
        run = self.runs.get(key)
        if run is not None and run.status == RunStatus.RUNNING:
            lease_live = run.lease_expires_at is not None and run.lease_expires_at >= now
            if lease_live and run.owner != owner:
                return False
        self.runs[key] = PipelineRun(
            instance_key=key,
            scan_id=scan_id,
            user_id=user_id,
            date=date,
            status=RunStatus.RUNNING,
            owner=owner,
            lease_expires_at=now + timedelta(seconds=lease_seconds),
            attempt_count=(run.attempt_count if run else 0) + 1,
            cancel_requested=False,
            created_at=run.created_at if run else now,
            updated_at=now,
        )
        return True

    async def renew(self, key: str, owner: str, lease_seconds: int) -> bool:
        run = self.runs.get(key)
        if run is None or run.owner != owner or run.status != RunStatus.RUNNING:
            return False
        run.lease_expires_at = utc_now() + timedelta(seconds=lease_seconds)
        return True

    async def release(self, key: str, owner: str, status: RunStatus) -> None:
        run = self.runs.get(key)
        if run is not None and run.owner == owner:
            run.status = status
            run.lease_expires_at = None

    async def get(self, key: str) -> PipelineRun | None:
        return self.runs.get(key)

    async def request_cancel(self, key: str) -> bool:
        run = self.runs.get(key)
        if run is None or run.status != RunStatus.RUNNING:
            return False
        run.cancel_requested = True
        return True

    async def is_cancel_requested(self, key: str) -> bool:
        run = self.runs.get(key)
        return bool(run and run.cancel_requested)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scan_store() -> InMemoryScanStore:
    return InMemoryScanStore()


@pytest.fixture
def day_store() -> InMemoryDayContextStore:
    return InMemoryDayContextStore()


@pytest.fixture
def run_store() -> InMemoryPipelineRunStore:
    return InMemoryPipelineRunStore()


@pytest.fixture
def sample_estimate() -> BodyEstimate:
    """Estimate from the u1 / 2025-01-10 first-scan example."""
    return BodyEstimate(
        body_fat_percent=18.2,
        lean_body_mass_lb=64.1,
        confidence=0.9,
        model_version="test-model",
    )


@pytest.fixture
def vision_qc() -> MagicMock:
    """VisionQC stand-in that passes every batch."""
    qc = MagicMock()
    qc.check_quality = AsyncMock(
        return_value=QCResult(passed=True, lighting_score=0.7, same_dress_score=0.95, framing_score=0.9)
    )
    return qc


@pytest.fixture
def bf_estimator(sample_estimate) -> MagicMock:
    estimator = MagicMock()
    estimator.estimate = AsyncMock(return_value=sample_estimate)
    return estimator


@pytest.fixture
def retry_sleep() -> AsyncMock:
    """Records backoff delays instead of sleeping."""
    return AsyncMock()


@pytest.fixture
def make_pipeline(scan_store, day_store, run_store, vision_qc, bf_estimator, retry_sleep):
    """
    Build a ScanPipeline over the in-memory stores.

    Usage:
        pipeline = make_pipeline(insight_writer=InsightWriter(llm))
    """

    def _make(**overrides) -> ScanPipeline:
        options = {
            "vision_qc": vision_qc,
            "bf_estimator": bf_estimator,
            "meta_binder": MetaBinder(day_store),
            "delta_comparator": DeltaComparator(scan_store),
            "insight_writer": InsightWriter(None),
            "privacy_publisher": PrivacyPublisher(day_store),
            "retry_policy": RetryPolicy(sleep=retry_sleep),
            "stage_timeout": 5.0,
            "attach_poll_interval": 0.01,
            "attach_timeout": 1.0,
            "owner": "worker-test",
        }
        options.update(overrides)
        return ScanPipeline(scan_store, day_store, run_store, **options)

    return _make


def make_photo(
    size: tuple[int, int] = (400, 800),
    color: tuple[int, int, int] = (150, 120, 110),
    fmt: str = "PNG",
) -> bytes:
    """Encode a solid-colour test photo."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def pipeline_mock() -> MagicMock:
    """ScanPipeline stand-in for route tests."""
    pipeline = MagicMock(spec=ScanPipeline)
    pipeline.process_scan = AsyncMock()
    pipeline.get_outcome = AsyncMock()
    pipeline.cancel = AsyncMock()
    return pipeline


@pytest.fixture
async def client(pipeline_mock) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async test client with the pipeline dependency overridden.

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    from bodyscan_api.api.dependencies import get_scan_pipeline
    from bodyscan_api.main import app

    app.dependency_overrides[get_scan_pipeline] = lambda: pipeline_mock
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
