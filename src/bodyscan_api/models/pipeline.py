"""Pydantic models for pipeline requests, runs and outcomes."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .scan import SCAN_DATE_PATTERN, PipelineStage, Scan, ScanStatus


def instance_key(user_id: str, date: str) -> str:
    """Deterministic run identifier for one user's scan day."""
    return f"daily-scan-{user_id}-{date}"


class RunStatus(str, Enum):
    """Status of a pipeline run in the run registry."""

    RUNNING = "running"
    COMPLETED = "completed"
    QC_FAILED = "qc_failed"
    FAILED = "failed"


class PipelineRun(BaseModel):
    """Registry entry guarding one active pipeline per (user, date)."""

    instance_key: str
    scan_id: str
    user_id: str
    date: str
    status: RunStatus = RunStatus.RUNNING
    owner: str | None = None
    lease_expires_at: datetime | None = None
    attempt_count: int = 0
    cancel_requested: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_mongo(cls, doc: dict[str, Any]) -> "PipelineRun":
        """Create from a MongoDB document (`_id` holds the instance key)."""
        data = dict(doc)
        if "_id" in data:
            data["instance_key"] = str(data.pop("_id"))
        return cls.model_validate(data)


class ProcessScanRequest(BaseModel):
    """Request payload for POST /scans/process."""

    scan_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    date: str = Field(..., pattern=SCAN_DATE_PATTERN, description="Scan day (YYYY-MM-DD)")
    wait: bool = Field(
        default=True,
        description="Block until the run finishes; false returns immediately",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "scan_id": "scn_2025-01-10_1736500000000",
                "user_id": "u1",
                "date": "2025-01-10",
                "wait": True,
            }
        }


class PipelineOutcome(BaseModel):
    """Result of processing (or polling) a scan pipeline."""

    instance_key: str
    status: ScanStatus
    scan: Scan | None = None
    failed_stage: PipelineStage | None = None
    error: str | None = None
    message: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_scan(cls, scan: Scan) -> "PipelineOutcome":
        """Build the caller-visible outcome from a persisted scan."""
        message = None
        error = scan.error_message
        if scan.status == ScanStatus.COMPLETED:
            message = "Daily scan processed"
        elif scan.status == ScanStatus.QC_FAILED:
            reasons = scan.qc.reasons if scan.qc else []
            message = f"retake photos: {', '.join(reasons) or 'quality check failed'}"
            error = error or message
        elif scan.status == ScanStatus.FAILED:
            stage = scan.failed_stage.value if scan.failed_stage else "unknown"
            message = f"Processing failed at {stage}: {scan.error_message or 'unknown error'}"
        else:
            message = "Daily scan processing in progress"

        return cls(
            instance_key=instance_key(scan.user_id, scan.date),
            status=scan.status,
            scan=scan,
            failed_stage=scan.failed_stage,
            error=error,
            message=message,
        )


class CancelResponse(BaseModel):
    """Acknowledgement of an operator cancellation."""

    instance_key: str
    cancel_requested: bool
    local_task_cancelled: bool
