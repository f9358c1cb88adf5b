"""Pydantic models for API schemas."""

from .pipeline import (
    CancelResponse,
    PipelineOutcome,
    PipelineRun,
    ProcessScanRequest,
    RunStatus,
    instance_key,
)
from .scan import (
    STAGE_ORDER,
    AllowedFields,
    AngleUrls,
    BodyEstimate,
    BoundContext,
    CreateScanInput,
    DayLog,
    DeltaComparison,
    InsightData,
    InsightFlag,
    InsightSource,
    PipelineStage,
    PrivacySettings,
    PublishedView,
    QCResult,
    Scan,
    ScanAngle,
    ScanStatus,
    Trend,
    UserProfile,
    WorkoutSnapshot,
)

__all__ = [
    # Scan
    "AllowedFields",
    "AngleUrls",
    "BodyEstimate",
    "BoundContext",
    "CreateScanInput",
    "DayLog",
    "DeltaComparison",
    "InsightData",
    "InsightFlag",
    "InsightSource",
    "PipelineStage",
    "PrivacySettings",
    "PublishedView",
    "QCResult",
    "STAGE_ORDER",
    "Scan",
    "ScanAngle",
    "ScanStatus",
    "Trend",
    "UserProfile",
    "WorkoutSnapshot",
    # Pipeline
    "CancelResponse",
    "PipelineOutcome",
    "PipelineRun",
    "ProcessScanRequest",
    "RunStatus",
    "instance_key",
]
