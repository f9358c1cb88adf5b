"""Pydantic models for the daily body scan and its derived results.

Every stage of the scan pipeline hands the next one one of these typed
payloads; each is validated when it crosses a boundary (service response,
database read, API response).
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

SCAN_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

# =============================================================================
# Enums
# =============================================================================


class ScanAngle(str, Enum):
    """Angle of a body scan photo."""

    FRONT = "front"
    BACK = "back"
    LEFT = "left"
    RIGHT = "right"


class ScanStatus(str, Enum):
    """Lifecycle of a scan as it moves through the pipeline."""

    CREATED = "created"
    QC_IN_PROGRESS = "qc_in_progress"
    QC_PASSED = "qc_passed"
    QC_FAILED = "qc_failed"  # Business rejection, terminal
    ESTIMATE_IN_PROGRESS = "estimate_in_progress"
    ESTIMATE_DONE = "estimate_done"
    BIND_DONE = "bind_done"
    DELTA_DONE = "delta_done"
    INSIGHT_DONE = "insight_done"
    COMPLETED = "completed"  # Published
    FAILED = "failed"  # Failed(stage, reason); resumable

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.QC_FAILED, ScanStatus.FAILED)


class PipelineStage(str, Enum):
    """Pipeline stages, in execution order."""

    QC = "qc"
    ESTIMATE = "estimate"
    BIND = "bind"
    DELTA = "delta"
    INSIGHT = "insight"
    PUBLISH = "publish"

    @property
    def scan_field(self) -> str:
        """Name of the Scan field this stage writes."""
        return STAGE_FIELDS[self]


STAGE_ORDER: tuple[PipelineStage, ...] = tuple(PipelineStage)

STAGE_FIELDS: dict[PipelineStage, str] = {
    PipelineStage.QC: "qc",
    PipelineStage.ESTIMATE: "estimate",
    PipelineStage.BIND: "context",
    PipelineStage.DELTA: "deltas",
    PipelineStage.INSIGHT: "insight",
    PipelineStage.PUBLISH: "published_view",
}


class Trend(str, Enum):
    """Direction of body-fat change versus the previous scan."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    BASELINE = "baseline"


class InsightFlag(str, Enum):
    """Overall severity of a generated insight."""

    OK = "ok"
    WARNING = "warning"
    DANGER = "danger"


class InsightSource(str, Enum):
    """Where the insight text came from."""

    LLM = "llm"
    TEMPLATE = "template"


# =============================================================================
# Photos
# =============================================================================


class AngleUrls(BaseModel):
    """Uploaded photo URL for each scan angle."""

    front: str | None = None
    back: str | None = None
    left: str | None = None
    right: str | None = None

    def present(self) -> dict[str, str]:
        """Angles that have a photo, in capture order."""
        return {
            angle.value: url
            for angle in ScanAngle
            if (url := getattr(self, angle.value))
        }

    def missing(self, required: list[str]) -> list[str]:
        """Required angles without a photo."""
        present = self.present()
        return [angle for angle in required if angle not in present]

    @property
    def is_empty(self) -> bool:
        return not self.present()


# =============================================================================
# Stage results
# =============================================================================


class QCResult(BaseModel):
    """Quality-control verdict for a batch of photos."""

    passed: bool
    reasons: list[str] = Field(default_factory=list)
    pose_ok: bool = True
    lighting_score: float | None = Field(None, ge=0, le=1)
    same_dress_score: float | None = Field(None, ge=0, le=1)
    framing_score: float | None = Field(None, ge=0, le=1)


class BodyEstimate(BaseModel):
    """Body composition metrics from the vision estimation service."""

    body_fat_percent: float = Field(..., ge=0, le=100, description="Body fat %")
    lean_body_mass_lb: float | None = Field(None, gt=0, description="Lean body mass (lb)")
    weight_lb: float | None = Field(None, gt=0, description="Body weight (lb)")
    confidence: float = Field(..., ge=0, le=1, description="Muscle/fat estimate confidence")
    estimated_muscle_percent: float | None = Field(None, ge=0, le=100)
    waist_metric: float | None = Field(None, ge=0)
    model_version: str = "unknown"
    notes: str | None = None


class WorkoutSnapshot(BaseModel):
    """Workout logged on the scan day."""

    type: str | None = None
    duration_min: float | None = Field(None, ge=0)
    steps: int | None = Field(None, ge=0)


class DayLog(BaseModel):
    """Same-day nutrition and workout log (read-only to the pipeline)."""

    user_id: str
    date: str
    kcal: float | None = Field(None, ge=0)
    protein_g: float | None = Field(None, ge=0)
    carbs_g: float | None = Field(None, ge=0)
    fat_g: float | None = Field(None, ge=0)
    hydration_l: float | None = Field(None, ge=0)
    sodium_mg: float | None = Field(None, ge=0)
    workout: WorkoutSnapshot | None = None


class AllowedFields(BaseModel):
    """Per-field publication toggles. Everything defaults to hidden."""

    show_week: bool = False
    show_bf_trend: bool = False
    show_weight: bool = False
    show_last_insight: bool = False
    show_badges: bool = False
    show_lbm: bool = False


class PrivacySettings(BaseModel):
    """User-controlled privacy settings for the public profile."""

    qr_enabled: bool = False
    slug: str | None = None
    allowed_fields: AllowedFields = Field(default_factory=AllowedFields)


class UserProfile(BaseModel):
    """Fitness context and privacy settings from the user profile."""

    user_id: str
    fitness_goal: str | None = None
    fitness_level: str | None = None
    target_weight_lb: float | None = Field(None, gt=0)
    age: int | None = Field(None, gt=0)
    gender: str | None = None
    height_cm: float | None = Field(None, gt=0)
    privacy: PrivacySettings | None = None


class BoundContext(BaseModel):
    """Estimate-day context attached by the context binder."""

    day_log: DayLog | None = None
    fitness_goal: str | None = None
    fitness_level: str | None = None
    target_weight_lb: float | None = None
    has_nutrition: bool = False
    has_workout: bool = False


class DeltaComparison(BaseModel):
    """Differences between this scan and the most recent completed ones."""

    baseline: bool
    weight_delta_lb: float | None = None
    body_fat_delta: float | None = None  # percentage points vs previous scan
    body_fat_delta_2: float | None = None  # vs two scans back
    lean_mass_delta_lb: float | None = None
    days_since_last_scan: int | None = None
    streak_days: int = Field(1, ge=1)
    trend: Trend = Trend.BASELINE
    prev_scan_id: str | None = None
    prev2_scan_id: str | None = None
    recent_scan_dates: list[str] = Field(default_factory=list)


class InsightData(BaseModel):
    """Narrative summary plus the figures it was derived from."""

    summary: str = Field(..., min_length=1)
    flags: list[InsightFlag] = Field(default_factory=lambda: [InsightFlag.OK])
    figures: dict[str, Any] = Field(default_factory=dict)
    source: InsightSource = InsightSource.TEMPLATE
    degraded: bool = False
    version: int = 1
    generated_at: datetime | None = None


class PublishedView(BaseModel):
    """
    Privacy-filtered projection of a completed scan.

    Only `user_id`, `date` and `active` are unconditional; every other
    field is present only when its privacy toggle allows it.
    """

    user_id: str
    date: str
    active: bool = True
    body_fat_percent: float | None = None
    body_fat_delta: float | None = None
    bf_trend: Trend | None = None
    weight_lb: float | None = None
    weight_delta_lb: float | None = None
    lean_body_mass_lb: float | None = None
    lean_mass_delta_lb: float | None = None
    last_insight: str | None = None
    streak_days: int | None = None
    badges: list[str] | None = None
    week: list[str] | None = None
    qr_slug: str | None = None

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage, dropping withheld fields entirely."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# Scan record
# =============================================================================


class Scan(BaseModel):
    """One photo-capture event for a user on a date and its derived results."""

    scan_id: str
    user_id: str
    date: str = Field(..., pattern=SCAN_DATE_PATTERN)
    angle_urls: AngleUrls = Field(default_factory=AngleUrls)
    weight_lb: float | None = Field(None, gt=0)
    notes: str | None = None

    qc: QCResult | None = None
    estimate: BodyEstimate | None = None
    context: BoundContext | None = None
    deltas: DeltaComparison | None = None
    insight: InsightData | None = None
    published_view: dict[str, Any] | None = None

    status: ScanStatus = ScanStatus.CREATED
    failed_stage: PipelineStage | None = None
    error_message: str | None = None

    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_mongo(cls, doc: dict[str, Any]) -> "Scan":
        """Create from a MongoDB document (`_id` holds the scan id)."""
        data = dict(doc)
        if "_id" in data:
            data["scan_id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def has_result(self, stage: PipelineStage) -> bool:
        """Whether the stage's output is already persisted on this scan."""
        return getattr(self, stage.scan_field) is not None


class CreateScanInput(BaseModel):
    """Fields the caller supplies when registering an uploaded scan."""

    user_id: str
    date: str = Field(..., pattern=SCAN_DATE_PATTERN)
    angle_urls: AngleUrls
    weight_lb: float | None = Field(None, gt=0)
    notes: str | None = None
