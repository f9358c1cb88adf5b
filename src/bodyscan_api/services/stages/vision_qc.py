"""
Vision quality control for body scan photos.

Checks that every required angle is present and that the batch is usable
for estimation: adequate lighting, upright full-body framing that is
consistent across angles, and the same outfit in every photo.
"""

import asyncio
import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import ValidationError
from bodyscan_api.models.scan import AngleUrls, QCResult
from bodyscan_api.services.photos import PhotoFetcher

logger = logging.getLogger(__name__)

# Images are analysed at this size; QC does not need full resolution
ANALYSIS_SIZE = (256, 256)
MIN_SHORT_SIDE_PX = 320
HISTOGRAM_BINS = 8


@dataclass
class PhotoStats:
    """Measurements taken from one decoded photo."""

    angle: str
    width: int
    height: int
    brightness: float  # mean luminance 0-1
    histogram: np.ndarray  # normalized torso colour histogram

    @property
    def aspect_ratio(self) -> float:
        return self.height / self.width

    @property
    def is_portrait(self) -> bool:
        return self.height > self.width


def measure_photo(angle: str, data: bytes) -> PhotoStats:
    """
    Decode a photo and compute QC measurements.

    Raises:
        UnidentifiedImageError, OSError: If the bytes are not a decodable image
    """
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGB")
        width, height = img.size
        img.thumbnail(ANALYSIS_SIZE)

        luminance = np.asarray(img.convert("L"), dtype=np.float32) / 255.0
        pixels = np.asarray(img, dtype=np.uint8)

    # Torso region: central band of the frame, where clothing sits
    h, w = pixels.shape[:2]
    torso = pixels[int(h * 0.30): int(h * 0.65), int(w * 0.30): int(w * 0.70)]
    if torso.size == 0:
        torso = pixels

    hist, _ = np.histogramdd(
        torso.reshape(-1, 3),
        bins=(HISTOGRAM_BINS,) * 3,
        range=((0, 256),) * 3,
    )
    total = hist.sum()
    hist = hist / total if total > 0 else hist

    return PhotoStats(
        angle=angle,
        width=width,
        height=height,
        brightness=float(luminance.mean()),
        histogram=hist,
    )


def histogram_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Histogram intersection of two normalized histograms (1.0 = identical)."""
    return float(np.minimum(a, b).sum())


class VisionQC:
    """
    Quality-control stage.

    A failed check is a normal return value (`passed=False`); only storage
    outages raise, as TransientInfraError from the photo fetcher.
    """

    def __init__(
        self,
        fetcher: PhotoFetcher,
        required_angles: list[str] | None = None,
        min_lighting: float = 0.4,
        max_lighting: float = 0.95,
        min_same_dress: float = 0.8,
        min_framing: float = 0.6,
    ):
        self.fetcher = fetcher
        self.required_angles = required_angles or ["front", "back", "left", "right"]
        self.min_lighting = min_lighting
        self.max_lighting = max_lighting
        self.min_same_dress = min_same_dress
        self.min_framing = min_framing

    @classmethod
    def from_settings(cls, fetcher: PhotoFetcher, settings: Settings) -> "VisionQC":
        return cls(
            fetcher=fetcher,
            required_angles=settings.qc_required_angles,
            min_lighting=settings.qc_min_lighting,
            max_lighting=settings.qc_max_lighting,
            min_same_dress=settings.qc_min_same_dress,
            min_framing=settings.qc_min_framing,
        )

    async def check_quality(self, angle_urls: AngleUrls) -> QCResult:
        """
        Validate a batch of photo angles.

        Args:
            angle_urls: Uploaded photo URLs per angle

        Returns:
            QCResult with verdict, reasons and scores
        """
        reasons = [f"missing {angle} photo" for angle in angle_urls.missing(self.required_angles)]

        stats: list[PhotoStats] = []
        for angle, url in angle_urls.present().items():
            try:
                data = await self.fetcher.fetch(url)
            except ValidationError as e:
                reasons.append(f"{angle} photo not accessible: {e.message}")
                continue

            try:
                stats.append(await asyncio.to_thread(measure_photo, angle, data))
            except (UnidentifiedImageError, OSError):
                reasons.append(f"{angle} photo could not be decoded")

        if not stats:
            return QCResult(passed=False, reasons=reasons or ["no usable photos"], pose_ok=False)

        lighting_score = self._check_lighting(stats, reasons)
        pose_ok, framing_score = self._check_framing(stats, reasons)
        same_dress_score = self._check_outfit(stats, reasons)

        result = QCResult(
            passed=not reasons,
            reasons=reasons,
            pose_ok=pose_ok,
            lighting_score=round(lighting_score, 3),
            same_dress_score=round(same_dress_score, 3),
            framing_score=round(framing_score, 3),
        )

        logger.info(
            f"QC {'passed' if result.passed else 'failed'}: lighting={result.lighting_score}, "
            f"framing={result.framing_score}, same_dress={result.same_dress_score}, "
            f"reasons={reasons}"
        )
        return result

    def _check_lighting(self, stats: list[PhotoStats], reasons: list[str]) -> float:
        for s in stats:
            if s.brightness < self.min_lighting:
                reasons.append(f"poor lighting: {s.angle} photo too dark")
            elif s.brightness > self.max_lighting:
                reasons.append(f"poor lighting: {s.angle} photo overexposed")
        return sum(s.brightness for s in stats) / len(stats)

    def _check_framing(self, stats: list[PhotoStats], reasons: list[str]) -> tuple[bool, float]:
        pose_ok = True
        for s in stats:
            if not s.is_portrait:
                pose_ok = False
                reasons.append(f"inconsistent pose: {s.angle} photo is not an upright full-body shot")
            if min(s.width, s.height) < MIN_SHORT_SIDE_PX:
                reasons.append(f"{s.angle} photo resolution too low")

        ratios = [s.aspect_ratio for s in stats]
        framing_score = min(ratios) / max(ratios)
        if framing_score < self.min_framing:
            reasons.append("inconsistent framing across angles")
        return pose_ok, framing_score

    def _check_outfit(self, stats: list[PhotoStats], reasons: list[str]) -> float:
        if len(stats) < 2:
            return 1.0
        reference = stats[0]
        score = min(
            histogram_similarity(reference.histogram, other.histogram)
            for other in stats[1:]
        )
        if score < self.min_same_dress:
            reasons.append("mismatched clothing across angles")
        return score
