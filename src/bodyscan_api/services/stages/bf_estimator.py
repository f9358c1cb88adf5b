"""Body-fat estimation stage."""

import logging

from bodyscan_api.core.exceptions import InvalidInputError
from bodyscan_api.models.scan import AngleUrls, BodyEstimate, UserProfile
from bodyscan_api.services.body_estimation import BodyEstimationService
from bodyscan_api.services.photos import PhotoFetcher

logger = logging.getLogger(__name__)


def lean_mass_from_weight(weight_lb: float, body_fat_percent: float) -> float:
    """Lean body mass = weight x (1 - body fat fraction)."""
    return round(weight_lb * (1 - body_fat_percent / 100), 1)


class BFEstimator:
    """
    Wraps a body estimation provider for the pipeline.

    Downloads the QC-approved photos, asks the provider for an estimate and
    fills in what can be derived locally (weight carried over from capture,
    lean mass from weight and body fat).
    """

    def __init__(self, service: BodyEstimationService, fetcher: PhotoFetcher):
        self.service = service
        self.fetcher = fetcher

    async def estimate(
        self,
        angle_urls: AngleUrls,
        prior_estimate: BodyEstimate | None = None,
        weight_lb: float | None = None,
        profile: UserProfile | None = None,
    ) -> BodyEstimate:
        """
        Produce a body composition estimate.

        Args:
            angle_urls: Photo URLs (already passed QC)
            prior_estimate: Previous completed scan's estimate, if any
            weight_lb: Weight entered at capture
            profile: User profile context

        Returns:
            BodyEstimate with lean mass populated whenever weight is known

        Raises:
            TransientInfraError: Photo storage or provider outage
            ValidationError: Provider returned an invalid estimate
        """
        urls = angle_urls.present()
        if not urls:
            raise InvalidInputError("Scan has no photos to estimate from")

        photos = {angle: await self.fetcher.fetch(url) for angle, url in urls.items()}

        estimate = await self.service.estimate(
            photos,
            weight_lb=weight_lb,
            profile=profile,
            prior_estimate=prior_estimate,
        )

        updates = {}
        if estimate.weight_lb is None and weight_lb is not None:
            updates["weight_lb"] = weight_lb
        weight = updates.get("weight_lb", estimate.weight_lb)
        if estimate.lean_body_mass_lb is None and weight is not None:
            updates["lean_body_mass_lb"] = lean_mass_from_weight(weight, estimate.body_fat_percent)

        if updates:
            estimate = estimate.model_copy(update=updates)

        logger.info(
            f"Estimated bf={estimate.body_fat_percent}% lbm={estimate.lean_body_mass_lb} "
            f"via {self.service.provider_name}"
        )
        return estimate
