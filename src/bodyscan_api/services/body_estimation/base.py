"""
Base interface for body composition estimation providers.

A provider turns a set of body scan photos into a BodyEstimate. Providers
report failures with the pipeline error types so the orchestrator can tell
retryable outages from bad model output:

- TransientInfraError: timeouts, connection errors, 5xx from the model host
- ValidationError: unparseable or out-of-range model output
"""

from abc import ABC, abstractmethod

from bodyscan_api.models.scan import BodyEstimate, UserProfile


class BodyEstimationService(ABC):
    """
    Abstract base class for body estimation services.

    All providers (Ollama, hosted vision APIs, etc.) must implement this interface.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def estimate(
        self,
        photos: dict[str, bytes],
        *,
        weight_lb: float | None = None,
        profile: UserProfile | None = None,
        prior_estimate: BodyEstimate | None = None,
    ) -> BodyEstimate:
        """
        Estimate body composition from scan photos.

        Args:
            photos: Raw image bytes keyed by angle ("front", "back", ...)
            weight_lb: Body weight entered at capture, if any
            profile: User profile for age/gender/height context
            prior_estimate: Previous estimate, passed as continuity context

        Returns:
            Validated BodyEstimate

        Raises:
            TransientInfraError: If the provider is unreachable or timed out
            ValidationError: If the provider returned an invalid estimate
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the provider is available and healthy.

        Returns:
            True if the provider is ready to accept requests
        """
        ...

    async def close(self) -> None:
        """Release any held connections."""
        return None
