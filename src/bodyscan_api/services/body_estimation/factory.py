"""
Factory for creating body estimation service instances.

Reads the provider choice from settings and returns the matching provider.
"""

import logging
from functools import lru_cache

from bodyscan_api.core.config import get_settings

from .base import BodyEstimationService
from .ollama_provider import OllamaBodyEstimation

logger = logging.getLogger(__name__)


# Supported providers
PROVIDERS = {
    "ollama": OllamaBodyEstimation,
}


@lru_cache(maxsize=1)
def get_body_estimation_service() -> BodyEstimationService:
    """
    Get the configured body estimation service.

    Configuration comes from settings:
    - BODY_ESTIMATION_PROVIDER: Provider name (default: "ollama")
    - OLLAMA_BASE_URL / OLLAMA_MODEL / ESTIMATION_TIMEOUT

    Returns:
        Configured BodyEstimationService instance

    Raises:
        ValueError: If the provider is not supported
    """
    settings = get_settings()
    provider_name = settings.body_estimation_provider.lower()

    logger.info(f"Initializing body estimation provider: {provider_name}")

    if provider_name not in PROVIDERS:
        raise ValueError(
            f"Unknown body estimation provider: {provider_name}. "
            f"Supported: {list(PROVIDERS)}"
        )

    logger.info(
        f"Configuring Ollama provider: {settings.ollama_base_url}, model={settings.ollama_model}"
    )
    return OllamaBodyEstimation(
        base_url=settings.ollama_base_url,
        model=settings.ollama_model,
        timeout=settings.estimation_timeout,
    )


def clear_service_cache():
    """Clear the cached service instance (useful for testing)."""
    get_body_estimation_service.cache_clear()
