"""
Body composition estimation service.

Provides a provider-agnostic interface for estimating body fat and lean
mass from scan photos.

Usage:
    from bodyscan_api.services.body_estimation import get_body_estimation_service

    service = get_body_estimation_service()
    estimate = await service.estimate(photos, weight_lb=182.0)
"""

from .base import BodyEstimationService
from .factory import clear_service_cache, get_body_estimation_service
from .ollama_provider import OllamaBodyEstimation

__all__ = [
    "BodyEstimationService",
    "OllamaBodyEstimation",
    "clear_service_cache",
    "get_body_estimation_service",
]
