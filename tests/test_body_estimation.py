"""Unit tests for the Ollama body estimation provider and the BFEstimator stage."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import InvalidInputError, TransientInfraError, ValidationError
from bodyscan_api.models.scan import AngleUrls, BodyEstimate, UserProfile
from bodyscan_api.services.body_estimation import clear_service_cache, get_body_estimation_service
from bodyscan_api.services.body_estimation.ollama_provider import (
    OllamaBodyEstimation,
    extract_json,
    format_body_estimation_prompt,
)
from bodyscan_api.services.stages.bf_estimator import BFEstimator, lean_mass_from_weight

from .conftest import ALL_ANGLES

PHOTOS = {"front": b"f", "back": b"b", "left": b"l", "right": b"r"}


def ollama_response(payload, status_code: int = 200) -> MagicMock:
    """Mock httpx response wrapping a model reply."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    response = MagicMock(status_code=status_code, text=text)
    response.json = lambda: {"response": text}
    return response


class TestPrompt:

    def test_includes_known_context_only(self):
        prompt = format_body_estimation_prompt(
            ["front", "back"],
            weight_lb=182.0,
            profile=UserProfile(user_id="u1", age=34, gender="male"),
        )

        assert "Weight: 182 lbs" in prompt
        assert "Age: 34 years" in prompt
        assert "Height" not in prompt
        assert "1. Front view" in prompt
        assert "Previous Estimate" not in prompt

    def test_includes_prior_estimate(self):
        prior = BodyEstimate(body_fat_percent=19.4, lean_body_mass_lb=146.2, confidence=0.8)

        prompt = format_body_estimation_prompt(["front"], prior_estimate=prior)

        assert "Body fat: 19.4%" in prompt
        assert "Lean body mass: 146.2 lbs" in prompt

    def test_extract_json_from_chatty_reply(self):
        text = 'Here you go: {"bodyFatPercent": 18, "nested": {"a": 1}} thanks'

        assert json.loads(extract_json(text)) == {"bodyFatPercent": 18, "nested": {"a": 1}}
        assert extract_json("no json here") is None


class TestOllamaBodyEstimation:

    @pytest.fixture
    def provider(self):
        return OllamaBodyEstimation(base_url="http://ollama:11434", model="llava:13b", timeout=5)

    @pytest.mark.asyncio
    async def test_estimate_success(self, provider):
        reply = {
            "bodyFatPercent": 18.2,
            "leanBodyMass": 64.1,
            "estimatedMusclePercent": 41,
            "confidence": 0.9,
            "notes": "Even lighting",
        }
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(return_value=ollama_response(reply))

            estimate = await provider.estimate(PHOTOS, weight_lb=None)

        assert estimate.body_fat_percent == 18.2
        assert estimate.lean_body_mass_lb == 64.1
        assert estimate.confidence == 0.9
        assert estimate.model_version == "ollama/llava:13b"

        body = mock_client.post.await_args.kwargs["json"]
        assert body["model"] == "llava:13b"
        assert len(body["images"]) == 4
        assert body["stream"] is False

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, provider):
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(TransientInfraError):
                await provider.estimate(PHOTOS)

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, provider):
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(return_value=ollama_response("overloaded", 503))

            with pytest.raises(TransientInfraError):
                await provider.estimate(PHOTOS)

    @pytest.mark.asyncio
    async def test_missing_model_is_permanent(self, provider):
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(return_value=ollama_response("model not found", 404))

            with pytest.raises(ValidationError):
                await provider.estimate(PHOTOS)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            "I cannot estimate body fat from these photos.",
            {"confidence": 0.5},
            {"bodyFatPercent": 140, "confidence": 0.8},
            {"bodyFatPercent": 20, "confidence": 1.7},
            {"bodyFatPercent": 20, "leanBodyMass": -5, "confidence": 0.7},
        ],
    )
    async def test_invalid_output_is_validation_error(self, provider, reply):
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(return_value=ollama_response(reply))

            with pytest.raises(ValidationError):
                await provider.estimate(PHOTOS)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "envelope",
        [["not", "an", "object"], {"response": None}, {"done": True}, "plain text"],
    )
    async def test_malformed_envelope_is_validation_error(self, provider, envelope):
        response = MagicMock(status_code=200, text=json.dumps(envelope))
        response.json = lambda: envelope
        with patch.object(provider, "_client") as mock_client:
            mock_client.post = AsyncMock(return_value=response)

            with pytest.raises(ValidationError, match="no response text"):
                await provider.estimate(PHOTOS)

    @pytest.mark.asyncio
    async def test_health_check(self, provider):
        tags = MagicMock(status_code=200)
        tags.json = lambda: {"models": [{"name": "llava:13b"}]}
        with patch.object(provider, "_client") as mock_client:
            mock_client.get = AsyncMock(return_value=tags)

            assert await provider.health_check() is True


class TestBFEstimator:

    @pytest.fixture
    def fetcher(self):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value=b"photo")
        return fetcher

    def make_service(self, estimate: BodyEstimate) -> MagicMock:
        service = MagicMock()
        service.provider_name = "fake"
        service.estimate = AsyncMock(return_value=estimate)
        return service

    def test_lean_mass_formula(self):
        assert lean_mass_from_weight(200.0, 20.0) == 160.0

    @pytest.mark.asyncio
    async def test_derives_lean_mass_from_capture_weight(self, fetcher):
        service = self.make_service(BodyEstimate(body_fat_percent=25.0, confidence=0.8))
        estimator = BFEstimator(service, fetcher)

        estimate = await estimator.estimate(ALL_ANGLES, weight_lb=180.0)

        assert estimate.weight_lb == 180.0
        assert estimate.lean_body_mass_lb == 135.0
        assert fetcher.fetch.await_count == 4

    @pytest.mark.asyncio
    async def test_keeps_service_lean_mass(self, fetcher, sample_estimate):
        estimator = BFEstimator(self.make_service(sample_estimate), fetcher)

        estimate = await estimator.estimate(ALL_ANGLES)

        assert estimate.lean_body_mass_lb == 64.1
        assert estimate.weight_lb is None

    @pytest.mark.asyncio
    async def test_passes_prior_estimate(self, fetcher, sample_estimate):
        service = self.make_service(sample_estimate)
        estimator = BFEstimator(service, fetcher)
        prior = BodyEstimate(body_fat_percent=19.0, confidence=0.7)

        await estimator.estimate(ALL_ANGLES, prior_estimate=prior)

        assert service.estimate.await_args.kwargs["prior_estimate"] == prior
        assert list(service.estimate.await_args.args[0]) == ["front", "back", "left", "right"]

    @pytest.mark.asyncio
    async def test_no_photos_is_invalid_input(self, fetcher, sample_estimate):
        estimator = BFEstimator(self.make_service(sample_estimate), fetcher)

        with pytest.raises(InvalidInputError):
            await estimator.estimate(AngleUrls())

    @pytest.mark.asyncio
    async def test_photo_outage_propagates(self, sample_estimate):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(side_effect=TransientInfraError("timed out"))
        service = self.make_service(sample_estimate)

        with pytest.raises(TransientInfraError):
            await BFEstimator(service, fetcher).estimate(ALL_ANGLES)
        service.estimate.assert_not_awaited()


class TestFactory:

    @pytest.fixture(autouse=True)
    def fresh_cache(self):
        clear_service_cache()
        yield
        clear_service_cache()

    def test_builds_configured_ollama_provider(self):
        settings = Settings(ollama_base_url="http://gpu-box:11434", ollama_model="llava:34b")
        with patch("bodyscan_api.services.body_estimation.factory.get_settings", return_value=settings):
            service = get_body_estimation_service()

        assert isinstance(service, OllamaBodyEstimation)
        assert service.base_url == "http://gpu-box:11434"
        assert service.provider_name == "ollama/llava:34b"

    def test_unknown_provider(self):
        settings = Settings(body_estimation_provider="bodpod")
        with patch("bodyscan_api.services.body_estimation.factory.get_settings", return_value=settings):
            with pytest.raises(ValueError, match="bodpod"):
                get_body_estimation_service()
