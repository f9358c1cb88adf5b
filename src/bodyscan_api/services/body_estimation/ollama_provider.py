"""
Ollama/LLaVA provider for body composition estimation.

Sends all scan angles to a local Ollama vision model in one request and
parses the JSON metrics it returns.
"""

import base64
import json
import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from bodyscan_api.core.exceptions import TransientInfraError, ValidationError
from bodyscan_api.models.scan import BodyEstimate, UserProfile

from .base import BodyEstimationService

logger = logging.getLogger(__name__)


BODY_ESTIMATION_PROMPT = """You are an expert body composition analyst with medical training. Analyze these body scan photos to estimate body composition metrics.

**User Information:**
{user_info}

**Photos Provided (in order):**
{photo_list}
{prior_context}
**Analysis Requirements:**
1. **Body Fat Percentage**
   - Use visual cues: muscle definition, fat deposits, waist-to-hip ratio
   - Consider age, gender, and visible muscle tone
2. **Lean Body Mass** (in pounds), only if weight is known
   - LBM = Total Weight x (1 - Body Fat %)
3. **Estimated Muscle Percentage**
4. **Waist** relative width metric (optional)

**Important:**
- Be conservative with estimates (avoid extreme values)
- Consider gender-specific body composition norms
- Day-to-day changes are small; do not swing far from the previous estimate without clear visual evidence

**Output Format:**
Return ONLY a JSON object (no markdown, no explanation):
{{
  "bodyFatPercent": number (5-50 range),
  "leanBodyMass": number or null (in lbs),
  "estimatedMusclePercent": number (20-55 range),
  "waistMetric": number or null,
  "confidence": number (0-1),
  "notes": "brief assessment notes"
}}"""

ANGLE_DESCRIPTIONS = {
    "front": "Front view - full body standing",
    "back": "Back view - full body standing",
    "left": "Left side view - full body standing",
    "right": "Right side view - full body standing",
}

# Ollama status codes worth another attempt
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def format_body_estimation_prompt(
    angles: list[str],
    weight_lb: float | None = None,
    profile: UserProfile | None = None,
    prior_estimate: BodyEstimate | None = None,
) -> str:
    """
    Build the estimation prompt from the known user context.

    Unknown values are left out rather than guessed.
    """
    user_info = []
    if weight_lb is not None:
        user_info.append(f"- Weight: {weight_lb:g} lbs")
    if profile:
        if profile.height_cm:
            user_info.append(f"- Height: {profile.height_cm:g} cm")
        if profile.age:
            user_info.append(f"- Age: {profile.age} years")
        if profile.gender:
            user_info.append(f"- Gender: {profile.gender}")
        if profile.fitness_goal:
            user_info.append(f"- Fitness Goal: {profile.fitness_goal}")
    if not user_info:
        user_info.append("- Not provided")

    photo_list = "\n".join(
        f"{i}. {ANGLE_DESCRIPTIONS.get(angle, angle)}" for i, angle in enumerate(angles, 1)
    )

    prior_context = ""
    if prior_estimate is not None:
        prior_context = (
            "\n**Previous Estimate (for continuity):**\n"
            f"- Body fat: {prior_estimate.body_fat_percent:.1f}%\n"
        )
        if prior_estimate.lean_body_mass_lb is not None:
            prior_context += f"- Lean body mass: {prior_estimate.lean_body_mass_lb:.1f} lbs\n"

    return BODY_ESTIMATION_PROMPT.format(
        user_info="\n".join(user_info),
        photo_list=photo_list,
        prior_context=prior_context,
    )


def extract_json(text: str) -> str | None:
    """Extract the first balanced JSON object from a model response."""
    text = text.strip()
    start = text.find("{")
    if start == -1:
        return None

    brace_count = 0
    for i in range(start, len(text)):
        if text[i] == "{":
            brace_count += 1
        elif text[i] == "}":
            brace_count -= 1
            if brace_count == 0:
                return text[start : i + 1]

    return None


def _pick(data: dict[str, Any], *keys: str) -> Any:
    """First present value among camelCase/snake_case spellings."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


class OllamaBodyEstimation(BodyEstimationService):
    """
    Body estimation using Ollama with a LLaVA-style vision model.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llava:13b",
        timeout: float = 120.0,
    ):
        """
        Initialize Ollama provider.

        Args:
            base_url: Ollama API base URL
            model: Vision model to use
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return f"ollama/{self.model}"

    async def estimate(
        self,
        photos: dict[str, bytes],
        *,
        weight_lb: float | None = None,
        profile: UserProfile | None = None,
        prior_estimate: BodyEstimate | None = None,
    ) -> BodyEstimate:
        """
        Estimate body composition using the vision model.
        """
        start_time = time.time()

        request_body = {
            "model": self.model,
            "prompt": format_body_estimation_prompt(
                list(photos), weight_lb, profile, prior_estimate
            ),
            "images": [base64.b64encode(data).decode("utf-8") for data in photos.values()],
            "stream": False,
            "format": "json",
            "options": {
                "temperature": 0.1,  # Low for repeatable day-to-day estimates
                "num_predict": 800,
            },
        }

        logger.info(f"Sending body estimation request to Ollama ({self.model}, {len(photos)} photos)")

        try:
            response = await self._client.post(
                f"{self.base_url}/api/generate",
                json=request_body,
            )
        except httpx.TimeoutException as e:
            raise TransientInfraError(f"Ollama request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientInfraError(f"Failed to connect to Ollama: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientInfraError(
                f"Ollama API error: {response.status_code}",
                details={"status_code": response.status_code},
            )
        if response.status_code != 200:
            raise ValidationError(
                f"Ollama API error: {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise ValidationError("Ollama returned a non-JSON envelope") from e

        raw_response = envelope.get("response") if isinstance(envelope, dict) else None
        if not isinstance(raw_response, str):
            raise ValidationError(
                "Ollama envelope has no response text",
                details={"body": response.text[:500]},
            )

        logger.debug(f"Raw Ollama response: {raw_response[:500]}...")

        estimate = self._parse_response(raw_response)
        processing_time = int((time.time() - start_time) * 1000)
        logger.info(
            f"Body estimate: bf={estimate.body_fat_percent}%, "
            f"confidence={estimate.confidence} ({processing_time}ms)"
        )
        return estimate

    def _parse_response(self, raw_response: str) -> BodyEstimate:
        """Parse the model response into a validated BodyEstimate."""
        json_str = extract_json(raw_response)
        if not json_str:
            raise ValidationError(
                "Estimation response contained no JSON",
                details={"response": raw_response[:500]},
            )

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed estimation JSON: {e}") from e

        body_fat = _pick(data, "bodyFatPercent", "body_fat_percent")
        confidence = _pick(data, "confidence")
        if body_fat is None or confidence is None:
            raise ValidationError(
                "Estimation response missing bodyFatPercent or confidence",
                details={"keys": sorted(data)},
            )

        try:
            return BodyEstimate(
                body_fat_percent=body_fat,
                lean_body_mass_lb=_pick(data, "leanBodyMass", "lean_body_mass_lb"),
                confidence=confidence,
                estimated_muscle_percent=_pick(
                    data, "estimatedMusclePercent", "estimated_muscle_percent"
                ),
                waist_metric=_pick(data, "waistMetric", "waist_metric"),
                model_version=self.provider_name,
                notes=data.get("notes"),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Estimation values out of range",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    async def health_check(self) -> bool:
        """Check if Ollama is available and has the required model."""
        try:
            response = await self._client.get(f"{self.base_url}/api/tags")
        except httpx.RequestError as e:
            logger.error(f"Ollama health check failed: {e}")
            return False

        if response.status_code != 200:
            return False

        models = [m.get("name", "") for m in response.json().get("models", [])]
        model_available = any(
            self.model in m or m.startswith(self.model.split(":")[0])
            for m in models
        )
        if not model_available:
            logger.warning(f"Model {self.model} not found. Available: {models}")
        return model_available

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
