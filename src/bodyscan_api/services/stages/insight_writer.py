"""
Narrative insight generation.

The figures are always computed locally first. The chat model only turns
them into prose; when no model is configured, or the orchestrator gives up
on the model, the same figures are rendered by templated rules.
"""

import logging
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from bodyscan_api.agents.prompts.insight import INSIGHT_SYSTEM_PROMPT, format_insight_prompt
from bodyscan_api.core.exceptions import TransientInfraError
from bodyscan_api.models.scan import (
    BodyEstimate,
    BoundContext,
    DeltaComparison,
    InsightData,
    InsightFlag,
    InsightSource,
)
from bodyscan_api.utils.dates import utc_now

logger = logging.getLogger(__name__)

PROGRESS_THRESHOLD = -0.2  # bf points
BF_WARNING_THRESHOLD = 0.3  # bf points
LBM_LOSS_THRESHOLD = -0.5  # lb
LBM_GAIN_THRESHOLD = 0.2  # lb
RAPID_WEIGHT_CHANGE = 2.0  # lb


def build_figures(
    estimate: BodyEstimate,
    deltas: DeltaComparison,
    context: BoundContext | None,
) -> dict[str, Any]:
    """Collect the non-null figures an insight may reference."""
    figures: dict[str, Any] = {
        "baseline": deltas.baseline,
        "body_fat_percent": estimate.body_fat_percent,
        "lean_body_mass_lb": estimate.lean_body_mass_lb,
        "weight_lb": estimate.weight_lb,
        "confidence": estimate.confidence,
        "streak_days": deltas.streak_days,
    }
    if not deltas.baseline:
        figures.update(
            body_fat_delta=deltas.body_fat_delta,
            body_fat_delta_2=deltas.body_fat_delta_2,
            lean_mass_delta_lb=deltas.lean_mass_delta_lb,
            weight_delta_lb=deltas.weight_delta_lb,
            days_since_last_scan=deltas.days_since_last_scan,
            trend=deltas.trend.value,
        )

    if context is not None:
        figures.update(
            fitness_goal=context.fitness_goal,
            target_weight_lb=context.target_weight_lb,
        )
        day_log = context.day_log
        if day_log is not None and context.has_nutrition:
            figures.update(
                kcal=day_log.kcal,
                protein_g=day_log.protein_g,
                carbs_g=day_log.carbs_g,
                fat_g=day_log.fat_g,
                hydration_l=day_log.hydration_l,
                sodium_mg=day_log.sodium_mg,
            )
        if day_log is not None and day_log.workout is not None and context.has_workout:
            figures.update(
                workout_type=day_log.workout.type,
                workout_duration_min=day_log.workout.duration_min,
                steps=day_log.workout.steps,
            )

    return {name: value for name, value in figures.items() if value is not None}


def assess_flags(figures: dict[str, Any]) -> list[InsightFlag]:
    """Overall severity derived from the figures (single worst flag)."""
    warnings = []
    bf_delta = figures.get("body_fat_delta")
    if bf_delta is not None and bf_delta > BF_WARNING_THRESHOLD:
        warnings.append("bf")
    lbm_delta = figures.get("lean_mass_delta_lb")
    if lbm_delta is not None and lbm_delta < LBM_LOSS_THRESHOLD:
        warnings.append("lbm")
    weight_delta = figures.get("weight_delta_lb")
    if weight_delta is not None and abs(weight_delta) > RAPID_WEIGHT_CHANGE:
        warnings.append("weight")
    return [InsightFlag.WARNING] if warnings else [InsightFlag.OK]


def render_template(figures: dict[str, Any]) -> str:
    """Rule-based summary using only the figures present."""
    parts = []

    bf_delta = figures.get("body_fat_delta")
    if figures.get("baseline"):
        parts.append(
            f"**First scan day!** Your baseline is set at "
            f"**{figures['body_fat_percent']:.1f}%** body fat."
        )
    elif bf_delta is None:
        parts.append(f"Body fat today: **{figures['body_fat_percent']:.1f}%**.")
    elif bf_delta < PROGRESS_THRESHOLD:
        parts.append(f"**BF% {bf_delta:.1f}** vs your last scan, excellent progress!")
    elif bf_delta > BF_WARNING_THRESHOLD:
        parts.append(f"**BF% +{bf_delta:.1f}** vs your last scan, check sodium and carbs.")
    else:
        parts.append(f"**BF% {bf_delta:+.1f}** vs your last scan, holding steady.")

    lbm_delta = figures.get("lean_mass_delta_lb")
    if lbm_delta is not None:
        if lbm_delta < LBM_LOSS_THRESHOLD:
            parts.append(
                f"**Muscle loss detected** ({lbm_delta:.1f} lb), increase protein and reduce the deficit."
            )
        elif lbm_delta > LBM_GAIN_THRESHOLD:
            parts.append(f"**LBM +{lbm_delta:.1f} lb**, muscle retention is excellent!")

    weight_delta = figures.get("weight_delta_lb")
    if weight_delta is not None and abs(weight_delta) > RAPID_WEIGHT_CHANGE:
        parts.append(f"**Rapid weight change** ({weight_delta:+.1f} lb), likely water retention.")

    if "kcal" in figures:
        line = f"**Nutrition:** {figures['kcal']:g} kcal"
        if "protein_g" in figures:
            line += f", {figures['protein_g']:g}g protein"
        parts.append(line)

    workout = [
        str(figures["workout_type"]) if "workout_type" in figures else None,
        f"{figures['workout_duration_min']:g} min" if "workout_duration_min" in figures else None,
        f"{figures['steps']} steps" if "steps" in figures else None,
    ]
    workout = [w for w in workout if w]
    if workout:
        parts.append(f"**Workout:** {', '.join(workout)}")

    streak = figures.get("streak_days", 1)
    if streak > 1:
        parts.append(f"**{streak}-day** scan streak, keep it going.")

    return "\n\n".join(parts)


class InsightWriter:
    """
    Writes the daily insight.

    Chat-model failures surface as TransientInfraError so the orchestrator
    can retry them and then apply its degradation policy via `fallback`.
    """

    def __init__(self, llm: BaseChatModel | None = None):
        """
        Initialize insight writer.

        Args:
            llm: Chat model for prose; None means templated text only
        """
        self.llm = llm

    async def write_insight(
        self,
        estimate: BodyEstimate,
        deltas: DeltaComparison,
        context: BoundContext | None = None,
    ) -> InsightData:
        """
        Generate the insight for a scan.

        Raises:
            TransientInfraError: The chat model failed or returned nothing
        """
        figures = build_figures(estimate, deltas, context)

        if self.llm is None:
            return self._from_template(figures, degraded=False)

        messages = [
            SystemMessage(content=INSIGHT_SYSTEM_PROMPT),
            HumanMessage(content=format_insight_prompt(figures)),
        ]

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.warning(f"Insight generation failed: {e}")
            raise TransientInfraError(f"Insight model error: {e}", stage="insight") from e

        summary = _message_text(response.content).strip()
        if not summary:
            raise TransientInfraError("Insight model returned empty text", stage="insight")

        logger.info(f"Generated LLM insight ({len(summary)} chars)")
        return InsightData(
            summary=summary,
            flags=assess_flags(figures),
            figures=figures,
            source=InsightSource.LLM,
            generated_at=utc_now(),
        )

    def fallback(
        self,
        estimate: BodyEstimate,
        deltas: DeltaComparison,
        context: BoundContext | None = None,
    ) -> InsightData:
        """Templated insight used when the chat model could not be reached."""
        logger.warning("Using templated insight after model failure")
        return self._from_template(build_figures(estimate, deltas, context), degraded=True)

    def _from_template(self, figures: dict[str, Any], degraded: bool) -> InsightData:
        return InsightData(
            summary=render_template(figures),
            flags=assess_flags(figures),
            figures=figures,
            source=InsightSource.TEMPLATE,
            degraded=degraded,
            generated_at=utc_now(),
        )


def _message_text(content: Any) -> str:
    """Chat responses may carry a string or a list of content blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block if isinstance(block, str) else str(block.get("text", ""))
            for block in content
        )
    return str(content or "")
