"""Attach the scan day's nutrition, workout and goal context."""

import logging

from bodyscan_api.db.stores import DayContextStore
from bodyscan_api.models.scan import BodyEstimate, BoundContext, DayLog

logger = logging.getLogger(__name__)

NUTRITION_FIELDS = ("kcal", "protein_g", "carbs_g", "fat_g", "hydration_l", "sodium_mg")


def has_nutrition(day_log: DayLog | None) -> bool:
    return day_log is not None and any(
        getattr(day_log, name) is not None for name in NUTRITION_FIELDS
    )


def has_workout(day_log: DayLog | None) -> bool:
    if day_log is None or day_log.workout is None:
        return False
    workout = day_log.workout
    return any(v is not None for v in (workout.type, workout.duration_min, workout.steps))


class MetaBinder:
    """Binds same-day context to an estimate. Missing data is never an error."""

    def __init__(self, store: DayContextStore):
        self.store = store

    async def bind_context(self, user_id: str, date: str, estimate: BodyEstimate) -> BoundContext:
        """
        Snapshot the day log and fitness profile for the scan day.

        Args:
            user_id: Subject user
            date: Scan day (YYYY-MM-DD)
            estimate: The day's estimate (context is bound to it)

        Returns:
            BoundContext with nulls wherever the user logged nothing
        """
        day_log = await self.store.get_day_log(user_id, date)
        profile = await self.store.get_user_profile(user_id)

        context = BoundContext(
            day_log=day_log,
            fitness_goal=profile.fitness_goal if profile else None,
            fitness_level=profile.fitness_level if profile else None,
            target_weight_lb=profile.target_weight_lb if profile else None,
            has_nutrition=has_nutrition(day_log),
            has_workout=has_workout(day_log),
        )

        logger.info(
            f"Bound context for {user_id}/{date} (bf={estimate.body_fat_percent}%): "
            f"nutrition={context.has_nutrition}, workout={context.has_workout}"
        )
        return context
