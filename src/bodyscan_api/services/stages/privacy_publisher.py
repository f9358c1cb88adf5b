"""
Privacy-filtered public view of a completed scan.

Fails closed: without a privacy record the view carries only the user,
the date and the active flag.
"""

import logging

from bodyscan_api.db.stores import DayContextStore
from bodyscan_api.models.scan import AllowedFields, PrivacySettings, PublishedView, Scan

logger = logging.getLogger(__name__)

# Streak milestones that earn a badge
STREAK_MILESTONES = {
    5: "five_day_streak",
    10: "ten_day_streak",
    30: "thirty_day_streak",
    100: "hundred_day_streak",
}


def streak_badges(streak_days: int) -> list[str]:
    """Badges for every milestone reached by the current streak."""
    return [badge for days, badge in sorted(STREAK_MILESTONES.items()) if streak_days >= days]


def build_view(user_id: str, scan: Scan, privacy: PrivacySettings | None) -> PublishedView:
    """
    Project a scan through the user's privacy toggles.

    A field appears only when its toggle is on and the value is known.
    """
    view = PublishedView(user_id=user_id, date=scan.date, active=True)
    if privacy is None:
        return view

    allowed: AllowedFields = privacy.allowed_fields
    estimate = scan.estimate
    deltas = scan.deltas
    updates = {}

    if allowed.show_bf_trend and estimate is not None:
        updates["body_fat_percent"] = estimate.body_fat_percent
        if deltas is not None:
            updates["body_fat_delta"] = deltas.body_fat_delta
            updates["bf_trend"] = deltas.trend

    if allowed.show_weight:
        updates["weight_lb"] = estimate.weight_lb if estimate else scan.weight_lb
        if deltas is not None:
            updates["weight_delta_lb"] = deltas.weight_delta_lb

    if allowed.show_lbm and estimate is not None:
        updates["lean_body_mass_lb"] = estimate.lean_body_mass_lb
        if deltas is not None:
            updates["lean_mass_delta_lb"] = deltas.lean_mass_delta_lb

    if allowed.show_last_insight and scan.insight is not None:
        updates["last_insight"] = scan.insight.summary

    if allowed.show_badges and deltas is not None:
        updates["streak_days"] = deltas.streak_days
        updates["badges"] = streak_badges(deltas.streak_days)

    if allowed.show_week and deltas is not None:
        updates["week"] = deltas.recent_scan_dates

    if privacy.qr_enabled and privacy.slug:
        updates["qr_slug"] = privacy.slug

    return view.model_copy(update=updates)


class PrivacyPublisher:
    """Builds the public projection; persistence is left to the orchestrator."""

    def __init__(self, store: DayContextStore):
        self.store = store

    async def publish(self, user_id: str, scan: Scan) -> PublishedView:
        """
        Build the published view for a scan.

        Args:
            user_id: Scan owner
            scan: Scan with estimate, deltas and insight populated

        Returns:
            PublishedView honouring the owner's privacy toggles
        """
        profile = await self.store.get_user_profile(user_id)
        privacy = profile.privacy if profile else None
        if privacy is None:
            logger.info(f"No privacy settings for {user_id}, publishing minimal view")

        view = build_view(user_id, scan, privacy)
        logger.info(
            f"Published view for {user_id}/{scan.date}: "
            f"{sorted(view.to_document())}"
        )
        return view
