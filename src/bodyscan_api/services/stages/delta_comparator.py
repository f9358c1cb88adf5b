"""
Trend comparison against the user's previous completed scans.
"""

import logging
from datetime import timedelta

from bodyscan_api.db.stores import ScanStore
from bodyscan_api.models.scan import BodyEstimate, DeltaComparison, Scan, Trend
from bodyscan_api.utils.dates import days_between, parse_scan_date

logger = logging.getLogger(__name__)

# Body-fat changes within this band (percentage points) count as stable
STABLE_BAND = 0.2
WEEK_DAYS = 7
HISTORY_LIMIT = 120


def latest_per_date(scans: list[Scan]) -> list[Scan]:
    """
    Collapse same-date duplicates, newest date first.

    The most recently updated scan wins; equal `updated_at` falls back to
    the larger scan id so the choice never depends on query order.
    """
    by_date: dict[str, Scan] = {}
    for scan in scans:
        current = by_date.get(scan.date)
        if current is None or _recency(scan) > _recency(current):
            by_date[scan.date] = scan
    return [by_date[d] for d in sorted(by_date, reverse=True)]


def _recency(scan: Scan) -> tuple:
    stamp = scan.updated_at.timestamp() if scan.updated_at else float("-inf")
    return (stamp, scan.scan_id)


def count_streak(date: str, previous_dates: list[str]) -> int:
    """Consecutive days ending on `date` that have a scan (including `date`)."""
    seen = set(previous_dates)
    day = parse_scan_date(date)
    streak = 1
    while (day - timedelta(days=streak)).isoformat() in seen:
        streak += 1
    return streak


def trend_for(body_fat_delta: float | None) -> Trend:
    if body_fat_delta is None:
        return Trend.BASELINE
    if body_fat_delta < -STABLE_BAND:
        return Trend.IMPROVING
    if body_fat_delta > STABLE_BAND:
        return Trend.DECLINING
    return Trend.STABLE


def _diff(current: float | None, previous: float | None, digits: int = 1) -> float | None:
    if current is None or previous is None:
        return None
    return round(current - previous, digits)


def _weight_of(scan: Scan) -> float | None:
    if scan.estimate and scan.estimate.weight_lb is not None:
        return scan.estimate.weight_lb
    return scan.weight_lb


class DeltaComparator:
    """Computes deltas, streak and trend versus completed history."""

    def __init__(self, store: ScanStore):
        self.store = store

    async def compute_deltas(
        self,
        user_id: str,
        date: str,
        current: BodyEstimate,
    ) -> DeltaComparison:
        """
        Compare the current estimate with the most recent completed scans.

        Args:
            user_id: Subject user
            date: Scan day (YYYY-MM-DD); only scans strictly before it count
            current: This scan's estimate

        Returns:
            DeltaComparison; `baseline=True` with null deltas when there is
            no completed history
        """
        history = await self.store.list_completed_before(user_id, date, limit=HISTORY_LIMIT)
        previous = [s for s in latest_per_date(history) if s.estimate is not None]

        if not previous:
            logger.info(f"No completed history for {user_id} before {date}, baseline scan")
            return DeltaComparison(baseline=True, streak_days=1, recent_scan_dates=[date])

        prev = previous[0]
        prev2 = previous[1] if len(previous) > 1 else None
        previous_dates = [s.date for s in previous]

        body_fat_delta = _diff(current.body_fat_percent, prev.estimate.body_fat_percent, 2)
        week = [
            d for d in previous_dates if 0 < days_between(d, date) < WEEK_DAYS
        ]

        deltas = DeltaComparison(
            baseline=False,
            weight_delta_lb=_diff(current.weight_lb, _weight_of(prev)),
            body_fat_delta=body_fat_delta,
            body_fat_delta_2=(
                _diff(current.body_fat_percent, prev2.estimate.body_fat_percent, 2)
                if prev2 else None
            ),
            lean_mass_delta_lb=_diff(current.lean_body_mass_lb, prev.estimate.lean_body_mass_lb),
            days_since_last_scan=days_between(prev.date, date),
            streak_days=count_streak(date, previous_dates),
            trend=trend_for(body_fat_delta),
            prev_scan_id=prev.scan_id,
            prev2_scan_id=prev2.scan_id if prev2 else None,
            recent_scan_dates=sorted(week + [date]),
        )

        logger.info(
            f"Deltas for {user_id}/{date}: bf={deltas.body_fat_delta}, "
            f"weight={deltas.weight_delta_lb}, streak={deltas.streak_days}, trend={deltas.trend.value}"
        )
        return deltas
