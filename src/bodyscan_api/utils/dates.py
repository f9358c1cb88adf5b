"""Date and time utility functions."""

from datetime import date, datetime, timezone

UTC_TZ = timezone.utc


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC_TZ)


def parse_scan_date(value: str) -> date:
    """
    Parse a scan date key.

    Args:
        value: Date in YYYY-MM-DD form

    Returns:
        Parsed date

    Raises:
        ValueError: If the string is not a valid ISO date
    """
    return date.fromisoformat(value)


def days_between(earlier: str, later: str) -> int:
    """
    Number of calendar days from one scan date key to another.

    Args:
        earlier: Earlier date (YYYY-MM-DD)
        later: Later date (YYYY-MM-DD)

    Returns:
        Day difference (negative if `earlier` is after `later`)
    """
    return (parse_scan_date(later) - parse_scan_date(earlier)).days


def format_duration(seconds: float) -> str:
    """
    Format seconds into human-readable duration.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "2m 5s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds / 60)
    remaining_secs = int(seconds % 60)

    if remaining_secs == 0:
        return f"{minutes}m"
    return f"{minutes}m {remaining_secs}s"
