"""
Helper utilities
"""

from datetime import date, datetime, timedelta, timezone
from typing import Tuple


def utc_now() -> datetime:
    """Current timezone-aware UTC time"""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """
    Current UTC calendar day

    Daily windows are always computed on the UTC calendar date, never on a
    wall-clock delta from the last action.
    """
    return utc_now().date()


def period_bounds(period_type: str, day: date) -> Tuple[date, date]:
    """
    Inclusive start/end dates of the period containing a day

    Args:
        period_type: "daily" or "weekly" (ISO weeks, Monday start)
        day: Day inside the period

    Returns:
        (period_start, period_end)
    """
    if period_type == "weekly":
        start = day - timedelta(days=day.weekday())
        return start, start + timedelta(days=6)
    return day, day


def explorer_tx_url(base_url: str, tx_hash: str) -> str:
    """Block explorer link for a transaction hash"""
    return f"{base_url.rstrip('/')}/tx/{tx_hash}"
