"""
Resurfacing Policy: decides whether a previously surfaced recommendation
may be offered to the user again.

A decline is a stronger negative signal than silently ignoring a card, so it
gets a shorter quarantine: the user actively said no, but preferences drift.
Viewing without responding, or expiring unseen, waits longer to avoid fatigue.
"""
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings

from recommendations.models import TrackingStatus


DECLINED_WINDOW = timedelta(days=3)
IGNORED_WINDOW = timedelta(days=7)

NEVER_RESURFACE = frozenset({TrackingStatus.NOT_INTERESTED, TrackingStatus.ACCEPTED})
IGNORED_STATUSES = frozenset({TrackingStatus.VIEWED, TrackingStatus.EXPIRED})


def configured_windows():
    """(declined_window, ignored_window) from settings.ENGINE, falling back to 3 and 7 days."""
    engine = getattr(settings, 'ENGINE', {})
    return (
        timedelta(days=engine.get('DECLINED_RESURFACE_DAYS', DECLINED_WINDOW.days)),
        timedelta(days=engine.get('IGNORED_RESURFACE_DAYS', IGNORED_WINDOW.days)),
    )


def is_resurfaceable(
    record,
    now: datetime,
    declined_window: Optional[timedelta] = None,
    ignored_window: Optional[timedelta] = None,
) -> bool:
    """
    Pure function: same (record, now) always gives the same answer and the
    record is never touched.

    Args:
        record: Anything with `status` and `last_shown_at` (a RecommendationTracking row)
        now: Evaluation instant
        declined_window: Quarantine for declined records (default 3 days)
        ignored_window: Quarantine for viewed/expired records (default 7 days)

    Returns:
        True if the record may be shown again at `now`
    """
    declined_window = DECLINED_WINDOW if declined_window is None else declined_window
    ignored_window = IGNORED_WINDOW if ignored_window is None else ignored_window

    status = record.status
    if status in NEVER_RESURFACE:
        return False

    elapsed = now - record.last_shown_at
    if status == TrackingStatus.DECLINED:
        return elapsed >= declined_window
    if status in IGNORED_STATUSES:
        return elapsed >= ignored_window

    # pending is already live, not a resurfacing candidate
    return False
