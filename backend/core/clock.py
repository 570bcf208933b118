"""
Clock abstraction used by every time-dependent policy in the engine.

Services receive a clock instead of calling timezone.now() directly so that
cooldowns, resurfacing windows and expiry can be evaluated at any instant.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

from django.utils import timezone


class Clock:
    """Source of the current time (timezone-aware)."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time from Django's timezone utilities."""

    def now(self) -> datetime:
        return timezone.now()


class FrozenClock(Clock):
    """
    Clock pinned to a fixed instant. Can be moved forward explicitly.
    Mainly used by tests and by batch jobs that evaluate a whole run at one instant.
    """

    def __init__(self, instant: datetime):
        if timezone.is_naive(instant):
            instant = timezone.make_aware(instant, dt_timezone.utc)
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


_default_clock = SystemClock()


def get_clock() -> Clock:
    return _default_clock
