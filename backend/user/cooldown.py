"""
Cooldown Gate: decides whether a user may refresh recommendations now,
based on subscription tier and the time of the last admitted refresh.
"""
import logging
import math
from datetime import datetime
from typing import Optional

from django.db.models import Q

from user.models import UserProfile
from user.tiers import get_tier_limits

logger = logging.getLogger(__name__)


class CooldownGate:
    """
    Pure admission checks plus the atomic compare-and-set that admits a refresh.

    The check and the stamp of last_refresh_at happen in one UPDATE statement,
    so two concurrent refresh requests for the same user cannot both be admitted
    inside one cooldown window.
    """

    @staticmethod
    def can_refresh(last_refresh_at: Optional[datetime], tier: str, now: datetime) -> bool:
        """
        Args:
            last_refresh_at: Time of the last admitted refresh, None if never refreshed
            tier: Subscription tier (free, plus, premium)
            now: Current time

        Returns:
            True if at least the tier cooldown has elapsed since last_refresh_at
        """
        cooldown = get_tier_limits(tier).refresh_cooldown
        if not cooldown:
            return True
        if last_refresh_at is None:
            return True
        return now - last_refresh_at >= cooldown

    @staticmethod
    def seconds_until_refresh(last_refresh_at: Optional[datetime], tier: str, now: datetime) -> int:
        """
        Whole seconds until the next refresh is allowed, 0 if allowed now.
        Partial seconds round up so that a positive answer never admits early.
        """
        cooldown = get_tier_limits(tier).refresh_cooldown
        if not cooldown or last_refresh_at is None:
            return 0
        remaining = (last_refresh_at + cooldown - now).total_seconds()
        return max(0, math.ceil(remaining))

    def admit_refresh(self, profile: UserProfile, now: datetime) -> bool:
        """
        Admit a refresh and stamp last_refresh_at=now in the same statement.

        Args:
            profile: The requesting user's profile
            now: Current time

        Returns:
            True if admitted. On success profile.last_refresh_at is updated in memory too.
        """
        tier = profile.effective_tier(now)
        cooldown = get_tier_limits(tier).refresh_cooldown

        queryset = UserProfile.objects.filter(pk=profile.pk)
        if cooldown:
            queryset = queryset.filter(
                Q(last_refresh_at__isnull=True) | Q(last_refresh_at__lte=now - cooldown)
            )

        admitted = queryset.update(last_refresh_at=now) == 1
        if admitted:
            profile.last_refresh_at = now
            logger.info(f"Refresh admitted for user {profile.pk} (tier={tier})")
        else:
            logger.info(f"Refresh denied for user {profile.pk} (tier={tier}): cooldown active")
        return admitted

    def release_refresh(self, profile: UserProfile, previous: Optional[datetime], stamped_at: datetime) -> bool:
        """
        Give back an admitted refresh whose work failed afterwards.
        Only restores the previous stamp if nobody else has stamped since.
        """
        restored = UserProfile.objects.filter(
            pk=profile.pk,
            last_refresh_at=stamped_at
        ).update(last_refresh_at=previous) == 1
        if restored:
            profile.last_refresh_at = previous
            logger.info(f"Refresh released for user {profile.pk}")
        return restored

    def refresh_status(self, profile: UserProfile, now: datetime) -> dict:
        tier = profile.effective_tier(now)
        return {
            'tier': tier,
            'can_refresh': self.can_refresh(profile.last_refresh_at, tier, now),
            'seconds_until_refresh': self.seconds_until_refresh(profile.last_refresh_at, tier, now),
            'last_refresh_at': profile.last_refresh_at,
        }
