"""
Subscription tier limits relevant to the recommendation engine.
"""
from dataclasses import dataclass
from datetime import timedelta

from user.models import SubscriptionTier


@dataclass(frozen=True)
class TierLimits:
    refresh_cooldown: timedelta  # zero means unlimited refreshes
    recommendations_per_refresh: int


TIER_LIMITS = {
    SubscriptionTier.FREE: TierLimits(
        refresh_cooldown=timedelta(hours=4),
        recommendations_per_refresh=8,
    ),
    SubscriptionTier.PLUS: TierLimits(
        refresh_cooldown=timedelta(hours=1),
        recommendations_per_refresh=10,
    ),
    SubscriptionTier.PREMIUM: TierLimits(
        refresh_cooldown=timedelta(0),
        recommendations_per_refresh=10,
    ),
}


def get_tier_limits(tier: str) -> TierLimits:
    """Unknown tiers are treated as free."""
    return TIER_LIMITS.get(tier, TIER_LIMITS[SubscriptionTier.FREE])
