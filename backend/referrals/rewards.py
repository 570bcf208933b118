"""
Referral reward rules, evaluated after every completed referral.

Each rule names who receives the reward, when it is earned (as a function of
the referrer's new referral_count) and what it is worth. Adding a tier is a
new row here, not a new branch in the ledger.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional

from referrals.models import RewardType


class Recipient:
    REFERRER = 'referrer'
    REFERRED = 'referred'


@dataclass(frozen=True)
class RewardRule:
    reward_type: str
    recipient: str
    plus_days: int
    description: str
    applies: Callable[[int], bool]
    expires_after: Optional[timedelta] = None


REWARD_RULES: List[RewardRule] = [
    RewardRule(
        reward_type=RewardType.INVITEE_WELCOME,
        recipient=Recipient.REFERRED,
        plus_days=7,
        description="Welcome bonus: 7 days of Plus",
        applies=lambda count: True,
        expires_after=timedelta(days=7),
    ),
    RewardRule(
        reward_type=RewardType.INVITER_BONUS,
        recipient=Recipient.REFERRER,
        plus_days=30,
        description="Invited 3 friends: 1 month of Plus",
        applies=lambda count: count > 0 and count % 3 == 0,
        expires_after=timedelta(days=90),
    ),
    RewardRule(
        reward_type=RewardType.MILESTONE_10,
        recipient=Recipient.REFERRER,
        plus_days=90,
        description="10 referrals: 3 months of Plus",
        applies=lambda count: count == 10,
    ),
    RewardRule(
        reward_type=RewardType.MILESTONE_25,
        recipient=Recipient.REFERRER,
        plus_days=180,
        description="25 referrals: 6 months of Plus",
        applies=lambda count: count == 25,
    ),
    RewardRule(
        reward_type=RewardType.MILESTONE_100,
        recipient=Recipient.REFERRER,
        plus_days=365,
        description="100 referrals: 1 year of Plus",
        applies=lambda count: count == 100,
    ),
]

# How far ahead next_milestone looks before giving up
MILESTONE_LOOKAHEAD = 1000


def rules_for(count: int) -> List[RewardRule]:
    """Rules earned by a completion that brought the referrer to `count`."""
    return [rule for rule in REWARD_RULES if rule.applies(count)]


def earns_referrer_reward(count: int) -> bool:
    return any(rule.recipient == Recipient.REFERRER and rule.applies(count) for rule in REWARD_RULES)


def next_milestone(count: int) -> Optional[int]:
    """Smallest referral count above `count` that earns the referrer a reward."""
    for candidate in range(count + 1, count + MILESTONE_LOOKAHEAD + 1):
        if earns_referrer_reward(candidate):
            return candidate
    return None


def previous_milestone(count: int) -> int:
    """Largest referral count up to `count` that earned the referrer a reward, 0 if none."""
    for candidate in range(count, 0, -1):
        if earns_referrer_reward(candidate):
            return candidate
    return 0
