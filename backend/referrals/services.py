"""
Referral Ledger: code redemption, referral completion and reward grants.

Exactly-once guarantees come from the database: completion is a conditional
UPDATE on status=pending, and every reward insert runs under a unique
constraint inside its own savepoint, so a duplicate grant is an IntegrityError
that the ledger treats as "already granted".
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q, Sum

from core.clock import Clock, get_clock
from core.exceptions import DuplicateReferralError, InvalidCodeError, SelfReferralError
from referrals.models import Referral, ReferralReward, ReferralSource, ReferralStatus, RewardStatus
from referrals.rewards import Recipient, RewardRule, next_milestone, previous_milestone, rules_for
from user.models import SubscriptionTier, UserProfile

logger = logging.getLogger(__name__)

NO_PENDING_REFERRAL = 'no_pending_referral'


@dataclass
class CompletionResult:
    completed: bool
    reason: Optional[str] = None
    referral: Optional[Referral] = None
    rewards: List[ReferralReward] = field(default_factory=list)


class ReferralLedger:

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or get_clock()

    def redeem_code(self, referred: UserProfile, code: str, source: str = ReferralSource.LINK) -> Referral:
        """
        Link `referred` to the owner of `code`.

        Raises:
            InvalidCodeError: no user owns the code
            SelfReferralError: the code belongs to `referred`
            DuplicateReferralError: `referred` has already been referred
        """
        code = (code or '').strip().upper()
        referrer = UserProfile.objects.filter(referral_code=code).first() if code else None
        if referrer is None:
            logger.warning(f"User {referred.pk} redeemed unknown referral code {code!r}")
            raise InvalidCodeError()
        if referrer.pk == referred.pk:
            logger.warning(f"User {referred.pk} tried to redeem their own referral code")
            raise SelfReferralError()

        if source not in ReferralSource.values:
            source = ReferralSource.OTHER

        now = self.clock.now()
        try:
            with transaction.atomic():
                referral = Referral.objects.create(
                    referrer=referrer,
                    referred=referred,
                    referral_code=code,
                    source=source,
                    status=ReferralStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
                UserProfile.objects.filter(pk=referred.pk).update(referred_by=referrer)
        except IntegrityError:
            logger.warning(f"User {referred.pk} has already been referred")
            raise DuplicateReferralError()

        referred.referred_by = referrer
        logger.info(f"Referral created: {referrer.pk} -> {referred.pk} via {source}")
        return referral

    def complete_referral(self, referred: UserProfile) -> CompletionResult:
        """
        Complete the pending referral of `referred`, if any, and grant the rewards
        earned by it. Calling this again for the same user completes nothing.
        """
        now = self.clock.now()

        with transaction.atomic():
            referral = Referral.objects.filter(referred=referred, status=ReferralStatus.PENDING).first()
            if referral is None:
                return CompletionResult(completed=False, reason=NO_PENDING_REFERRAL)

            updated = Referral.objects.filter(
                pk=referral.pk,
                status=ReferralStatus.PENDING
            ).update(
                status=ReferralStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
            )
            if not updated:
                return CompletionResult(completed=False, reason=NO_PENDING_REFERRAL)

            UserProfile.objects.filter(pk=referral.referrer_id).update(referral_count=F('referral_count') + 1)
            count = UserProfile.objects.values_list('referral_count', flat=True).get(pk=referral.referrer_id)

            rewards = []
            for rule in rules_for(count):
                recipient_id = referral.referrer_id if rule.recipient == Recipient.REFERRER else referral.referred_id
                reward = self._grant(recipient_id, referral, rule, now)
                if reward is not None:
                    rewards.append(reward)

        referral.refresh_from_db()
        logger.info(f"Referral {referral.pk} completed, referrer {referral.referrer_id} now has {count} referrals")
        return CompletionResult(completed=True, referral=referral, rewards=rewards)

    def _grant(self, user_id, referral: Referral, rule: RewardRule, now: datetime) -> Optional[ReferralReward]:
        try:
            with transaction.atomic():
                reward = ReferralReward.objects.create(
                    user_id=user_id,
                    referral=referral,
                    reward_type=rule.reward_type,
                    description=rule.description,
                    plus_days=rule.plus_days,
                    status=RewardStatus.GRANTED,
                    granted_at=now,
                    expires_at=now + rule.expires_after if rule.expires_after else None,
                    created_at=now,
                )
        except IntegrityError:
            logger.info(f"Reward {rule.reward_type} already granted to user {user_id}")
            return None

        logger.info(f"Granted {rule.reward_type} ({rule.plus_days} Plus days) to user {user_id}")
        return reward

    def active_rewards(self, user, now: Optional[datetime] = None):
        """Granted rewards that have not expired yet."""
        now = now or self.clock.now()
        return ReferralReward.objects.filter(
            user=user,
            status=RewardStatus.GRANTED,
        ).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        ).order_by('-granted_at')

    def apply_granted_rewards(self, user, now: Optional[datetime] = None) -> int:
        """
        Turn active, not yet applied rewards into subscription time.

        A user on the free tier (or whose paid tier has lapsed) is moved to Plus
        starting now; an active subscription is extended from its current end.
        Open-ended paid subscriptions have no end to extend and are left alone.

        Returns:
            Number of Plus days added
        """
        now = now or self.clock.now()

        with transaction.atomic():
            profile = UserProfile.objects.select_for_update().get(pk=getattr(user, 'pk', user))
            rewards = list(self.active_rewards(profile, now).filter(applied_at__isnull=True))
            plus_days = sum(reward.plus_days for reward in rewards)
            if not plus_days:
                return 0

            if profile.effective_tier(now) == SubscriptionTier.FREE:
                profile.subscription_tier = SubscriptionTier.PLUS
                profile.subscription_expires_at = now + timedelta(days=plus_days)
            elif profile.subscription_expires_at is not None:
                profile.subscription_expires_at += timedelta(days=plus_days)
            else:
                return 0

            profile.save(update_fields=['subscription_tier', 'subscription_expires_at'])
            ReferralReward.objects.filter(pk__in=[reward.pk for reward in rewards]).update(applied_at=now)

        logger.info(f"Applied {plus_days} Plus days to user {profile.pk}")
        return plus_days

    def expire_rewards(self, now: Optional[datetime] = None) -> int:
        """Batch: granted rewards past expires_at that were never applied become expired."""
        now = now or self.clock.now()
        count = ReferralReward.objects.filter(
            status=RewardStatus.GRANTED,
            applied_at__isnull=True,
            expires_at__lt=now,
        ).update(status=RewardStatus.EXPIRED)
        if count:
            logger.info(f"Expired {count} unused referral rewards")
        return count

    def get_stats(self, user: UserProfile) -> dict:
        referrals = Referral.objects.filter(referrer=user).aggregate(
            total=Count('id'),
            pending=Count('id', filter=Q(status=ReferralStatus.PENDING)),
            completed=Count('id', filter=Q(status=ReferralStatus.COMPLETED)),
        )
        rewards = ReferralReward.objects.filter(user=user, status=RewardStatus.GRANTED).aggregate(
            count=Count('id'),
            plus_days=Sum('plus_days'),
        )

        count = user.referral_count
        milestone = next_milestone(count)
        if milestone is None:
            progress = 100.0
        else:
            previous = previous_milestone(count)
            progress = round((count - previous) / (milestone - previous) * 100, 1)

        return {
            'referral_code': user.referral_code,
            'share_link': self.share_link(user.referral_code),
            'referral_count': count,
            'total_referrals': referrals['total'],
            'pending_referrals': referrals['pending'],
            'completed_referrals': referrals['completed'],
            'rewards_earned': rewards['count'],
            'plus_days_earned': rewards['plus_days'] or 0,
            'next_milestone': milestone,
            'progress_to_next_milestone': progress,
        }

    def leaderboard(self, limit: int = 10) -> List[dict]:
        profiles = (
            UserProfile.objects.select_related('user')
            .filter(referral_count__gt=0)
            .order_by('-referral_count', 'created_at')[:limit]
        )
        return [
            {
                'rank': rank,
                'user_id': profile.pk,
                'username': profile.user.username,
                'referral_count': profile.referral_count,
            }
            for rank, profile in enumerate(profiles, start=1)
        ]

    @staticmethod
    def share_link(code: str) -> str:
        base_url = settings.ENGINE.get('REFERRAL_SHARE_BASE_URL', 'https://loopapp.com/join/')
        return f"{base_url}{code}"
