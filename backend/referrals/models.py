import uuid

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from user.models import UserProfile


class ReferralStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    EXPIRED = 'expired', 'Expired'
    INVALID = 'invalid', 'Invalid'


class ReferralSource(models.TextChoices):
    SMS = 'sms', 'SMS'
    WHATSAPP = 'whatsapp', 'WhatsApp'
    INSTAGRAM = 'instagram', 'Instagram'
    FACEBOOK = 'facebook', 'Facebook'
    LINK = 'link', 'Link'
    OTHER = 'other', 'Other'


class RewardType(models.TextChoices):
    INVITER_BONUS = 'inviter_bonus', 'Inviter Bonus'
    INVITEE_WELCOME = 'invitee_welcome', 'Invitee Welcome'
    MILESTONE_3 = 'milestone_3', 'Milestone 3'
    MILESTONE_10 = 'milestone_10', 'Milestone 10'
    MILESTONE_25 = 'milestone_25', 'Milestone 25'
    MILESTONE_100 = 'milestone_100', 'Milestone 100'


MILESTONE_REWARD_TYPES = (
    RewardType.MILESTONE_3,
    RewardType.MILESTONE_10,
    RewardType.MILESTONE_25,
    RewardType.MILESTONE_100,
)


class RewardStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    GRANTED = 'granted', 'Granted'
    REVOKED = 'revoked', 'Revoked'
    EXPIRED = 'expired', 'Expired'


class Referral(models.Model):
    """
    Directed referrer -> referred relationship created when a code is redeemed.
    A user can be referred only once.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    referrer = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='referrals_made'
    )
    referred = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='referrals_received'
    )
    referral_code = models.CharField(max_length=10)
    status = models.CharField(
        max_length=20,
        choices=ReferralStatus.choices,
        default=ReferralStatus.PENDING
    )
    source = models.CharField(
        max_length=20,
        choices=ReferralSource.choices,
        default=ReferralSource.LINK
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'referrals'
        constraints = [
            models.UniqueConstraint(fields=['referrer', 'referred'], name='unique_referral_pair'),
            models.UniqueConstraint(fields=['referred'], name='unique_referred_user'),
            models.CheckConstraint(condition=~Q(referrer=F('referred')), name='no_self_referral'),
        ]
        indexes = [
            models.Index(fields=['referrer', 'status'], name='referral_referrer_status_idx'),
            models.Index(fields=['referral_code'], name='referral_code_idx'),
        ]

    def __str__(self):
        return f"{self.referrer_id} -> {self.referred_id} ({self.status})"


class ReferralReward(models.Model):
    """Plus-days reward earned through the referral program."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='referral_rewards'
    )
    referral = models.ForeignKey(
        Referral,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rewards'
    )
    reward_type = models.CharField(max_length=30, choices=RewardType.choices)
    description = models.CharField(max_length=255, blank=True)
    plus_days = models.PositiveIntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=RewardStatus.choices,
        default=RewardStatus.PENDING
    )
    granted_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'referral_rewards'
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'referral', 'reward_type'],
                name='unique_reward_per_referral'
            ),
            models.UniqueConstraint(
                fields=['user', 'reward_type'],
                condition=Q(reward_type__in=MILESTONE_REWARD_TYPES),
                name='unique_milestone_reward'
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'status'], name='reward_user_status_idx'),
        ]

    def __str__(self):
        return f"{self.reward_type} for {self.user_id} ({self.status})"
