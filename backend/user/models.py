import uuid

from django.core.validators import MinValueValidator
from django.db import models
from django.conf import settings


REFERRAL_CODE_LENGTH = 6


class SubscriptionTier(models.TextChoices):
    FREE = 'free', 'Free'
    PLUS = 'plus', 'Plus'
    PREMIUM = 'premium', 'Premium'


def generate_referral_code() -> str:
    """Random 6 character uppercase hex code that no other profile owns yet."""
    while True:
        code = uuid.uuid4().hex[:REFERRAL_CODE_LENGTH].upper()
        if not UserProfile.objects.filter(referral_code=code).exists():
            return code


class UserProfile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile"
    )
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    preferences_vector = models.JSONField(
        default=dict,
        blank=True,
        help_text="Category -> weight map used when scoring candidate activities"
    )

    # Subscription
    subscription_tier = models.CharField(
        max_length=20,
        choices=SubscriptionTier.choices,
        default=SubscriptionTier.FREE
    )
    subscription_expires_at = models.DateTimeField(null=True, blank=True)

    # Refresh cooldown state, stamped by every admitted refresh
    last_refresh_at = models.DateTimeField(null=True, blank=True)

    # Referral program
    referral_code = models.CharField(max_length=10, unique=True, blank=True)
    referred_by = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='referred_profiles'
    )
    referral_count = models.IntegerField(validators=[MinValueValidator(0)], default=0)

    onboarding_completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['referred_by'], name='user_profile_referred_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} ({self.subscription_tier})"

    def save(self, *args, **kwargs):
        if not self.referral_code:
            self.referral_code = generate_referral_code()
        else:
            self.referral_code = self.referral_code.upper()
        super().save(*args, **kwargs)

    def effective_tier(self, now) -> str:
        """Paid tiers fall back to free once the subscription has lapsed."""
        if (
            self.subscription_tier != SubscriptionTier.FREE
            and self.subscription_expires_at is not None
            and self.subscription_expires_at <= now
        ):
            return SubscriptionTier.FREE
        return self.subscription_tier
