import uuid
from datetime import timedelta

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from user.models import UserProfile


class TrackingStatus(models.TextChoices):
    """Lifecycle of a recommendation for one user"""
    PENDING = 'pending', 'Pending'
    VIEWED = 'viewed', 'Viewed'
    ACCEPTED = 'accepted', 'Accepted'
    DECLINED = 'declined', 'Declined'
    NOT_INTERESTED = 'not_interested', 'Not Interested'
    EXPIRED = 'expired', 'Expired'


# Allowed moves of the state machine: source -> targets.
# accepted and not_interested are terminal for resurfacing; declined and expired are not.
TRANSITIONS = {
    TrackingStatus.PENDING: {
        TrackingStatus.VIEWED,
        TrackingStatus.ACCEPTED,
        TrackingStatus.DECLINED,
        TrackingStatus.EXPIRED,
        TrackingStatus.NOT_INTERESTED,
    },
    TrackingStatus.VIEWED: {
        TrackingStatus.ACCEPTED,
        TrackingStatus.DECLINED,
        TrackingStatus.EXPIRED,
        TrackingStatus.NOT_INTERESTED,
        TrackingStatus.PENDING,  # resurfaced
    },
    TrackingStatus.DECLINED: {
        TrackingStatus.ACCEPTED,
        TrackingStatus.DECLINED,
        TrackingStatus.NOT_INTERESTED,
        TrackingStatus.PENDING,  # resurfaced
    },
    TrackingStatus.EXPIRED: {
        TrackingStatus.ACCEPTED,
        TrackingStatus.DECLINED,
        TrackingStatus.NOT_INTERESTED,
        TrackingStatus.PENDING,  # resurfaced
    },
    TrackingStatus.ACCEPTED: {
        TrackingStatus.ACCEPTED,
        TrackingStatus.NOT_INTERESTED,
    },
    TrackingStatus.NOT_INTERESTED: {
        TrackingStatus.NOT_INTERESTED,
    },
}


def sources_for(target: str) -> list:
    """Statuses from which `target` may be entered."""
    return [source for source, targets in TRANSITIONS.items() if target in targets]


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def default_expires_at():
    return timezone.now() + timedelta(days=settings.ENGINE['PENDING_TTL_DAYS'])


class RecommendationTracking(models.Model):
    """
    Durable per-(user, place) record of a recommendation's state.
    Created the first time a place is surfaced to a user and mutated on every
    later show/view/respond/block event. Only deleted with the user.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name='recommendation_tracking')

    # Place reference
    external_place_id = models.CharField(max_length=255, help_text="Place ID from the external provider")
    place_name = models.CharField(max_length=255)
    category = models.CharField(max_length=100)
    recommendation_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Snapshot of the recommendation used to re-render it without re-fetching"
    )

    status = models.CharField(
        max_length=30,
        choices=TrackingStatus.choices,
        default=TrackingStatus.PENDING
    )
    confidence_score = models.FloatField(
        validators=[MinValueValidator(0.0), MaxValueValidator(1.0)],
        help_text="Score from 0.0 to 1.0"
    )

    # Resurfacing
    last_shown_at = models.DateTimeField(default=timezone.now)
    refresh_count = models.IntegerField(validators=[MinValueValidator(0)], default=0)
    block_reason = models.TextField(null=True, blank=True)

    # Responses
    viewed_at = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.CharField(max_length=100, null=True, blank=True)

    # Timestamps are written by the tracking service from its clock
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(
        default=default_expires_at,
        help_text="Only meaningful while status is pending"
    )

    class Meta:
        db_table = 'recommendations_tracking'
        unique_together = ('user', 'external_place_id')
        indexes = [
            models.Index(fields=['user', 'status', 'last_shown_at'], name='tracking_user_status_idx'),
            models.Index(fields=['status', 'expires_at'], name='tracking_expiry_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(confidence_score__gte=0.0) & Q(confidence_score__lte=1.0),
                name='tracking_confidence_score_range',
            ),
            models.CheckConstraint(
                condition=Q(refresh_count__gte=0),
                name='tracking_refresh_count_non_negative',
            ),
        ]

    def __str__(self):
        return f"{self.place_name} for {self.user_id} - {self.status}"


class BlockedActivity(models.Model):
    """
    Explicit "never show again" entry for a (user, place) pair.
    Independent of RecommendationTracking so that a place can be blocked
    before it was ever recommended.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name='blocked_activities')
    external_place_id = models.CharField(max_length=255)
    place_name = models.CharField(max_length=255, blank=True, default="")
    reason = models.TextField(blank=True, default="")
    blocked_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'recommendations_blocked_activity'
        unique_together = ('user', 'external_place_id')

    def __str__(self):
        return f"Blocked: {self.place_name or self.external_place_id} for {self.user_id}"


class RefreshHistory(models.Model):
    """
    One row per admitted refresh, kept for cost and usage analytics.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name='refresh_history')
    tier = models.CharField(max_length=20)
    recommendations_count = models.IntegerField(validators=[MinValueValidator(0)], default=0)
    data_source = models.CharField(max_length=50, help_text="Name of the candidate source used")
    geohash = models.CharField(max_length=12, blank=True, default="", help_text="Geohash of the refresh location")
    refreshed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'recommendations_refresh_history'
        indexes = [
            models.Index(fields=['user', '-refreshed_at'], name='refresh_history_user_idx'),
        ]

    def __str__(self):
        return f"Refresh by {self.user_id} at {self.refreshed_at}"
