"""
Tracking Store and Block List.

All mutations are conditional UPDATEs or locked read-modify-write inside
transaction.atomic, keyed by (user, external_place_id), so concurrent callers
for the same user never lose refresh_count increments or status changes.
"""
import logging
from datetime import timedelta
from typing import Dict, Iterable, Optional, Set

from django.conf import settings
from django.db import transaction
from django.db.models import Count, DateTimeField, F, Value
from django.db.models.functions import Coalesce

from core.clock import Clock, get_clock
from core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from recommendations.models import (
    BlockedActivity,
    RecommendationTracking,
    TrackingStatus,
    can_transition,
    sources_for,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_REASON = 'User chose "Never show again"'
REFRESHED_AWAY_REASON = 'refreshed_away'


class ResponseOutcome:
    ACCEPT = 'accept'
    DECLINE = 'decline'

    TARGETS = {
        ACCEPT: TrackingStatus.ACCEPTED,
        DECLINE: TrackingStatus.DECLINED,
    }


def _clamp_score(score: float) -> float:
    return max(0.0, min(1.0, float(score or 0.0)))


class TrackingStore:
    """
    Durable per-(user, place) recommendation state.
    `user` arguments accept a UserProfile or its primary key.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or get_clock()

    @property
    def pending_ttl(self) -> timedelta:
        return timedelta(days=settings.ENGINE.get('PENDING_TTL_DAYS', 7))

    def get(self, user, place_id: str) -> RecommendationTracking:
        try:
            return RecommendationTracking.objects.get(user=user, external_place_id=place_id)
        except RecommendationTracking.DoesNotExist:
            raise NotFoundError(f"No recommendation tracking for place {place_id}")

    def records_for(self, user, place_ids: Iterable[str]) -> Dict[str, RecommendationTracking]:
        """Existing records for the given places, keyed by external_place_id."""
        records = RecommendationTracking.objects.filter(user=user, external_place_id__in=list(place_ids))
        return {record.external_place_id: record for record in records}

    def upsert_shown(
        self,
        user,
        place_id: str,
        payload: dict,
        confidence_score: float,
        place_name: str = "",
        category: str = "",
        reopen: bool = False,
    ) -> RecommendationTracking:
        """
        Record that a place was surfaced to the user.

        Creates a pending record the first time. Afterwards stamps
        last_shown_at=now and increments refresh_count; refresh_count never
        decreases. With reopen=True a declined/viewed/expired record also
        returns to pending with a fresh expiry.

        Returns:
            The record as stored after the write
        """
        now = self.clock.now()
        confidence_score = _clamp_score(confidence_score)

        with transaction.atomic():
            record, created = RecommendationTracking.objects.select_for_update().get_or_create(
                user_id=getattr(user, 'pk', user),
                external_place_id=place_id,
                defaults={
                    'place_name': place_name,
                    'category': category,
                    'recommendation_data': payload or {},
                    'status': TrackingStatus.PENDING,
                    'confidence_score': confidence_score,
                    'last_shown_at': now,
                    'refresh_count': 0,
                    'created_at': now,
                    'updated_at': now,
                    'expires_at': now + self.pending_ttl,
                }
            )
            if created:
                logger.info(f"Tracking created for user {record.user_id}, place {place_id}")
                return record

            updates = {
                'last_shown_at': now,
                'refresh_count': F('refresh_count') + 1,
                'updated_at': now,
                'confidence_score': confidence_score,
            }
            if payload:
                updates['recommendation_data'] = payload
            if place_name:
                updates['place_name'] = place_name
            if category:
                updates['category'] = category
            if reopen and record.status != TrackingStatus.PENDING and can_transition(record.status, TrackingStatus.PENDING):
                updates.update(
                    status=TrackingStatus.PENDING,
                    expires_at=now + self.pending_ttl,
                    viewed_at=None,
                    responded_at=None,
                    decline_reason=None,
                )
                logger.info(f"Resurfacing place {place_id} for user {record.user_id} (was {record.status})")

            RecommendationTracking.objects.filter(pk=record.pk).update(**updates)

        record.refresh_from_db()
        return record

    def mark_viewed(self, user, place_id: str) -> bool:
        """
        pending -> viewed; viewed_at is only set if it was unset.
        No-op (returns False) for records already viewed or past pending.
        """
        now = self.clock.now()
        updated = RecommendationTracking.objects.filter(
            user=user,
            external_place_id=place_id,
            status=TrackingStatus.PENDING,
        ).update(
            status=TrackingStatus.VIEWED,
            viewed_at=Coalesce('viewed_at', Value(now, output_field=DateTimeField())),
            updated_at=now,
        )
        if updated:
            return True
        if not RecommendationTracking.objects.filter(user=user, external_place_id=place_id).exists():
            raise NotFoundError(f"No recommendation tracking for place {place_id}")
        return False

    def respond(self, user, place_id: str, outcome: str, decline_reason: Optional[str] = None) -> RecommendationTracking:
        """
        Accept or decline a recommendation.

        Raises:
            NotFoundError: no tracking record exists for the pair
            InvalidTransitionError: the record is not_interested, or accepted and the outcome is decline
            ConflictError: a concurrent write moved the record between the update and the re-read
        """
        if outcome not in ResponseOutcome.TARGETS:
            raise ValueError(f"Unknown outcome: {outcome}")
        target = ResponseOutcome.TARGETS[outcome]
        if target != TrackingStatus.DECLINED or not decline_reason:
            decline_reason = None
        else:
            decline_reason = decline_reason[:100]
        now = self.clock.now()

        updated = RecommendationTracking.objects.filter(
            user=user,
            external_place_id=place_id,
            status__in=sources_for(target),
        ).update(
            status=target,
            responded_at=now,
            updated_at=now,
            decline_reason=decline_reason,
        )
        record = self.get(user, place_id)
        if not updated:
            if record.status in sources_for(target):
                logger.warning(f"Lost update race on place {place_id} for user {record.user_id}")
                raise ConflictError(f"Place {place_id} changed while responding, retry")
            logger.warning(f"Rejected {outcome} for place {place_id}: record is {record.status}")
            raise InvalidTransitionError(f"Cannot move place {place_id} from {record.status} to {target}")

        logger.info(f"User {record.user_id} responded {outcome} to place {place_id}")
        return record

    def block(self, user, place_id: str, reason: Optional[str] = None, place_name: str = "") -> BlockedActivity:
        """
        Permanently suppress a place: marks any tracking record not_interested
        and inserts the BlockedActivity entry. Both writes share one transaction
        and repeating the call is harmless.
        """
        now = self.clock.now()
        reason = reason or DEFAULT_BLOCK_REASON
        tracking = RecommendationTracking.objects.filter(user=user, external_place_id=place_id)

        with transaction.atomic():
            if not place_name:
                place_name = tracking.values_list('place_name', flat=True).first() or ""

            entry, created = BlockedActivity.objects.get_or_create(
                user_id=getattr(user, 'pk', user),
                external_place_id=place_id,
                defaults={
                    'place_name': place_name,
                    'reason': reason,
                    'blocked_at': now,
                }
            )
            tracking.update(
                status=TrackingStatus.NOT_INTERESTED,
                block_reason=reason,
                responded_at=now,
                updated_at=now,
            )

        if created:
            logger.info(f"Blocked place {place_id} for user {entry.user_id}")
        return entry

    def expire_stale(self, user=None) -> int:
        """
        Batch: pending records whose expires_at has passed become expired.
        Idempotent and safe to run concurrently with per-record operations.
        """
        now = self.clock.now()
        queryset = RecommendationTracking.objects.filter(
            status=TrackingStatus.PENDING,
            expires_at__lt=now,
        )
        if user is not None:
            queryset = queryset.filter(user=user)
        count = queryset.update(status=TrackingStatus.EXPIRED, updated_at=now)
        if count:
            logger.info(f"Expired {count} stale pending recommendations")
        return count

    def clear_pending(self, user) -> int:
        """
        The user refreshed their feed: whatever was still pending counts as
        declined from now, which starts its resurfacing quarantine.
        """
        now = self.clock.now()
        return RecommendationTracking.objects.filter(
            user=user,
            status=TrackingStatus.PENDING,
        ).update(
            status=TrackingStatus.DECLINED,
            decline_reason=REFRESHED_AWAY_REASON,
            last_shown_at=now,
            responded_at=now,
            updated_at=now,
        )

    def get_stats(self, user) -> dict:
        counts = {
            row['status']: row['count']
            for row in RecommendationTracking.objects.filter(user=user).values('status').annotate(count=Count('id'))
        }
        total = sum(counts.values())
        accepted = counts.get(TrackingStatus.ACCEPTED, 0)
        return {
            'total': total,
            'pending': counts.get(TrackingStatus.PENDING, 0),
            'viewed': counts.get(TrackingStatus.VIEWED, 0),
            'accepted': accepted,
            'declined': counts.get(TrackingStatus.DECLINED, 0),
            'not_interested': counts.get(TrackingStatus.NOT_INTERESTED, 0),
            'expired': counts.get(TrackingStatus.EXPIRED, 0),
            'acceptance_rate': (accepted / total * 100) if total else 0.0,
        }


class BlockList:
    """
    Answers "is this place blocked for this user?" from both sources:
    an explicit BlockedActivity entry, or a tracking record in not_interested.
    """

    def is_blocked(self, user, place_id: str) -> bool:
        if BlockedActivity.objects.filter(user=user, external_place_id=place_id).exists():
            return True
        return RecommendationTracking.objects.filter(
            user=user,
            external_place_id=place_id,
            status=TrackingStatus.NOT_INTERESTED,
        ).exists()

    def blocked_place_ids(self, user, place_ids: Iterable[str]) -> Set[str]:
        """Subset of place_ids blocked for the user, two queries regardless of size."""
        place_ids = list(place_ids)
        explicit = BlockedActivity.objects.filter(
            user=user,
            external_place_id__in=place_ids,
        ).values_list('external_place_id', flat=True)
        by_status = RecommendationTracking.objects.filter(
            user=user,
            external_place_id__in=place_ids,
            status=TrackingStatus.NOT_INTERESTED,
        ).values_list('external_place_id', flat=True)
        return set(explicit) | set(by_status)

    def unblock(self, user, place_id: str) -> bool:
        """
        Remove the explicit block entry.

        A tracking record in not_interested is left as it is, so the place
        stays blocked through that record until its status changes separately.
        Whether unblocking should also reset that status is still an open
        product decision.
        """
        deleted, _ = BlockedActivity.objects.filter(user=user, external_place_id=place_id).delete()
        if deleted:
            logger.info(f"Unblocked place {place_id} for user {getattr(user, 'pk', user)}")
        return deleted > 0

    def list_blocked(self, user):
        return BlockedActivity.objects.filter(user=user).order_by('-blocked_at')
