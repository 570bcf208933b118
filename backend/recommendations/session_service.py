"""
Session Orchestrator: wires the cooldown gate, tracking store, block list,
resurfacing policy, candidate source and scoring into the refresh flow the
client sees, and forwards interaction and onboarding events.
"""
import logging
from typing import List, Optional

import geohash2
from django.db import transaction

from core.clock import Clock, get_clock
from core.exceptions import CandidateSourceError, NotFoundError
from recommendations.dtos import CandidateActivity, ContextDTO, RefreshResult, ScoredRecommendation
from recommendations.models import RefreshHistory
from recommendations.resurfacing import configured_windows, is_resurfaceable
from recommendations.scoring_service import ScoringService
from recommendations.sources import CandidateSource, get_candidate_source
from recommendations.tracking_service import BlockList, ResponseOutcome, TrackingStore
from referrals.services import ReferralLedger
from user.cooldown import CooldownGate
from user.models import UserProfile
from user.tiers import get_tier_limits

logger = logging.getLogger(__name__)

GEOHASH_PRECISION = 6


class InteractionEvent:
    VIEWED = 'viewed'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    BLOCKED = 'blocked'

    ALL = (VIEWED, ACCEPTED, DECLINED, BLOCKED)


class RecommendationSessionService:
    """
    Entry point used by the API views. Every collaborator can be injected,
    which is how tests pin the clock and the candidate source.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        source: Optional[CandidateSource] = None,
        scoring: Optional[ScoringService] = None,
    ):
        self.clock = clock or get_clock()
        self._source = source
        self.scoring = scoring or ScoringService()
        self.tracking = TrackingStore(clock=self.clock)
        self.block_list = BlockList()
        self.cooldown = CooldownGate()
        self.referrals = ReferralLedger(clock=self.clock)

    @property
    def source(self) -> CandidateSource:
        if self._source is None:
            self._source = get_candidate_source()
        return self._source

    def get_profile(self, user) -> UserProfile:
        if isinstance(user, UserProfile):
            return user
        try:
            return UserProfile.objects.get(pk=user)
        except UserProfile.DoesNotExist:
            raise NotFoundError(f"User {user} not found")

    def request_refresh(self, user, context: ContextDTO) -> RefreshResult:
        """
        Run one refresh for the user.

        Returns:
            RefreshResult with admitted=False and the remaining wait when the
            cooldown is still active, otherwise the new recommendations.

        Raises:
            CandidateSourceError: candidates could not be fetched; the refresh
                is not counted against the cooldown
        """
        profile = self.get_profile(user)
        now = self.clock.now()
        tier = profile.effective_tier(now)
        previous_refresh_at = profile.last_refresh_at

        if not self.cooldown.admit_refresh(profile, now):
            profile.refresh_from_db(fields=['last_refresh_at'])
            wait = self.cooldown.seconds_until_refresh(profile.last_refresh_at, tier, now)
            return RefreshResult(admitted=False, seconds_until_refresh=wait, tier=tier)

        try:
            candidates = self.source.fetch_candidates(context)
        except CandidateSourceError:
            self.cooldown.release_refresh(profile, previous_refresh_at, now)
            logger.error(f"Candidate fetch failed for user {profile.pk}, refresh released")
            raise

        # Live cards are only replaced once there is something to replace them with
        with transaction.atomic():
            self.tracking.expire_stale(user=profile)
            cleared = self.tracking.clear_pending(profile)
            if cleared:
                logger.info(f"Refreshed away {cleared} pending recommendations for user {profile.pk}")

            results = self._select(profile, candidates, now, tier)
            for result in results:
                record = self.tracking.upsert_shown(
                    profile,
                    result.external_place_id,
                    result.payload,
                    result.confidence_score,
                    place_name=result.place_name,
                    category=result.category,
                    reopen=True,
                )
                result.refresh_count = record.refresh_count

            RefreshHistory.objects.create(
                user=profile,
                tier=tier,
                recommendations_count=len(results),
                data_source=self.source.source_name,
                geohash=geohash2.encode(
                    context.user_location.latitude,
                    context.user_location.longitude,
                    precision=GEOHASH_PRECISION,
                ),
                refreshed_at=now,
            )
        logger.info(f"Refresh for user {profile.pk} returned {len(results)} recommendations")

        return RefreshResult(
            admitted=True,
            results=results,
            seconds_until_refresh=self.cooldown.seconds_until_refresh(now, tier, now),
            tier=tier,
        )

    def _select(self, profile: UserProfile, candidates: List[CandidateActivity], now, tier: str) -> List[ScoredRecommendation]:
        """Dedupe, filter blocked and quarantined places, score, sort and cap."""
        unique = {}
        for candidate in candidates:
            unique.setdefault(candidate.external_place_id, candidate)
        if not unique:
            return []

        blocked = self.block_list.blocked_place_ids(profile, unique.keys())
        existing = self.tracking.records_for(profile, unique.keys())
        declined_window, ignored_window = configured_windows()

        scored = []
        for place_id, candidate in unique.items():
            if place_id in blocked:
                continue
            record = existing.get(place_id)
            if record is not None and not is_resurfaceable(record, now, declined_window, ignored_window):
                continue
            scored.append(ScoredRecommendation(
                external_place_id=place_id,
                place_name=candidate.name,
                category=candidate.category,
                confidence_score=self.scoring.confidence(candidate, profile),
                payload=candidate.payload,
                resurfaced=record is not None,
            ))

        scored.sort(key=lambda r: r.confidence_score, reverse=True)
        return scored[:get_tier_limits(tier).recommendations_per_refresh]

    def record_interaction(self, user, place_id: str, event: str, metadata: Optional[dict] = None):
        """
        Apply a client event to the tracking record.

        Raises:
            ValueError: unknown event
            NotFoundError: no tracking record for viewed/accepted/declined
            InvalidTransitionError: the place was already marked not interested
        """
        metadata = metadata or {}
        profile = self.get_profile(user)

        if event == InteractionEvent.VIEWED:
            return self.tracking.mark_viewed(profile, place_id)
        if event == InteractionEvent.ACCEPTED:
            return self.tracking.respond(profile, place_id, ResponseOutcome.ACCEPT)
        if event == InteractionEvent.DECLINED:
            return self.tracking.respond(
                profile, place_id, ResponseOutcome.DECLINE,
                decline_reason=metadata.get('reason')
            )
        if event == InteractionEvent.BLOCKED:
            return self.tracking.block(
                profile, place_id,
                reason=metadata.get('reason'),
                place_name=metadata.get('place_name', '')
            )
        raise ValueError(f"Unknown interaction event: {event}")

    def refresh_status(self, user) -> dict:
        profile = self.get_profile(user)
        return self.cooldown.refresh_status(profile, self.clock.now())

    def redeem_referral_code(self, user, code: str, source: str = 'link'):
        return self.referrals.redeem_code(self.get_profile(user), code, source)

    def complete_onboarding(self, user):
        """Stamp onboarding completion (first time only) and complete a pending referral."""
        profile = self.get_profile(user)
        now = self.clock.now()
        UserProfile.objects.filter(
            pk=profile.pk,
            onboarding_completed_at__isnull=True
        ).update(onboarding_completed_at=now)
        return self.referrals.complete_referral(profile)
