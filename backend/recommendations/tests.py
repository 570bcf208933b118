from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from core.clock import FrozenClock
from core.exceptions import CandidateSourceError, ConflictError, InvalidTransitionError, NotFoundError
from user.models import SubscriptionTier, UserProfile
from .dtos import CandidateActivity, ContextDTO, PointDTO
from .models import BlockedActivity, RecommendationTracking, RefreshHistory, TrackingStatus, can_transition
from .resurfacing import is_resurfaceable
from .scoring_service import ScoringService
from .session_service import RecommendationSessionService
from .sources import GooglePlacesCandidateSource, StaticCandidateSource
from .tracking_service import BlockList, ResponseOutcome, TrackingStore

User = get_user_model()

T0 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=dt_timezone.utc)
ISTANBUL = ContextDTO(user_location=PointDTO(latitude=41.0082, longitude=28.9784))


def make_profile(username, **kwargs):
    user = User.objects.create_user(username=username, password='password123')
    return UserProfile.objects.create(user=user, **kwargs)


def make_candidate(place_id, rating=4.0, category='food', distance=None):
    return CandidateActivity(
        external_place_id=place_id,
        name=f"Place {place_id}",
        category=category,
        rating=rating,
        distance_meters=distance,
        payload={'name': f"Place {place_id}", 'rating': rating},
    )


class ResurfacingPolicyTests(TestCase):
    """is_resurfaceable is a pure function of (record, now)"""

    def record(self, status, last_shown_at=T0):
        return RecommendationTracking(status=status, last_shown_at=last_shown_at)

    def test_declined_scenario(self):
        """Declined on 2024-01-01: hidden on 01-03, eligible again on 01-04."""
        record = self.record(TrackingStatus.DECLINED)
        self.assertFalse(is_resurfaceable(record, datetime(2024, 1, 3, tzinfo=dt_timezone.utc)))
        self.assertTrue(is_resurfaceable(record, datetime(2024, 1, 4, tzinfo=dt_timezone.utc)))

    def test_declined_boundary_to_the_second(self):
        record = self.record(TrackingStatus.DECLINED)
        boundary = T0 + timedelta(days=3)
        self.assertFalse(is_resurfaceable(record, boundary - timedelta(seconds=1)))
        self.assertTrue(is_resurfaceable(record, boundary))
        self.assertTrue(is_resurfaceable(record, boundary + timedelta(seconds=1)))

    def test_ignored_statuses_wait_seven_days(self):
        for status_value in (TrackingStatus.VIEWED, TrackingStatus.EXPIRED):
            record = self.record(status_value)
            self.assertFalse(is_resurfaceable(record, T0 + timedelta(days=6, hours=23)))
            self.assertTrue(is_resurfaceable(record, T0 + timedelta(days=7)))

    def test_terminal_statuses_never_resurface(self):
        for status_value in (TrackingStatus.ACCEPTED, TrackingStatus.NOT_INTERESTED):
            record = self.record(status_value)
            for delta in (timedelta(0), timedelta(days=3), timedelta(days=365)):
                self.assertFalse(is_resurfaceable(record, T0 + delta))

    def test_pending_is_not_a_resurfacing_candidate(self):
        self.assertFalse(is_resurfaceable(self.record(TrackingStatus.PENDING), T0 + timedelta(days=30)))

    def test_same_input_same_answer_without_mutation(self):
        record = self.record(TrackingStatus.DECLINED)
        now = T0 + timedelta(days=3)
        answers = {is_resurfaceable(record, now) for _ in range(5)}
        self.assertEqual(answers, {True})
        self.assertEqual(record.status, TrackingStatus.DECLINED)
        self.assertEqual(record.last_shown_at, T0)

    def test_custom_windows(self):
        record = self.record(TrackingStatus.DECLINED)
        self.assertTrue(is_resurfaceable(record, T0 + timedelta(days=1), declined_window=timedelta(days=1)))

    def test_state_machine_terminal_states(self):
        self.assertFalse(can_transition(TrackingStatus.NOT_INTERESTED, TrackingStatus.PENDING))
        self.assertFalse(can_transition(TrackingStatus.ACCEPTED, TrackingStatus.PENDING))
        self.assertFalse(can_transition(TrackingStatus.ACCEPTED, TrackingStatus.DECLINED))
        self.assertTrue(can_transition(TrackingStatus.DECLINED, TrackingStatus.PENDING))


class TrackingStoreTests(TestCase):
    def setUp(self):
        self.profile = make_profile('tracker')
        self.clock = FrozenClock(T0)
        self.store = TrackingStore(clock=self.clock)

    def test_first_upsert_creates_pending_record(self):
        record = self.store.upsert_shown(self.profile, 'place-1', {'name': 'Cafe'}, 0.8, place_name='Cafe')
        self.assertEqual(record.status, TrackingStatus.PENDING)
        self.assertEqual(record.refresh_count, 0)
        self.assertEqual(record.last_shown_at, T0)
        self.assertEqual(record.expires_at, T0 + timedelta(days=7))
        self.assertEqual(record.recommendation_data, {'name': 'Cafe'})

    def test_refresh_count_never_decreases(self):
        counts = []
        for _ in range(4):
            self.clock.advance(hours=1)
            counts.append(self.store.upsert_shown(self.profile, 'place-1', {}, 0.5).refresh_count)
        self.assertEqual(counts, [0, 1, 2, 3])

        record = self.store.get(self.profile, 'place-1')
        self.assertEqual(record.last_shown_at, T0 + timedelta(hours=4))

    def test_upsert_keeps_declined_status_by_default(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.respond(self.profile, 'place-1', ResponseOutcome.DECLINE)
        record = self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.assertEqual(record.status, TrackingStatus.DECLINED)

    def test_upsert_reopen_returns_declined_to_pending(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.respond(self.profile, 'place-1', ResponseOutcome.DECLINE, decline_reason='too far')

        self.clock.advance(days=3)
        record = self.store.upsert_shown(self.profile, 'place-1', {}, 0.5, reopen=True)
        self.assertEqual(record.status, TrackingStatus.PENDING)
        self.assertEqual(record.refresh_count, 1)
        self.assertIsNone(record.decline_reason)
        self.assertEqual(record.expires_at, T0 + timedelta(days=10))

    def test_reopen_does_not_revive_blocked_record(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.block(self.profile, 'place-1')
        record = self.store.upsert_shown(self.profile, 'place-1', {}, 0.5, reopen=True)
        self.assertEqual(record.status, TrackingStatus.NOT_INTERESTED)

    def test_confidence_score_is_clamped(self):
        record = self.store.upsert_shown(self.profile, 'place-1', {}, 1.7)
        self.assertEqual(record.confidence_score, 1.0)

    def test_mark_viewed(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.assertTrue(self.store.mark_viewed(self.profile, 'place-1'))

        record = self.store.get(self.profile, 'place-1')
        self.assertEqual(record.status, TrackingStatus.VIEWED)
        self.assertEqual(record.viewed_at, T0)

        # second view is a no-op
        self.clock.advance(minutes=5)
        self.assertFalse(self.store.mark_viewed(self.profile, 'place-1'))
        self.assertEqual(self.store.get(self.profile, 'place-1').viewed_at, T0)

    def test_mark_viewed_missing_record(self):
        with self.assertRaises(NotFoundError):
            self.store.mark_viewed(self.profile, 'missing')

    def test_respond_accept_and_decline(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.upsert_shown(self.profile, 'place-2', {}, 0.5)

        accepted = self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)
        declined = self.store.respond(self.profile, 'place-2', ResponseOutcome.DECLINE, decline_reason='closed')

        self.assertEqual(accepted.status, TrackingStatus.ACCEPTED)
        self.assertEqual(accepted.responded_at, T0)
        self.assertEqual(declined.status, TrackingStatus.DECLINED)
        self.assertEqual(declined.decline_reason, 'closed')

    def test_respond_missing_record(self):
        with self.assertRaises(NotFoundError):
            self.store.respond(self.profile, 'missing', ResponseOutcome.ACCEPT)

    def test_respond_to_blocked_record_rejected(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.block(self.profile, 'place-1')
        with self.assertRaises(InvalidTransitionError):
            self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)
        self.assertEqual(self.store.get(self.profile, 'place-1').status, TrackingStatus.NOT_INTERESTED)

    def test_accepted_record_cannot_be_declined(self):
        """An accepted place is scheduled; declining it would let it resurface."""
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)

        with self.assertRaises(InvalidTransitionError):
            self.store.respond(self.profile, 'place-1', ResponseOutcome.DECLINE)

        record = self.store.get(self.profile, 'place-1')
        self.assertEqual(record.status, TrackingStatus.ACCEPTED)
        self.assertFalse(is_resurfaceable(record, T0 + timedelta(days=30)))

    def test_accept_is_repeatable(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)
        record = self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)
        self.assertEqual(record.status, TrackingStatus.ACCEPTED)

    def test_respond_lost_race_raises_conflict(self):
        """The update matched nothing but the re-read shows a status that allows the move."""
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.block(self.profile, 'place-1')
        moved_on = RecommendationTracking(
            user=self.profile,
            external_place_id='place-1',
            status=TrackingStatus.PENDING,
        )

        with patch.object(TrackingStore, 'get', return_value=moved_on):
            with self.assertRaises(ConflictError):
                self.store.respond(self.profile, 'place-1', ResponseOutcome.ACCEPT)

    def test_respond_unknown_outcome(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        with self.assertRaises(ValueError):
            self.store.respond(self.profile, 'place-1', 'maybe')

    def test_block_is_idempotent(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5, place_name='Museum')
        self.store.block(self.profile, 'place-1', reason='not my thing')
        self.store.block(self.profile, 'place-1', reason='not my thing')

        self.assertEqual(BlockedActivity.objects.filter(user=self.profile).count(), 1)
        entry = BlockedActivity.objects.get(user=self.profile)
        self.assertEqual(entry.place_name, 'Museum')
        record = self.store.get(self.profile, 'place-1')
        self.assertEqual(record.status, TrackingStatus.NOT_INTERESTED)
        self.assertEqual(record.block_reason, 'not my thing')

    def test_block_without_tracking_record(self):
        entry = self.store.block(self.profile, 'never-shown')
        self.assertEqual(entry.external_place_id, 'never-shown')
        self.assertFalse(RecommendationTracking.objects.filter(external_place_id='never-shown').exists())

    def test_expire_stale(self):
        self.store.upsert_shown(self.profile, 'old', {}, 0.5)
        self.clock.advance(days=5)
        self.store.upsert_shown(self.profile, 'new', {}, 0.5)

        self.clock.advance(days=2, seconds=1)
        self.assertEqual(self.store.expire_stale(), 1)
        self.assertEqual(self.store.get(self.profile, 'old').status, TrackingStatus.EXPIRED)
        self.assertEqual(self.store.get(self.profile, 'new').status, TrackingStatus.PENDING)

        # running again changes nothing
        self.assertEqual(self.store.expire_stale(), 0)

    def test_expire_stale_scoped_to_user(self):
        other = make_profile('other')
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.upsert_shown(other, 'place-1', {}, 0.5)

        self.clock.advance(days=8)
        self.assertEqual(self.store.expire_stale(user=self.profile), 1)
        self.assertEqual(self.store.get(other, 'place-1').status, TrackingStatus.PENDING)

    def test_clear_pending_declines_live_records(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.upsert_shown(self.profile, 'place-2', {}, 0.5)
        self.store.respond(self.profile, 'place-2', ResponseOutcome.ACCEPT)

        self.clock.advance(hours=4)
        self.assertEqual(self.store.clear_pending(self.profile), 1)

        record = self.store.get(self.profile, 'place-1')
        self.assertEqual(record.status, TrackingStatus.DECLINED)
        self.assertEqual(record.last_shown_at, T0 + timedelta(hours=4))
        self.assertEqual(self.store.get(self.profile, 'place-2').status, TrackingStatus.ACCEPTED)

    def test_get_stats(self):
        for place_id in ('a', 'b', 'c', 'd'):
            self.store.upsert_shown(self.profile, place_id, {}, 0.5)
        self.store.respond(self.profile, 'a', ResponseOutcome.ACCEPT)
        self.store.respond(self.profile, 'b', ResponseOutcome.DECLINE)
        self.store.block(self.profile, 'c')

        stats = self.store.get_stats(self.profile)
        self.assertEqual(stats['total'], 4)
        self.assertEqual(stats['accepted'], 1)
        self.assertEqual(stats['declined'], 1)
        self.assertEqual(stats['not_interested'], 1)
        self.assertEqual(stats['pending'], 1)
        self.assertAlmostEqual(stats['acceptance_rate'], 25.0)


class BlockListTests(TestCase):
    def setUp(self):
        self.profile = make_profile('blocker')
        self.store = TrackingStore(clock=FrozenClock(T0))
        self.block_list = BlockList()

    def test_blocked_by_entry(self):
        self.store.block(self.profile, 'place-1')
        self.assertTrue(self.block_list.is_blocked(self.profile, 'place-1'))
        self.assertFalse(self.block_list.is_blocked(self.profile, 'place-2'))

    def test_blocked_by_tracking_status(self):
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        RecommendationTracking.objects.filter(external_place_id='place-1').update(status=TrackingStatus.NOT_INTERESTED)
        self.assertTrue(self.block_list.is_blocked(self.profile, 'place-1'))

    def test_unblock_leaves_not_interested_record(self):
        """Removing the entry does not revert the tracking status, so the place stays blocked."""
        self.store.upsert_shown(self.profile, 'place-1', {}, 0.5)
        self.store.block(self.profile, 'place-1')

        self.assertTrue(self.block_list.unblock(self.profile, 'place-1'))
        self.assertFalse(BlockedActivity.objects.filter(user=self.profile).exists())
        self.assertTrue(self.block_list.is_blocked(self.profile, 'place-1'))

    def test_unblock_without_tracking_record(self):
        self.store.block(self.profile, 'place-1')
        self.block_list.unblock(self.profile, 'place-1')
        self.assertFalse(self.block_list.is_blocked(self.profile, 'place-1'))
        self.assertFalse(self.block_list.unblock(self.profile, 'place-1'))

    def test_blocked_place_ids(self):
        self.store.block(self.profile, 'a')
        self.store.upsert_shown(self.profile, 'b', {}, 0.5)
        self.store.block(self.profile, 'b')
        self.block_list.unblock(self.profile, 'b')
        self.store.upsert_shown(self.profile, 'c', {}, 0.5)

        self.assertEqual(self.block_list.blocked_place_ids(self.profile, ['a', 'b', 'c', 'd']), {'a', 'b'})


class ScoringServiceTests(TestCase):
    def setUp(self):
        self.profile = make_profile('scorer', preferences_vector={'food': 2.0, 'culture': 1.0})
        self.scoring = ScoringService()

    def test_interest_relative_to_strongest_category(self):
        _, interest, _, _ = self.scoring.compute_score(make_candidate('a', category='culture'), self.profile)
        self.assertAlmostEqual(interest, 0.5)
        _, interest, _, _ = self.scoring.compute_score(make_candidate('b', category='nightlife'), self.profile)
        self.assertEqual(interest, 0.0)

    def test_neutral_interest_without_preferences(self):
        profile = make_profile('newcomer')
        _, interest, _, _ = self.scoring.compute_score(make_candidate('a'), profile)
        self.assertEqual(interest, ScoringService.NEUTRAL_INTEREST)

    def test_distance_decay(self):
        near, _, near_distance, _ = self.scoring.compute_score(make_candidate('a', distance=100), self.profile)
        far, _, far_distance, _ = self.scoring.compute_score(make_candidate('b', distance=5000), self.profile)
        self.assertGreater(near_distance, far_distance)
        self.assertGreater(near, far)

    def test_confidence_within_unit_interval(self):
        scoring = ScoringService(weight_interest=1.0, weight_distance=1.0, weight_rating=1.0)
        score = scoring.confidence(make_candidate('a', rating=5.0), self.profile)
        self.assertEqual(score, 1.0)


class GooglePlacesCandidateSourceTests(TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.source = GooglePlacesCandidateSource(api_key='test-key', timeout=5, session=self.session)

    def respond_with(self, body):
        response = MagicMock()
        response.json.return_value = body
        response.raise_for_status.return_value = None
        self.session.get.return_value = response

    def test_parses_results(self):
        self.respond_with({
            'status': 'OK',
            'results': [
                {
                    'place_id': 'ChIJ1',
                    'name': 'Istanbul Modern',
                    'types': ['museum', 'point_of_interest'],
                    'rating': 4.6,
                    'vicinity': 'Karakoy',
                    'geometry': {'location': {'lat': 41.0256, 'lng': 28.9833}},
                },
                {'name': 'no id'},
            ]
        })
        candidates = self.source.fetch_candidates(ISTANBUL)

        self.assertEqual(len(candidates), 1)
        candidate = candidates[0]
        self.assertEqual(candidate.external_place_id, 'ChIJ1')
        self.assertEqual(candidate.category, 'culture')
        self.assertEqual(candidate.rating, 4.6)
        self.assertEqual(candidate.payload['address'], 'Karakoy')
        self.assertGreater(candidate.distance_meters, 1500)
        self.assertLess(candidate.distance_meters, 2500)

        params = self.session.get.call_args[1]['params']
        self.assertEqual(params['radius'], 5000)
        self.assertEqual(self.session.get.call_args[1]['timeout'], 5)

    def test_zero_results(self):
        self.respond_with({'status': 'ZERO_RESULTS', 'results': []})
        self.assertEqual(self.source.fetch_candidates(ISTANBUL), [])

    def test_error_status_raises(self):
        self.respond_with({'status': 'REQUEST_DENIED', 'error_message': 'bad key'})
        with self.assertRaises(CandidateSourceError):
            self.source.fetch_candidates(ISTANBUL)

    def test_network_failure_raises(self):
        self.session.get.side_effect = requests.Timeout('timed out')
        with self.assertRaises(CandidateSourceError):
            self.source.fetch_candidates(ISTANBUL)

    @override_settings(GOOGLE_PLACES_API_KEY='')
    def test_missing_api_key(self):
        source = GooglePlacesCandidateSource(session=self.session)
        with self.assertRaises(CandidateSourceError):
            source.fetch_candidates(ISTANBUL)
        self.session.get.assert_not_called()


class RecommendationSessionServiceTests(TestCase):
    def setUp(self):
        self.profile = make_profile('session_user')
        self.clock = FrozenClock(T0)
        self.candidates = [
            make_candidate('low', rating=2.0),
            make_candidate('high', rating=5.0),
            make_candidate('mid', rating=3.5),
        ]
        self.service = RecommendationSessionService(
            clock=self.clock,
            source=StaticCandidateSource(self.candidates),
        )

    def test_admitted_refresh_returns_sorted_results(self):
        result = self.service.request_refresh(self.profile.pk, ISTANBUL)

        self.assertTrue(result.admitted)
        self.assertEqual([r.external_place_id for r in result.results], ['high', 'mid', 'low'])
        self.assertEqual(result.seconds_until_refresh, 4 * 3600)
        self.assertEqual(
            RecommendationTracking.objects.filter(user=self.profile, status=TrackingStatus.PENDING).count(),
            3
        )

        history = RefreshHistory.objects.get(user=self.profile)
        self.assertEqual(history.recommendations_count, 3)
        self.assertEqual(history.data_source, 'static')
        self.assertEqual(len(history.geohash), 6)
        self.assertTrue(history.geohash.startswith('sxk'))

    def test_refresh_inside_cooldown_denied(self):
        self.service.request_refresh(self.profile.pk, ISTANBUL)
        self.clock.advance(hours=1)

        result = self.service.request_refresh(self.profile.pk, ISTANBUL)
        self.assertFalse(result.admitted)
        self.assertEqual(result.results, [])
        self.assertEqual(result.seconds_until_refresh, 10800)
        self.assertEqual(RefreshHistory.objects.filter(user=self.profile).count(), 1)

    def test_blocked_and_duplicate_candidates_dropped(self):
        TrackingStore(clock=self.clock).block(self.profile, 'mid')
        self.service.source.candidates.append(make_candidate('high', rating=1.0))

        result = self.service.request_refresh(self.profile, ISTANBUL)
        self.assertEqual([r.external_place_id for r in result.results], ['high', 'low'])
        self.assertAlmostEqual(result.results[0].confidence_score, 0.75)

    def test_results_capped_per_tier(self):
        self.service.source.candidates = [make_candidate(f"p{i}", rating=i % 5) for i in range(12)]
        self.assertEqual(len(self.service.request_refresh(self.profile, ISTANBUL).results), 8)

        premium = make_profile('premium_user', subscription_tier=SubscriptionTier.PREMIUM)
        self.assertEqual(len(self.service.request_refresh(premium, ISTANBUL).results), 10)

    def test_refreshed_away_then_resurfaced(self):
        self.service.request_refresh(self.profile, ISTANBUL)

        # next refresh declines what was still pending; nothing eligible yet
        self.clock.advance(hours=4)
        result = self.service.request_refresh(self.profile, ISTANBUL)
        self.assertTrue(result.admitted)
        self.assertEqual(result.results, [])
        self.assertEqual(
            RecommendationTracking.objects.filter(user=self.profile, status=TrackingStatus.DECLINED).count(),
            3
        )

        # three days later they come back as pending
        self.clock.advance(days=3)
        result = self.service.request_refresh(self.profile, ISTANBUL)
        self.assertEqual(len(result.results), 3)
        self.assertTrue(all(r.resurfaced for r in result.results))
        self.assertTrue(all(r.refresh_count == 1 for r in result.results))
        self.assertEqual(
            RecommendationTracking.objects.filter(user=self.profile, status=TrackingStatus.PENDING).count(),
            3
        )

    def test_accepted_place_never_resurfaces(self):
        self.service.request_refresh(self.profile, ISTANBUL)
        self.service.record_interaction(self.profile, 'high', 'accepted')

        self.clock.advance(days=30)
        result = self.service.request_refresh(self.profile, ISTANBUL)
        self.assertNotIn('high', [r.external_place_id for r in result.results])

    def test_source_failure_releases_cooldown(self):
        failing = MagicMock(source_name='broken')
        failing.fetch_candidates.side_effect = CandidateSourceError('down')
        service = RecommendationSessionService(clock=self.clock, source=failing)

        with self.assertRaises(CandidateSourceError):
            service.request_refresh(self.profile.pk, ISTANBUL)

        self.profile.refresh_from_db()
        self.assertIsNone(self.profile.last_refresh_at)
        self.assertFalse(RefreshHistory.objects.exists())
        self.assertTrue(self.service.request_refresh(self.profile.pk, ISTANBUL).admitted)

    def test_failed_refresh_keeps_live_feed(self):
        """A refresh that could not fetch candidates leaves the current cards alone."""
        self.service.request_refresh(self.profile, ISTANBUL)
        self.clock.advance(hours=4)

        failing = MagicMock(source_name='broken')
        failing.fetch_candidates.side_effect = CandidateSourceError('down')
        broken_service = RecommendationSessionService(clock=self.clock, source=failing)

        with self.assertRaises(CandidateSourceError):
            broken_service.request_refresh(self.profile, ISTANBUL)

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.last_refresh_at, T0)

        records = RecommendationTracking.objects.filter(user=self.profile)
        self.assertEqual(records.count(), 3)
        for record in records:
            self.assertEqual(record.status, TrackingStatus.PENDING)
            self.assertEqual(record.last_shown_at, T0)
        self.assertEqual(RefreshHistory.objects.filter(user=self.profile).count(), 1)

        # the released refresh can be retried right away
        self.assertTrue(self.service.request_refresh(self.profile, ISTANBUL).admitted)

    def test_unknown_user(self):
        with self.assertRaises(NotFoundError):
            self.service.request_refresh('00000000-0000-0000-0000-000000000000', ISTANBUL)

    def test_record_interaction_events(self):
        self.service.request_refresh(self.profile, ISTANBUL)

        self.assertTrue(self.service.record_interaction(self.profile, 'high', 'viewed'))
        self.service.record_interaction(self.profile, 'mid', 'declined', {'reason': 'too expensive'})
        self.service.record_interaction(self.profile, 'low', 'blocked', {'reason': 'closed'})

        store = TrackingStore()
        self.assertEqual(store.get(self.profile, 'high').status, TrackingStatus.VIEWED)
        self.assertEqual(store.get(self.profile, 'mid').decline_reason, 'too expensive')
        self.assertEqual(store.get(self.profile, 'low').status, TrackingStatus.NOT_INTERESTED)

        with self.assertRaises(ValueError):
            self.service.record_interaction(self.profile, 'high', 'shared')

    def test_complete_onboarding_without_referral(self):
        result = self.service.complete_onboarding(self.profile)
        self.assertFalse(result.completed)
        self.assertEqual(result.reason, 'no_pending_referral')

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.onboarding_completed_at, T0)

        # the first completion time is kept
        self.clock.advance(days=1)
        self.service.complete_onboarding(self.profile)
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.onboarding_completed_at, T0)


@patch('recommendations.session_service.get_candidate_source')
class RecommendationAPITests(APITestCase):
    def setUp(self):
        self.profile = make_profile('api_user')
        self.refresh_url = reverse('recommendations:refresh')
        self.interactions_url = reverse('recommendations:interactions')
        self.body = {
            'user_id': str(self.profile.id),
            'context': {'user_location': {'latitude': 41.0082, 'longitude': 28.9784}},
        }

    def static_source(self, mock_get_source):
        mock_get_source.return_value = StaticCandidateSource([make_candidate('a'), make_candidate('b', rating=5.0)])

    def test_refresh_then_cooldown(self, mock_get_source):
        self.static_source(mock_get_source)

        response = self.client.post(self.refresh_url, self.body, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['recommendations']), 2)
        self.assertEqual(response.data['recommendations'][0]['external_place_id'], 'b')

        response = self.client.post(self.refresh_url, self.body, format='json')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertGreater(response.data['seconds_until_refresh'], 0)
        self.assertIn('Retry-After', response)

    def test_refresh_validation(self, mock_get_source):
        response = self.client.post(self.refresh_url, {'user_id': str(self.profile.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_refresh_unknown_user(self, mock_get_source):
        self.static_source(mock_get_source)
        self.body['user_id'] = '00000000-0000-0000-0000-000000000000'
        response = self.client.post(self.refresh_url, self.body, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_refresh_source_failure(self, mock_get_source):
        mock_get_source.return_value.fetch_candidates.side_effect = CandidateSourceError('down')
        response = self.client.post(self.refresh_url, self.body, format='json')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)

    def test_interactions(self, mock_get_source):
        self.static_source(mock_get_source)
        self.client.post(self.refresh_url, self.body, format='json')

        payload = {'user_id': str(self.profile.id), 'external_place_id': 'a', 'event': 'blocked'}
        response = self.client.post(self.interactions_url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        payload['event'] = 'accepted'
        response = self.client.post(self.interactions_url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        payload['external_place_id'] = 'missing'
        response = self.client.post(self.interactions_url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        payload['event'] = 'shared'
        response = self.client.post(self.interactions_url, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_blocked_list_and_unblock(self, mock_get_source):
        TrackingStore().block(self.profile, 'place-1', place_name='Bar')

        url = reverse('recommendations:blocked')
        response = self.client.get(url, {'user_id': str(self.profile.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['blocked'][0]['place_name'], 'Bar')

        response = self.client.post(
            reverse('recommendations:unblock'),
            {'user_id': str(self.profile.id), 'external_place_id': 'place-1'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['unblocked'])

    def test_refresh_status_and_stats(self, mock_get_source):
        response = self.client.get(reverse('recommendations:refresh_status'), {'user_id': str(self.profile.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['can_refresh'])
        self.assertEqual(response.data['seconds_until_refresh'], 0)

        response = self.client.get(reverse('recommendations:stats'), {'user_id': str(self.profile.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 0)

        response = self.client.get(reverse('recommendations:stats'), {'user_id': 'not-a-uuid'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_tracking_list_and_history(self, mock_get_source):
        self.static_source(mock_get_source)
        self.client.post(self.refresh_url, self.body, format='json')
        TrackingStore().block(self.profile, 'a')

        url = reverse('recommendations:tracking')
        response = self.client.get(url, {'user_id': str(self.profile.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['tracking']), 2)

        response = self.client.get(url, {'user_id': str(self.profile.id), 'status': 'pending'})
        self.assertEqual([r['external_place_id'] for r in response.data['tracking']], ['b'])

        response = self.client.get(url, {'user_id': str(self.profile.id), 'status': 'gone'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.get(reverse('recommendations:history'), {'user_id': str(self.profile.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['history']), 1)
        self.assertEqual(response.data['history'][0]['recommendations_count'], 2)
        self.assertEqual(len(response.data['history'][0]['geohash']), 6)
