from datetime import datetime, timedelta, timezone as dt_timezone

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from core.clock import FrozenClock
from core.exceptions import DuplicateReferralError, InvalidCodeError, SelfReferralError
from user.models import SubscriptionTier, UserProfile
from .models import Referral, ReferralReward, ReferralStatus, RewardStatus, RewardType
from .rewards import next_milestone, previous_milestone, rules_for
from .services import ReferralLedger

User = get_user_model()

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=dt_timezone.utc)


def make_profile(username, **kwargs):
    user = User.objects.create_user(username=username, password='password123')
    return UserProfile.objects.create(user=user, **kwargs)


class RewardRulesTests(TestCase):

    def reward_types(self, count):
        return {rule.reward_type for rule in rules_for(count)}

    def test_inviter_bonus_every_third_referral(self):
        self.assertIn(RewardType.INVITER_BONUS, self.reward_types(3))
        self.assertIn(RewardType.INVITER_BONUS, self.reward_types(6))
        self.assertNotIn(RewardType.INVITER_BONUS, self.reward_types(4))
        self.assertNotIn(RewardType.INVITER_BONUS, self.reward_types(0))

    def test_milestones(self):
        self.assertIn(RewardType.MILESTONE_10, self.reward_types(10))
        self.assertNotIn(RewardType.MILESTONE_10, self.reward_types(11))
        self.assertEqual(
            self.reward_types(25),
            {RewardType.INVITEE_WELCOME, RewardType.MILESTONE_25}
        )

    def test_invitee_welcome_always(self):
        for count in (1, 2, 4, 99):
            self.assertIn(RewardType.INVITEE_WELCOME, self.reward_types(count))

    def test_next_milestone_follows_reward_rules(self):
        """Every count that earns the referrer something is a milestone: 3, 6, 9, 10, 12, ..."""
        self.assertEqual(next_milestone(0), 3)
        self.assertEqual(next_milestone(3), 6)
        self.assertEqual(next_milestone(4), 6)
        self.assertEqual(next_milestone(9), 10)
        self.assertEqual(next_milestone(10), 12)
        self.assertEqual(next_milestone(99), 100)

    def test_previous_milestone(self):
        self.assertEqual(previous_milestone(0), 0)
        self.assertEqual(previous_milestone(2), 0)
        self.assertEqual(previous_milestone(4), 3)
        self.assertEqual(previous_milestone(11), 10)


class RedeemCodeTests(TestCase):
    def setUp(self):
        self.ledger = ReferralLedger(clock=FrozenClock(T0))
        self.referrer = make_profile('referrer')
        self.friend = make_profile('friend')

    def test_redeem_creates_pending_referral(self):
        referral = self.ledger.redeem_code(self.friend, self.referrer.referral_code, 'whatsapp')

        self.assertEqual(referral.status, ReferralStatus.PENDING)
        self.assertEqual(referral.referrer, self.referrer)
        self.assertEqual(referral.source, 'whatsapp')
        self.friend.refresh_from_db()
        self.assertEqual(self.friend.referred_by, self.referrer)

    def test_code_matching_ignores_case(self):
        referral = self.ledger.redeem_code(self.friend, self.referrer.referral_code.lower())
        self.assertEqual(referral.referral_code, self.referrer.referral_code)

    def test_invalid_code(self):
        with self.assertRaises(InvalidCodeError):
            self.ledger.redeem_code(self.friend, 'NOPE00')
        with self.assertRaises(InvalidCodeError):
            self.ledger.redeem_code(self.friend, '')

    def test_self_referral(self):
        with self.assertRaises(SelfReferralError):
            self.ledger.redeem_code(self.referrer, self.referrer.referral_code)
        self.assertFalse(Referral.objects.exists())

    def test_duplicate_referral(self):
        self.ledger.redeem_code(self.friend, self.referrer.referral_code)
        with self.assertRaises(DuplicateReferralError):
            self.ledger.redeem_code(self.friend, self.referrer.referral_code)

    def test_user_can_only_be_referred_once(self):
        other = make_profile('other_referrer')
        self.ledger.redeem_code(self.friend, self.referrer.referral_code)
        with self.assertRaises(DuplicateReferralError):
            self.ledger.redeem_code(self.friend, other.referral_code)

        self.friend.refresh_from_db()
        self.assertEqual(self.friend.referred_by, self.referrer)
        self.assertEqual(Referral.objects.count(), 1)

    def test_unknown_source_recorded_as_other(self):
        referral = self.ledger.redeem_code(self.friend, self.referrer.referral_code, 'carrier_pigeon')
        self.assertEqual(referral.source, 'other')


class CompleteReferralTests(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.ledger = ReferralLedger(clock=self.clock)
        self.referrer = make_profile('referrer')

    def refer(self, username):
        friend = make_profile(username)
        self.ledger.redeem_code(friend, self.referrer.referral_code)
        return friend

    def complete_many(self, n, prefix='friend'):
        results = []
        for i in range(n):
            results.append(self.ledger.complete_referral(self.refer(f"{prefix}{i}")))
        return results

    def test_no_pending_referral(self):
        loner = make_profile('loner')
        result = self.ledger.complete_referral(loner)
        self.assertFalse(result.completed)
        self.assertEqual(result.reason, 'no_pending_referral')

    def test_completion_grants_welcome_reward(self):
        friend = self.refer('friend')
        result = self.ledger.complete_referral(friend)

        self.assertTrue(result.completed)
        self.assertEqual(result.referral.status, ReferralStatus.COMPLETED)
        self.assertEqual(result.referral.completed_at, T0)
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.referral_count, 1)

        welcome = ReferralReward.objects.get(user=friend)
        self.assertEqual(welcome.reward_type, RewardType.INVITEE_WELCOME)
        self.assertEqual(welcome.plus_days, 7)
        self.assertEqual(welcome.status, RewardStatus.GRANTED)
        self.assertEqual(welcome.expires_at, T0 + timedelta(days=7))

    def test_double_completion_grants_once(self):
        friend = self.refer('friend')
        self.assertTrue(self.ledger.complete_referral(friend).completed)
        second = self.ledger.complete_referral(friend)

        self.assertFalse(second.completed)
        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.referral_count, 1)
        self.assertEqual(ReferralReward.objects.filter(user=friend).count(), 1)

    def test_inviter_bonus_at_three_and_six(self):
        self.complete_many(3)
        self.assertEqual(
            ReferralReward.objects.filter(user=self.referrer, reward_type=RewardType.INVITER_BONUS).count(),
            1
        )

        # the fourth completion earns nothing for the referrer
        self.complete_many(1, prefix='fourth')
        self.assertEqual(ReferralReward.objects.filter(user=self.referrer).count(), 1)

        self.complete_many(2, prefix='more')
        bonuses = ReferralReward.objects.filter(user=self.referrer, reward_type=RewardType.INVITER_BONUS)
        self.assertEqual(bonuses.count(), 2)
        self.assertEqual(bonuses.first().expires_at, T0 + timedelta(days=90))

    def test_milestone_ten_granted_exactly_once(self):
        self.complete_many(10)
        milestone = ReferralReward.objects.get(user=self.referrer, reward_type=RewardType.MILESTONE_10)
        self.assertEqual(milestone.plus_days, 90)
        self.assertIsNone(milestone.expires_at)

        self.complete_many(5, prefix='late')
        self.assertEqual(
            ReferralReward.objects.filter(user=self.referrer, reward_type=RewardType.MILESTONE_10).count(),
            1
        )

    def test_milestone_unique_per_user(self):
        self.complete_many(10)
        other = Referral.objects.filter(referrer=self.referrer).last()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ReferralReward.objects.create(
                    user=self.referrer,
                    referral=other,
                    reward_type=RewardType.MILESTONE_10,
                    plus_days=90,
                )


class LedgerQueriesTests(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.ledger = ReferralLedger(clock=self.clock)
        self.referrer = make_profile('referrer')
        for i in range(3):
            friend = make_profile(f"friend{i}")
            self.ledger.redeem_code(friend, self.referrer.referral_code)
            self.ledger.complete_referral(friend)
        self.pending_friend = make_profile('pending_friend')
        self.ledger.redeem_code(self.pending_friend, self.referrer.referral_code)
        self.referrer.refresh_from_db()

    def test_get_stats(self):
        stats = self.ledger.get_stats(self.referrer)
        self.assertEqual(stats['referral_count'], 3)
        self.assertEqual(stats['total_referrals'], 4)
        self.assertEqual(stats['pending_referrals'], 1)
        self.assertEqual(stats['completed_referrals'], 3)
        self.assertEqual(stats['rewards_earned'], 1)
        self.assertEqual(stats['plus_days_earned'], 30)
        self.assertEqual(stats['next_milestone'], 6)
        self.assertEqual(stats['progress_to_next_milestone'], 0.0)
        self.assertTrue(stats['share_link'].endswith(self.referrer.referral_code))

    def test_get_stats_between_inviter_bonuses(self):
        self.ledger.complete_referral(self.pending_friend)
        self.referrer.refresh_from_db()

        stats = self.ledger.get_stats(self.referrer)
        self.assertEqual(stats['referral_count'], 4)
        self.assertEqual(stats['next_milestone'], 6)
        self.assertEqual(stats['progress_to_next_milestone'], 33.3)

    def test_active_rewards_and_expiry(self):
        friend = UserProfile.objects.get(user__username='friend0')
        self.assertEqual(self.ledger.active_rewards(friend).count(), 1)

        later = T0 + timedelta(days=8)
        self.assertEqual(self.ledger.active_rewards(friend, later).count(), 0)
        self.assertEqual(self.ledger.expire_rewards(later), 3)
        self.assertEqual(
            ReferralReward.objects.filter(user=friend, status=RewardStatus.EXPIRED).count(),
            1
        )
        # inviter bonus lasts 90 days
        self.assertEqual(self.ledger.active_rewards(self.referrer, later).count(), 1)

    def test_apply_granted_rewards_upgrades_free_user(self):
        added = self.ledger.apply_granted_rewards(self.referrer)
        self.assertEqual(added, 30)

        self.referrer.refresh_from_db()
        self.assertEqual(self.referrer.subscription_tier, SubscriptionTier.PLUS)
        self.assertEqual(self.referrer.subscription_expires_at, T0 + timedelta(days=30))

        # already applied
        self.assertEqual(self.ledger.apply_granted_rewards(self.referrer), 0)

    def test_apply_granted_rewards_extends_active_subscription(self):
        friend = UserProfile.objects.get(user__username='friend1')
        friend.subscription_tier = SubscriptionTier.PLUS
        friend.subscription_expires_at = T0 + timedelta(days=10)
        friend.save()

        self.assertEqual(self.ledger.apply_granted_rewards(friend), 7)
        friend.refresh_from_db()
        self.assertEqual(friend.subscription_expires_at, T0 + timedelta(days=17))

    def test_leaderboard(self):
        runner_up = make_profile('runner_up')
        friend = make_profile('runner_up_friend')
        self.ledger.redeem_code(friend, runner_up.referral_code)
        self.ledger.complete_referral(friend)

        board = self.ledger.leaderboard()
        self.assertEqual([entry['username'] for entry in board], ['referrer', 'runner_up'])
        self.assertEqual(board[0]['rank'], 1)
        self.assertEqual(board[0]['referral_count'], 3)


class ReferralAPITests(APITestCase):
    def setUp(self):
        self.referrer = make_profile('api_referrer')
        self.friend = make_profile('api_friend')
        self.redeem_url = reverse('referrals:redeem')

    def test_redeem_and_complete(self):
        response = self.client.post(
            self.redeem_url,
            {'user_id': str(self.friend.id), 'code': self.referrer.referral_code, 'source': 'sms'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], ReferralStatus.PENDING)

        response = self.client.post(
            reverse('referrals:complete_onboarding'),
            {'user_id': str(self.friend.id)},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['completed'])
        self.assertEqual(response.data['rewards'][0]['reward_type'], RewardType.INVITEE_WELCOME)

    def test_redeem_errors(self):
        response = self.client.post(
            self.redeem_url,
            {'user_id': str(self.friend.id), 'code': 'XXXXXX'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_code')

        response = self.client.post(
            self.redeem_url,
            {'user_id': str(self.referrer.id), 'code': self.referrer.referral_code},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'self_referral')

        body = {'user_id': str(self.friend.id), 'code': self.referrer.referral_code}
        self.client.post(self.redeem_url, body, format='json')
        response = self.client.post(self.redeem_url, body, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_stats_rewards_leaderboard(self):
        response = self.client.get(reverse('referrals:stats'), {'user_id': str(self.referrer.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['referral_code'], self.referrer.referral_code)

        response = self.client.get(reverse('referrals:rewards'), {'user_id': str(self.referrer.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['rewards'], [])

        response = self.client.get(reverse('referrals:stats'), {'user_id': '00000000-0000-0000-0000-000000000000'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.get(reverse('referrals:leaderboard'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['leaderboard'], [])
