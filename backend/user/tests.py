from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import TestCase
from django.urls import reverse
from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.test import APITestCase

from .cooldown import CooldownGate
from .models import SubscriptionTier, UserProfile
from .tiers import get_tier_limits

User = get_user_model()

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=dt_timezone.utc)


class CooldownGateTests(TestCase):
    """Pure admission checks"""

    def test_never_refreshed_is_admitted(self):
        self.assertTrue(CooldownGate.can_refresh(None, SubscriptionTier.FREE, T0))
        self.assertEqual(CooldownGate.seconds_until_refresh(None, SubscriptionTier.FREE, T0), 0)

    def test_free_tier_four_hour_boundary(self):
        """Free tier: denied one minute before the 4h mark, admitted exactly at it."""
        self.assertFalse(CooldownGate.can_refresh(T0, SubscriptionTier.FREE, T0 + timedelta(hours=3, minutes=59)))
        self.assertTrue(CooldownGate.can_refresh(T0, SubscriptionTier.FREE, T0 + timedelta(hours=4)))

    def test_seconds_until_refresh_free_tier(self):
        self.assertEqual(
            CooldownGate.seconds_until_refresh(T0, SubscriptionTier.FREE, T0 + timedelta(hours=1)),
            10800
        )
        self.assertEqual(
            CooldownGate.seconds_until_refresh(T0, SubscriptionTier.FREE, T0 + timedelta(hours=5)),
            0
        )

    def test_seconds_until_refresh_rounds_up(self):
        now = T0 + timedelta(hours=3, minutes=59, seconds=59, milliseconds=500)
        self.assertEqual(CooldownGate.seconds_until_refresh(T0, SubscriptionTier.FREE, now), 1)

    def test_plus_tier_one_hour(self):
        self.assertFalse(CooldownGate.can_refresh(T0, SubscriptionTier.PLUS, T0 + timedelta(minutes=59)))
        self.assertTrue(CooldownGate.can_refresh(T0, SubscriptionTier.PLUS, T0 + timedelta(hours=1)))

    def test_premium_always_admitted(self):
        for delta in (timedelta(0), timedelta(seconds=1), timedelta(minutes=5)):
            self.assertTrue(CooldownGate.can_refresh(T0, SubscriptionTier.PREMIUM, T0 + delta))
            self.assertEqual(CooldownGate.seconds_until_refresh(T0, SubscriptionTier.PREMIUM, T0 + delta), 0)

    def test_unknown_tier_treated_as_free(self):
        self.assertEqual(get_tier_limits('gold'), get_tier_limits(SubscriptionTier.FREE))


class CooldownAdmissionTests(TestCase):
    """Compare-and-set admission against the database"""

    def setUp(self):
        self.user = User.objects.create_user(username='refresher', password='password123')
        self.profile = UserProfile.objects.create(user=self.user)
        self.gate = CooldownGate()

    def test_admit_stamps_last_refresh_at(self):
        self.assertTrue(self.gate.admit_refresh(self.profile, T0))
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.last_refresh_at, T0)

    def test_second_admission_inside_window_denied(self):
        """Two requests with the same stale view of the profile: only one wins."""
        stale_copy = UserProfile.objects.get(pk=self.profile.pk)

        self.assertTrue(self.gate.admit_refresh(self.profile, T0))
        self.assertFalse(self.gate.admit_refresh(stale_copy, T0 + timedelta(seconds=1)))

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.last_refresh_at, T0)

    def test_admitted_again_after_cooldown(self):
        self.gate.admit_refresh(self.profile, T0)
        self.assertTrue(self.gate.admit_refresh(self.profile, T0 + timedelta(hours=4)))

    def test_premium_admitted_back_to_back(self):
        self.profile.subscription_tier = SubscriptionTier.PREMIUM
        self.profile.save()
        self.assertTrue(self.gate.admit_refresh(self.profile, T0))
        self.assertTrue(self.gate.admit_refresh(self.profile, T0))

    def test_release_restores_previous_stamp(self):
        self.gate.admit_refresh(self.profile, T0)
        self.assertTrue(self.gate.release_refresh(self.profile, None, T0))
        self.profile.refresh_from_db()
        self.assertIsNone(self.profile.last_refresh_at)

    def test_release_ignored_when_stamp_moved_on(self):
        self.gate.admit_refresh(self.profile, T0)
        self.assertFalse(self.gate.release_refresh(self.profile, None, T0 - timedelta(hours=5)))
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.last_refresh_at, T0)

    def test_lapsed_subscription_uses_free_cooldown(self):
        self.profile.subscription_tier = SubscriptionTier.PLUS
        self.profile.subscription_expires_at = T0 - timedelta(days=1)
        self.profile.last_refresh_at = T0 - timedelta(hours=2)
        self.profile.save()

        status_data = self.gate.refresh_status(self.profile, T0)
        self.assertEqual(status_data['tier'], SubscriptionTier.FREE)
        self.assertFalse(status_data['can_refresh'])
        self.assertEqual(status_data['seconds_until_refresh'], 7200)


class UserProfileTests(TestCase):
    def setUp(self):
        self.user1 = User.objects.create_user(username='user1', password='password123')
        self.profile1 = UserProfile.objects.create(user=self.user1)

    def test_referral_code_generated(self):
        """A six character uppercase code is generated on first save."""
        self.assertEqual(len(self.profile1.referral_code), 6)
        self.assertEqual(self.profile1.referral_code, self.profile1.referral_code.upper())

    def test_referral_codes_unique(self):
        user2 = User.objects.create_user(username='user2', password='password123')
        profile2 = UserProfile.objects.create(user=user2)
        self.assertNotEqual(self.profile1.referral_code, profile2.referral_code)

    def test_explicit_code_upper_cased(self):
        user2 = User.objects.create_user(username='user2', password='password123')
        profile2 = UserProfile.objects.create(user=user2, referral_code='abc123')
        self.assertEqual(profile2.referral_code, 'ABC123')

    def test_effective_tier(self):
        self.profile1.subscription_tier = SubscriptionTier.PLUS
        self.profile1.subscription_expires_at = T0 + timedelta(days=30)
        self.assertEqual(self.profile1.effective_tier(T0), SubscriptionTier.PLUS)
        self.assertEqual(self.profile1.effective_tier(T0 + timedelta(days=30)), SubscriptionTier.FREE)

        self.profile1.subscription_expires_at = None
        self.assertEqual(self.profile1.effective_tier(T0 + timedelta(days=365)), SubscriptionTier.PLUS)


class UserAPITests(APITestCase):
    def setUp(self):
        self.user1 = User.objects.create_user(username='api_user1', password='password123')
        self.profile1 = UserProfile.objects.create(user=self.user1)

        self.client.force_authenticate(user=self.user1)

    def test_get_me(self):
        """Test retrieving the current user's profile via API."""
        url = reverse('me')
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], self.user1.username)
        self.assertEqual(response.data['referral_code'], self.profile1.referral_code)

    def test_get_profile_by_id(self):
        url = reverse('profile', args=[self.profile1.id])
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['subscription_tier'], SubscriptionTier.FREE)
        self.assertIsNone(response.data['last_refresh_at'])

    def test_get_unknown_profile(self):
        url = reverse('profile', args=['00000000-0000-0000-0000-000000000000'])
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
