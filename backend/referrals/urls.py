from django.urls import path
from .views import (
    CompleteOnboardingView,
    LeaderboardView,
    RedeemCodeView,
    ReferralRewardsView,
    ReferralStatsView,
)

app_name = "referrals"

urlpatterns = [
    path("redeem/", RedeemCodeView.as_view(), name="redeem"),
    path("complete-onboarding/", CompleteOnboardingView.as_view(), name="complete_onboarding"),
    path("stats/", ReferralStatsView.as_view(), name="stats"),
    path("rewards/", ReferralRewardsView.as_view(), name="rewards"),
    path("leaderboard/", LeaderboardView.as_view(), name="leaderboard"),
]
