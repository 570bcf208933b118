from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import DuplicateReferralError, NotFoundError, ReferralError
from recommendations.serializers import UserQuerySerializer
from recommendations.session_service import RecommendationSessionService
from referrals.serializers import (
    CompleteOnboardingSerializer,
    RedeemCodeSerializer,
    ReferralRewardSerializer,
    ReferralSerializer,
)
from referrals.services import ReferralLedger
from user.models import UserProfile


def _profile_or_error(params):
    serializer = UserQuerySerializer(data=params)
    if not serializer.is_valid():
        return None, Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    try:
        return UserProfile.objects.get(pk=serializer.validated_data["user_id"]), None
    except UserProfile.DoesNotExist:
        return None, Response({"error": "User not found"}, status=status.HTTP_404_NOT_FOUND)


class RedeemCodeView(APIView):
    #permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = RedeemCodeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            referral = RecommendationSessionService().redeem_referral_code(
                data["user_id"], data["code"], data["source"]
            )
        except NotFoundError as e:
            return Response({"error": e.message}, status=status.HTTP_404_NOT_FOUND)
        except DuplicateReferralError as e:
            return Response({"error": e.message, "code": e.code}, status=status.HTTP_409_CONFLICT)
        except ReferralError as e:
            return Response({"error": e.message, "code": e.code}, status=status.HTTP_400_BAD_REQUEST)

        return Response(ReferralSerializer(referral).data, status=status.HTTP_201_CREATED)


class CompleteOnboardingView(APIView):
    #permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CompleteOnboardingSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = RecommendationSessionService().complete_onboarding(serializer.validated_data["user_id"])
        except NotFoundError as e:
            return Response({"error": e.message}, status=status.HTTP_404_NOT_FOUND)

        return Response(
            {
                "completed": result.completed,
                "reason": result.reason,
                "referral": ReferralSerializer(result.referral).data if result.referral else None,
                "rewards": ReferralRewardSerializer(result.rewards, many=True).data,
            },
            status=status.HTTP_200_OK
        )


class ReferralStatsView(APIView):

    def get(self, request):
        profile, error = _profile_or_error(request.query_params)
        if error:
            return error
        return Response(ReferralLedger().get_stats(profile))


class ReferralRewardsView(APIView):

    def get(self, request):
        profile, error = _profile_or_error(request.query_params)
        if error:
            return error
        rewards = ReferralLedger().active_rewards(profile)
        return Response({"rewards": ReferralRewardSerializer(rewards, many=True).data})


class LeaderboardView(APIView):

    def get(self, request):
        try:
            limit = min(int(request.query_params.get("limit", 10)), 100)
        except ValueError:
            return Response({"error": "limit must be an integer"}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"leaderboard": ReferralLedger().leaderboard(limit)})
