"""
Views for the recommendations module.
"""
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import CandidateSourceError, ConflictError, InvalidTransitionError, NotFoundError
from recommendations.dtos import ContextDTO, PointDTO
from recommendations.models import RecommendationTracking, RefreshHistory, TrackingStatus
from recommendations.serializers import (
    BlockedActivitySerializer,
    InteractionRequestSerializer,
    RecommendationTrackingSerializer,
    RefreshHistorySerializer,
    RefreshRequestSerializer,
    ScoredRecommendationSerializer,
    UnblockRequestSerializer,
    UserQuerySerializer,
)
from recommendations.session_service import RecommendationSessionService
from recommendations.tracking_service import BlockList, TrackingStore


def _user_id_or_error(params):
    """Validated user_id from query params, or (None, 400 response)."""
    serializer = UserQuerySerializer(data=params)
    if not serializer.is_valid():
        return None, Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    return serializer.validated_data['user_id'], None


class RefreshRecommendationsView(APIView):
    """
    API endpoint for refreshing a user's recommendations.

    POST /api/recommendations/refresh/
    Body:
    {
        "user_id": "uuid",
        "context": {
            "user_location": {"latitude": 40.7128, "longitude": -74.0060},
            "radius_meters": 5000,
            "categories": ["food", "culture"]
        }
    }

    429 with seconds_until_refresh while the tier cooldown is active.
    """
    #permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = RefreshRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        location = data['context']['user_location']
        context = ContextDTO(
            user_location=PointDTO(latitude=location['latitude'], longitude=location['longitude']),
            radius_meters=data['context']['radius_meters'],
            categories=data['context']['categories'],
        )

        service = RecommendationSessionService()
        try:
            result = service.request_refresh(data['user_id'], context)
        except NotFoundError as e:
            return Response({'error': e.message}, status=status.HTTP_404_NOT_FOUND)
        except CandidateSourceError as e:
            return Response({'error': e.message}, status=status.HTTP_502_BAD_GATEWAY)

        if not result.admitted:
            response = Response(
                {
                    'error': 'Refresh cooldown active',
                    'seconds_until_refresh': result.seconds_until_refresh,
                    'tier': result.tier,
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(result.seconds_until_refresh)
            return response

        return Response(
            {
                'recommendations': ScoredRecommendationSerializer(result.results, many=True).data,
                'seconds_until_refresh': result.seconds_until_refresh,
                'tier': result.tier,
            },
            status=status.HTTP_200_OK
        )


class RefreshStatusView(APIView):
    """
    GET /api/recommendations/refresh-status/?user_id=uuid
    """

    def get(self, request):
        user_id, error = _user_id_or_error(request.query_params)
        if error:
            return error
        try:
            data = RecommendationSessionService().refresh_status(user_id)
        except NotFoundError as e:
            return Response({'error': e.message}, status=status.HTTP_404_NOT_FOUND)
        return Response(data, status=status.HTTP_200_OK)


class InteractionView(APIView):
    """
    Record a client event on a shown recommendation.

    POST /api/recommendations/interactions/
    Body:
    {
        "user_id": "uuid",
        "external_place_id": "ChIJ...",
        "event": "viewed" | "accepted" | "declined" | "blocked",
        "metadata": {"reason": "too far"}
    }
    """

    def post(self, request):
        serializer = InteractionRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            RecommendationSessionService().record_interaction(
                data['user_id'],
                data['external_place_id'],
                data['event'],
                data['metadata'],
            )
        except NotFoundError as e:
            return Response({'error': e.message}, status=status.HTTP_404_NOT_FOUND)
        except (InvalidTransitionError, ConflictError) as e:
            return Response({'error': e.message}, status=status.HTTP_409_CONFLICT)

        return Response(status=status.HTTP_204_NO_CONTENT)


class UnblockView(APIView):
    """
    POST /api/recommendations/unblock/
    Body: {"user_id": "uuid", "external_place_id": "ChIJ..."}
    """

    def post(self, request):
        serializer = UnblockRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        removed = BlockList().unblock(data['user_id'], data['external_place_id'])
        return Response({'unblocked': removed}, status=status.HTTP_200_OK)


class BlockedActivitiesView(APIView):
    """
    GET /api/recommendations/blocked/?user_id=uuid
    """

    def get(self, request):
        user_id, error = _user_id_or_error(request.query_params)
        if error:
            return error
        serializer = BlockedActivitySerializer(BlockList().list_blocked(user_id), many=True)
        return Response({'blocked': serializer.data}, status=status.HTTP_200_OK)


class TrackingStatsView(APIView):
    """
    GET /api/recommendations/stats/?user_id=uuid
    """

    def get(self, request):
        user_id, error = _user_id_or_error(request.query_params)
        if error:
            return error
        return Response(TrackingStore().get_stats(user_id), status=status.HTTP_200_OK)


class TrackingListView(APIView):
    """
    GET /api/recommendations/tracking/?user_id=uuid&status=pending

    Most recently shown first.
    """

    def get(self, request):
        user_id, error = _user_id_or_error(request.query_params)
        if error:
            return error

        queryset = RecommendationTracking.objects.filter(user_id=user_id)
        status_filter = request.query_params.get('status')
        if status_filter:
            if status_filter not in TrackingStatus.values:
                return Response(
                    {'error': f'Unknown status: {status_filter}'},
                    status=status.HTTP_400_BAD_REQUEST
                )
            queryset = queryset.filter(status=status_filter)

        serializer = RecommendationTrackingSerializer(queryset.order_by('-last_shown_at'), many=True)
        return Response({'tracking': serializer.data}, status=status.HTTP_200_OK)


class RefreshHistoryView(APIView):
    """
    GET /api/recommendations/history/?user_id=uuid
    """
    HISTORY_LIMIT = 50

    def get(self, request):
        user_id, error = _user_id_or_error(request.query_params)
        if error:
            return error
        history = RefreshHistory.objects.filter(user_id=user_id).order_by('-refreshed_at')[:self.HISTORY_LIMIT]
        serializer = RefreshHistorySerializer(history, many=True)
        return Response({'history': serializer.data}, status=status.HTTP_200_OK)
