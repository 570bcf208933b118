"""
Serializers for the recommendations module.
"""
from django.conf import settings
from rest_framework import serializers

from recommendations.models import BlockedActivity, RecommendationTracking, RefreshHistory
from recommendations.session_service import InteractionEvent


class UserQuerySerializer(serializers.Serializer):
    user_id = serializers.UUIDField()


class PointDTOSerializer(serializers.Serializer):
    """Serializer for PointDTO"""
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class ContextDTOSerializer(serializers.Serializer):
    """Serializer for ContextDTO"""
    user_location = PointDTOSerializer(required=True)
    radius_meters = serializers.FloatField(required=False, min_value=100, max_value=50000)
    categories = serializers.ListField(child=serializers.CharField(), required=False, default=list)

    def validate(self, attrs):
        attrs.setdefault('radius_meters', float(settings.ENGINE.get('CANDIDATE_RADIUS_METERS', 5000)))
        return attrs


class RefreshRequestSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    context = ContextDTOSerializer()


class ScoredRecommendationSerializer(serializers.Serializer):
    """Serializer for ScoredRecommendation DTO"""
    external_place_id = serializers.CharField()
    place_name = serializers.CharField()
    category = serializers.CharField()
    confidence_score = serializers.FloatField()
    payload = serializers.DictField()
    resurfaced = serializers.BooleanField()
    refresh_count = serializers.IntegerField()


class InteractionRequestSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    external_place_id = serializers.CharField(max_length=255)
    event = serializers.ChoiceField(choices=InteractionEvent.ALL)
    metadata = serializers.DictField(required=False, default=dict)


class UnblockRequestSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    external_place_id = serializers.CharField(max_length=255)


class RecommendationTrackingSerializer(serializers.ModelSerializer):
    class Meta:
        model = RecommendationTracking
        fields = [
            'id', 'external_place_id', 'place_name', 'category', 'recommendation_data',
            'status', 'confidence_score', 'last_shown_at', 'refresh_count',
            'viewed_at', 'responded_at', 'decline_reason', 'block_reason', 'expires_at',
        ]
        read_only_fields = fields


class BlockedActivitySerializer(serializers.ModelSerializer):
    class Meta:
        model = BlockedActivity
        fields = ['id', 'external_place_id', 'place_name', 'reason', 'blocked_at']
        read_only_fields = fields


class RefreshHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = RefreshHistory
        fields = ['id', 'tier', 'recommendations_count', 'data_source', 'geohash', 'refreshed_at']
        read_only_fields = fields
