from rest_framework import serializers
from .models import UserProfile


class UserProfileSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)
    email = serializers.CharField(source="user.email", read_only=True)
    referred_by = serializers.UUIDField(source="referred_by_id", read_only=True)

    class Meta:
        model = UserProfile
        fields = [
            "id",
            "username",
            "email",
            "subscription_tier",
            "subscription_expires_at",
            "referral_code",
            "referred_by",
            "referral_count",
            "last_refresh_at",
            "onboarding_completed_at",
        ]
        read_only_fields = fields
