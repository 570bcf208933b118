from rest_framework import serializers

from referrals.models import Referral, ReferralReward, ReferralSource


class RedeemCodeSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    code = serializers.CharField(max_length=10)
    source = serializers.ChoiceField(choices=ReferralSource.choices, required=False, default=ReferralSource.LINK)


class CompleteOnboardingSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()


class ReferralSerializer(serializers.ModelSerializer):
    referrer = serializers.UUIDField(source="referrer_id", read_only=True)
    referred = serializers.UUIDField(source="referred_id", read_only=True)

    class Meta:
        model = Referral
        fields = ["id", "referrer", "referred", "referral_code", "status", "source", "created_at", "completed_at"]
        read_only_fields = fields


class ReferralRewardSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReferralReward
        fields = ["id", "reward_type", "description", "plus_days", "status", "granted_at", "expires_at", "applied_at"]
        read_only_fields = fields
