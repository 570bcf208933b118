from django.contrib import admin
from referrals.models import Referral, ReferralReward


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ['id', 'referrer', 'referred', 'referral_code', 'status', 'source', 'created_at']
    list_filter = ['status', 'source', 'created_at']
    search_fields = ['referral_code', 'referrer__user__username', 'referred__user__username']
    readonly_fields = ['id', 'created_at', 'updated_at', 'completed_at']


@admin.register(ReferralReward)
class ReferralRewardAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'reward_type', 'plus_days', 'status', 'granted_at', 'applied_at']
    list_filter = ['reward_type', 'status']
    search_fields = ['user__user__username']
    readonly_fields = ['id', 'created_at']
