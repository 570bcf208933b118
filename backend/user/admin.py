from django.contrib import admin
from .models import UserProfile


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'subscription_tier', 'referral_code', 'referral_count', 'last_refresh_at']
    list_filter = ['subscription_tier']
    search_fields = ['user__username', 'referral_code']
    readonly_fields = ['id', 'created_at', 'referral_count']
