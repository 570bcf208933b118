"""
Django admin configuration for recommendations models.
"""
from django.contrib import admin
from recommendations.models import BlockedActivity, RecommendationTracking, RefreshHistory


@admin.register(RecommendationTracking)
class RecommendationTrackingAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'place_name', 'status', 'confidence_score', 'refresh_count', 'last_shown_at']
    list_filter = ['status', 'category', 'last_shown_at']
    search_fields = ['user__user__username', 'place_name', 'external_place_id']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(BlockedActivity)
class BlockedActivityAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'place_name', 'reason', 'blocked_at']
    list_filter = ['blocked_at']
    search_fields = ['user__user__username', 'place_name', 'external_place_id']
    readonly_fields = ['id', 'blocked_at']


@admin.register(RefreshHistory)
class RefreshHistoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'tier', 'recommendations_count', 'data_source', 'refreshed_at']
    list_filter = ['tier', 'data_source', 'refreshed_at']
    search_fields = ['user__user__username', 'geohash']
    readonly_fields = ['id', 'refreshed_at']
