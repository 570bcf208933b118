"""
URL configuration for the recommendations module.
"""
from django.urls import path
from recommendations.views import (
    RefreshRecommendationsView, RefreshStatusView,
    InteractionView, UnblockView,
    BlockedActivitiesView, TrackingStatsView,
    TrackingListView, RefreshHistoryView
)

app_name = 'recommendations'

urlpatterns = [
    path('refresh/', RefreshRecommendationsView.as_view(), name='refresh'),
    path('refresh-status/', RefreshStatusView.as_view(), name='refresh_status'),
    path('interactions/', InteractionView.as_view(), name='interactions'),
    path('unblock/', UnblockView.as_view(), name='unblock'),
    path('blocked/', BlockedActivitiesView.as_view(), name='blocked'),
    path('stats/', TrackingStatsView.as_view(), name='stats'),
    path('tracking/', TrackingListView.as_view(), name='tracking'),
    path('history/', RefreshHistoryView.as_view(), name='history'),
]
