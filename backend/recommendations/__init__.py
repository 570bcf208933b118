"""
Recommendations Module Summary
==============================

Keeps every recommendation a user has been shown and decides what to show next.

Key Features Implemented:
1. TrackingStore - per (user, place) lifecycle: pending, viewed, accepted, declined, expired, not_interested
2. Resurfacing policy - when a declined or ignored place may come back
3. BlockList - "never show again" entries
4. RecommendationSessionService - cooldown-gated refresh flow
5. Candidate sources (Google Places, static list) and weighted scoring
6. REST API endpoints
"""
