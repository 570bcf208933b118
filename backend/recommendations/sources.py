"""
Candidate activity sources consumed by the refresh orchestrator.
The orchestrator treats a source as opaque and pull-based.
"""
import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from core.exceptions import CandidateSourceError
from recommendations.dtos import CandidateActivity, ContextDTO

logger = logging.getLogger(__name__)


class CandidateSource(ABC):
    """Abstract base class for candidate activity providers"""

    source_name = 'unknown'

    @abstractmethod
    def fetch_candidates(self, context: ContextDTO) -> List[CandidateActivity]:
        """
        Return candidate activities around the context location.

        Raises:
            CandidateSourceError: the provider could not be reached or answered with an error
        """
        pass


class StaticCandidateSource(CandidateSource):
    """Serves a fixed list of candidates. Used for seeding and local development."""

    source_name = 'static'

    def __init__(self, candidates: Optional[List[CandidateActivity]] = None):
        self.candidates = list(candidates or [])

    def fetch_candidates(self, context: ContextDTO) -> List[CandidateActivity]:
        if not context.categories:
            return list(self.candidates)
        return [c for c in self.candidates if c.category in context.categories]


class GooglePlacesCandidateSource(CandidateSource):
    """Google Places Nearby Search client"""

    source_name = 'google_places'
    NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

    # Google place types -> activity categories
    CATEGORY_MAPPING = {
        'museum': 'culture',
        'art_gallery': 'culture',
        'tourist_attraction': 'culture',
        'park': 'outdoors',
        'natural_feature': 'outdoors',
        'campground': 'outdoors',
        'restaurant': 'food',
        'cafe': 'food',
        'bakery': 'food',
        'bar': 'nightlife',
        'night_club': 'nightlife',
        'gym': 'fitness',
        'stadium': 'fitness',
        'movie_theater': 'entertainment',
        'amusement_park': 'entertainment',
        'bowling_alley': 'entertainment',
        'shopping_mall': 'shopping',
        'store': 'shopping',
    }
    DEFAULT_CATEGORY = 'other'

    def __init__(self, api_key: str = None, timeout: float = None, session: requests.Session = None):
        """
        Args:
            api_key: Google Places API key (falls back to settings.GOOGLE_PLACES_API_KEY)
            timeout: Request timeout in seconds (falls back to ENGINE['CANDIDATE_TIMEOUT_SECONDS'])
            session: Optional requests session, mainly for connection reuse
        """
        self.api_key = api_key or settings.GOOGLE_PLACES_API_KEY
        self.timeout = timeout or settings.ENGINE.get('CANDIDATE_TIMEOUT_SECONDS', 10)
        self.session = session or requests.Session()

    def fetch_candidates(self, context: ContextDTO) -> List[CandidateActivity]:
        if not self.api_key:
            raise CandidateSourceError("Google Places API key is not configured")

        origin = (context.user_location.latitude, context.user_location.longitude)
        params = {
            'location': f"{origin[0]},{origin[1]}",
            'radius': int(context.radius_meters),
            'key': self.api_key,
        }

        try:
            response = self.session.get(self.NEARBY_SEARCH_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching from Google Places: {str(e)}")
            raise CandidateSourceError(f"Google Places request failed: {e}") from e

        status = body.get('status', 'OK')
        if status == 'ZERO_RESULTS':
            return []
        if status != 'OK':
            logger.error(f"Google Places returned status {status}: {body.get('error_message', '')}")
            raise CandidateSourceError(f"Google Places returned status {status}")

        candidates = []
        for place_data in body.get('results', []):
            candidate = self._parse_google_place(place_data, origin)
            if candidate is None:
                continue
            if context.categories and candidate.category not in context.categories:
                continue
            candidates.append(candidate)
        return candidates

    def map_category(self, place_types: List[str]) -> str:
        for place_type in place_types:
            category = self.CATEGORY_MAPPING.get(place_type.lower())
            if category:
                return category
        return self.DEFAULT_CATEGORY

    def _parse_google_place(self, place_data: Dict, origin: Tuple[float, float]) -> Optional[CandidateActivity]:
        place_id = place_data.get('place_id')
        if not place_id:
            return None

        location = place_data.get('geometry', {}).get('location', {})
        lat, lon = location.get('lat'), location.get('lng')
        distance = None
        if lat is not None and lon is not None:
            distance = self._haversine_meters(origin, (lat, lon))

        place_types = place_data.get('types', [])
        photos = place_data.get('photos') or [{}]
        return CandidateActivity(
            external_place_id=place_id,
            name=place_data.get('name', ''),
            category=self.map_category(place_types),
            rating=place_data.get('rating'),
            distance_meters=distance,
            payload={
                'name': place_data.get('name', ''),
                'address': place_data.get('vicinity', ''),
                'latitude': lat,
                'longitude': lon,
                'rating': place_data.get('rating'),
                'user_ratings_total': place_data.get('user_ratings_total'),
                'photo_reference': photos[0].get('photo_reference'),
                'types': place_types,
            },
        )

    @staticmethod
    def _haversine_meters(coord1: Tuple[float, float], coord2: Tuple[float, float]) -> float:
        """Great-circle distance between two (lat, lon) pairs in meters."""
        lat1, lon1 = coord1
        lat2, lon2 = coord2

        R = 6371000  # Earth radius in m
        dlat = math.radians(lat2 - lat1)
        dlon = math.radians(lon2 - lon1)

        a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(
            dlon / 2) ** 2
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return R * c


def get_candidate_source() -> CandidateSource:
    """Instantiate the source configured in settings.ENGINE['CANDIDATE_SOURCE']."""
    source_class = import_string(settings.ENGINE['CANDIDATE_SOURCE'])
    return source_class()
