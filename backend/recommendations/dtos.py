"""
Data Transfer Objects (DTOs) passed between the refresh orchestrator,
the candidate sources and the API layer.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PointDTO:
    """Represents a geographic point (latitude, longitude)"""
    latitude: float
    longitude: float


@dataclass
class ContextDTO:
    """
    Context for a refresh request: where the user is and how far to look.
    """
    user_location: PointDTO
    radius_meters: float = 5000.0
    categories: List[str] = field(default_factory=list)  # empty means any category


@dataclass
class CandidateActivity:
    """
    One activity returned by a candidate source. `payload` is opaque to the
    engine and is stored as the recommendation snapshot.
    """
    external_place_id: str
    name: str
    category: str
    payload: Dict[str, Any] = field(default_factory=dict)
    rating: Optional[float] = None  # 0.0 - 5.0
    distance_meters: Optional[float] = None


@dataclass
class ScoredRecommendation:
    """
    Candidate with its confidence score, as returned to the caller of a refresh.
    """
    external_place_id: str
    place_name: str
    category: str
    confidence_score: float
    payload: Dict[str, Any] = field(default_factory=dict)
    resurfaced: bool = False
    refresh_count: int = 0


@dataclass
class RefreshResult:
    admitted: bool
    results: List[ScoredRecommendation] = field(default_factory=list)
    seconds_until_refresh: int = 0
    tier: Optional[str] = None

