"""
ScoringService: turns a candidate activity into a confidence score in [0, 1].
A plain weighted sum of interest match, proximity and rating.
"""
import logging
import math
from typing import Optional, Tuple

from recommendations.dtos import CandidateActivity
from user.models import UserProfile

logger = logging.getLogger(__name__)


class ScoringService:
    """
    Score = (Interest * W_I) + (Norm(Rating) * W_R) + (Decay(Distance) * W_D)
    """

    WEIGHT_INTEREST = 0.5
    WEIGHT_DISTANCE = 0.2
    WEIGHT_RATING = 0.3

    # Interest match used when the user has no category preferences yet
    NEUTRAL_INTEREST = 0.5

    def __init__(self, weight_interest: float = 0.5, weight_distance: float = 0.2, weight_rating: float = 0.3):
        self.WEIGHT_INTEREST = weight_interest
        self.WEIGHT_DISTANCE = weight_distance
        self.WEIGHT_RATING = weight_rating

        total_weight = weight_interest + weight_distance + weight_rating
        if abs(total_weight - 1.0) > 0.01:
            logger.warning(f"Scoring weights sum to {total_weight}, scores will be clamped to [0, 1]")

    def compute_score(self, candidate: CandidateActivity, user: UserProfile) -> Tuple[float, float, float, float]:
        """
        Args:
            candidate: Candidate activity from the source
            user: Profile whose preferences_vector maps category -> weight

        Returns:
            Tuple[float, float, float, float]: (final_score, interest_score, distance_score, rating_score)
        """
        interest_score = self._calculate_interest(candidate.category, user.preferences_vector)
        rating_score = candidate.rating / 5.0 if candidate.rating else 0.0
        distance_score = self._calculate_distance_decay(candidate.distance_meters)

        final_score = (
            (interest_score * self.WEIGHT_INTEREST) +
            (rating_score * self.WEIGHT_RATING) +
            (distance_score * self.WEIGHT_DISTANCE)
        )
        final_score = max(0.0, min(1.0, final_score))
        return final_score, interest_score, distance_score, rating_score

    def confidence(self, candidate: CandidateActivity, user: UserProfile) -> float:
        return round(self.compute_score(candidate, user)[0], 4)

    def _calculate_interest(self, category: str, preferences: Optional[dict]) -> float:
        """Weight of the candidate's category relative to the user's strongest category."""
        if not preferences or not isinstance(preferences, dict):
            return self.NEUTRAL_INTEREST

        max_weight = max(preferences.values())
        if max_weight <= 0:
            return self.NEUTRAL_INTEREST

        weight = preferences.get(category, 0.0)
        return max(0.0, min(1.0, weight / max_weight))

    def _calculate_distance_decay(self, distance_meters: Optional[float]) -> float:
        """
        Formula: score = exp(-distance / 1000)
        At 1000m the score is ~0.37. Unknown or negative distance scores 1.0.
        """
        if not distance_meters or distance_meters < 0:
            return 1.0
        return max(0.0, math.exp(-distance_meters / 1000.0))
