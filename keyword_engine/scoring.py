from __future__ import annotations

import math
from typing import Sequence, Tuple

from .models import AppRecord
from .utils import parse_review_count


# (lower bound of result count, upper bound, score at lower, score at upper)
POPULARITY_BANDS: Tuple[Tuple[int, int, float, float], ...] = (
    (0, 20, 0.0, 25.0),
    (20, 100, 25.0, 50.0),
    (100, 500, 50.0, 75.0),
    (500, 1500, 75.0, 100.0),
)

# competitor count -> 0..100 before weighting
COUNT_BANDS: Tuple[Tuple[int, int, float, float], ...] = (
    (0, 5, 0.0, 20.0),
    (5, 20, 20.0, 50.0),
    (20, 50, 50.0, 80.0),
    (50, 100, 80.0, 100.0),
)
COUNT_WEIGHT = 0.4

# mean rating -> 0..30
RATING_BANDS: Tuple[Tuple[float, float, float, float], ...] = (
    (0.0, 3.0, 0.0, 15.0),
    (3.0, 4.0, 15.0, 25.0),
    (4.0, 5.0, 25.0, 30.0),
)

REVIEWS_MAX_SCORE = 30.0
REVIEWS_LOG_SCALE = 7.0


def _interpolate(value: float, bands: Sequence[Tuple[float, float, float, float]]) -> float:
    """Piecewise-linear lookup; saturates at the last band's upper score."""
    for low, high, low_score, high_score in bands:
        if value < high:
            ratio = (value - low) / (high - low)
            return low_score + max(0.0, ratio) * (high_score - low_score)
    return bands[-1][3]


def _clamp(score: float) -> int:
    return int(round(max(0.0, min(100.0, score))))


def calculate_popularity(total_results: int) -> int:
    """
    Popularity (0-100) from the size of the search result set.

    0 results -> 0, then linear bands 1-19 -> 0..25, 20-99 -> 25..50,
    100-499 -> 50..75, 500+ -> 75..100 reaching 100 at 1500 results.
    """
    if total_results <= 0:
        return 0
    return _clamp(_interpolate(total_results, POPULARITY_BANDS))


def calculate_difficulty(competing_apps: Sequence[AppRecord]) -> int:
    """
    Difficulty (0-100) from the apps competing for a keyword, target excluded.

    count component (40 pts) + mean rating component (30 pts)
    + log-scaled mean review count component (30 pts).
    """
    if not competing_apps:
        return 0

    count = len(competing_apps)
    count_score = _interpolate(count, COUNT_BANDS) * COUNT_WEIGHT

    mean_rating = sum(app.rating or 0.0 for app in competing_apps) / count
    rating_score = _interpolate(mean_rating, RATING_BANDS)

    mean_reviews = sum(parse_review_count(app.reviews_count) for app in competing_apps) / count
    reviews_score = min(
        REVIEWS_MAX_SCORE,
        math.log10(mean_reviews + 1) / REVIEWS_LOG_SCALE * REVIEWS_MAX_SCORE,
    )

    return _clamp(count_score + rating_score + reviews_score)
