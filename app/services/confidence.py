"""Confidence scoring for field submissions.

The score is an advisory 0-100 trust indicator used to prioritise review.
It never blocks persistence.
"""

from collections.abc import Iterable
from datetime import UTC, datetime


def location_score(location_verified: bool, distance: float | None) -> int:
    """GPS accuracy component (max 20)."""
    if not location_verified or distance is None:
        return 0
    if distance <= 100:
        return 20
    elif distance <= 300:
        return 15
    elif distance <= 500:
        return 10
    return 0


def photo_score(photo_count: int, has_all_required_photos: bool) -> int:
    """Photo completeness component (max 30)."""
    score = 20 if has_all_required_photos else 0
    if photo_count >= 3:
        score += 10
    elif photo_count == 2:
        score += 5
    return score


def timeliness_score(submitted_within_hours: float) -> int:
    """Timely submission component (max 15)."""
    if submitted_within_hours <= 2:
        return 15
    elif submitted_within_hours <= 6:
        return 10
    elif submitted_within_hours <= 12:
        return 5
    return 0


def calculate_confidence_score(
    *,
    location_verified: bool,
    distance: float | None,
    photo_count: int,
    has_all_required_photos: bool,
    math_valid: bool,
    submitted_within_hours: float,
    historical_match: bool,
) -> int:
    """
    Combine the verification signals into a single score.

    Components: location (20), photos (30), arithmetic (20),
    timeliness (15), historical match (15).

    Returns:
        Integer score clamped to [0, 100]
    """
    score = location_score(location_verified, distance)
    score += photo_score(photo_count, has_all_required_photos)

    if math_valid:
        score += 20

    score += timeliness_score(submitted_within_hours)

    if historical_match:
        score += 15

    return min(100, max(0, score))


def has_required_photos(photo_types: Iterable[str], required: Iterable[str]) -> bool:
    """True when every required photo type is present."""
    present = set(photo_types)
    return all(photo_type in present for photo_type in required)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def hours_between(captured_at: datetime | None, submitted_at: datetime) -> float:
    """
    Hours elapsed from form capture to submission.

    An unknown capture time counts as immediate; clock skew that puts the
    capture after the submission is treated the same way. Timestamps
    without a timezone are read as UTC.
    """
    if captured_at is None:
        return 0.0
    elapsed = (_as_utc(submitted_at) - _as_utc(captured_at)).total_seconds() / 3600
    return max(0.0, elapsed)
