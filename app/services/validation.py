"""Vote count validation and statistical anomaly detection.

These checks never reject a result. Their verdicts are stored with the
result and feed the confidence score and the review queue.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from app.core.config import TallyConfig


def _candidate_votes(counts: Mapping[str, Any]) -> list[int]:
    return [cv["votes"] for cv in counts.get("candidate_votes") or []]


def validate_vote_counts(counts: Mapping[str, Any]) -> dict[str, Any]:
    """
    Check the internal arithmetic of a declared result.

    All rules are evaluated; the error list holds every violation found.

    Args:
        counts: registered_voters, total_votes_cast, valid_votes,
            rejected_votes and candidate_votes ([{"votes": int, ...}])

    Returns:
        {"valid": bool, "errors": list[str]}
    """
    errors: list[str] = []

    registered = counts["registered_voters"]
    total = counts["total_votes_cast"]
    valid = counts["valid_votes"]
    rejected = counts["rejected_votes"]
    candidate_votes = _candidate_votes(counts)

    if total > registered:
        errors.append(
            f"Total votes cast ({total}) exceeds registered voters ({registered})"
        )

    sum_valid_rejected = valid + rejected
    if sum_valid_rejected != total:
        errors.append(
            f"Valid votes ({valid}) + Rejected votes ({rejected}) = {sum_valid_rejected} "
            f"does not equal Total votes cast ({total})"
        )

    sum_candidate_votes = sum(candidate_votes)
    if sum_candidate_votes != valid:
        errors.append(
            f"Sum of candidate votes ({sum_candidate_votes}) does not equal valid votes ({valid})"
        )

    if registered < 0:
        errors.append("Registered voters cannot be negative")
    if total < 0:
        errors.append("Total votes cast cannot be negative")
    if valid < 0:
        errors.append("Valid votes cannot be negative")
    if rejected < 0:
        errors.append("Rejected votes cannot be negative")

    for index, votes in enumerate(candidate_votes, start=1):
        if votes < 0:
            errors.append(f"Candidate {index} votes cannot be negative")

    return {"valid": not errors, "errors": errors}


def detect_anomalies(
    counts: Mapping[str, Any], *, config: TallyConfig
) -> dict[str, Any]:
    """
    Flag statistically suspicious results.

    Each check runs independently. A check whose denominator is zero is
    skipped rather than producing an infinite or undefined ratio.

    Returns:
        {"has_anomalies": bool, "flags": list[str]}
    """
    flags: list[str] = []

    registered = counts["registered_voters"]
    total = counts["total_votes_cast"]
    valid = counts["valid_votes"]
    rejected = counts["rejected_votes"]
    candidate_votes = _candidate_votes(counts)

    turnout = (total / registered) * 100 if registered > 0 else None

    if turnout is not None and turnout > config.high_turnout_threshold:
        flags.append(f"Unusually high turnout: {turnout:.1f}%")

    if total > 0:
        rejection_rate = (rejected / total) * 100
        if rejection_rate > config.rejection_rate_threshold:
            flags.append(f"High rejection rate: {rejection_rate:.1f}%")

    if valid > 0 and candidate_votes:
        max_percentage = (max(candidate_votes) / valid) * 100
        if max_percentage > config.landslide_threshold:
            flags.append(f"One candidate has {max_percentage:.1f}% of votes")

    if turnout is not None and turnout < config.low_turnout_threshold:
        flags.append(f"Unusually low turnout: {turnout:.1f}%")

    return {"has_anomalies": bool(flags), "flags": flags}


def calculate_variance(
    first: Sequence[Mapping[str, Any]], second: Sequence[Mapping[str, Any]]
) -> dict[str, Any]:
    """
    Compare two candidate vote lists for the same station.

    Candidates are matched by name; names present in only one list are
    ignored. The percentage is the total absolute difference relative to
    the first list's votes for the matched candidates.
    """
    second_by_name = {cv["candidate_name"]: cv["votes"] for cv in second}
    details = []
    total_diff = 0
    total_votes = 0

    for cv in first:
        other = second_by_name.get(cv["candidate_name"])
        if other is None:
            continue
        diff = abs(cv["votes"] - other)
        details.append({"candidate": cv["candidate_name"], "diff": diff})
        total_diff += diff
        total_votes += cv["votes"]

    percentage = (total_diff / total_votes) * 100 if total_votes > 0 else 0.0
    return {"percentage": round(percentage, 2), "details": details}
