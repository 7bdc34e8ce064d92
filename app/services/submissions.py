"""Submission intake, result recording and review.

Handles the lifecycle of a field submission: intake with location and photo
checks, attaching the declared result, and the reviewer decisions that
move it out of `pending`.
"""

import json
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import asyncpg

from app.core.config import TallyConfig
from app.core.logging_config import tally_logger
from app.services.audit import REVIEW_ACTIONS, AuditAction, AuditSeverity, create_audit_log
from app.services.confidence import (
    calculate_confidence_score,
    has_required_photos,
    hours_between,
)
from app.services.geo import validate_coordinates, verify_location
from app.services.scope import (
    POSITIONS,
    Scope,
    get_candidate_profile,
    scope_predicate,
    within_scope,
)
from app.services.validation import (
    calculate_variance,
    detect_anomalies,
    validate_vote_counts,
)

SUBMISSION_TYPES = ("primary", "backup", "public")
SUBMISSION_STATUSES = ("pending", "verified", "flagged", "rejected")
PHOTO_TYPES = ("full_form", "closeup", "signature", "stamp", "serial_number", "other")

# A submitter may replace their own submission only once it has been sent back.
REVISABLE_STATUSES = ("flagged", "rejected")

REVIEW_TRANSITIONS = {
    "approve": "verified",
    "reject": "rejected",
    "request_revision": "flagged",
}

QUEUE_FILTERS = {
    "all": "(s.status IN ('pending', 'flagged') OR s.has_discrepancy = TRUE)",
    "pending": "s.status = 'pending'",
    "flagged": "s.status = 'flagged'",
    "anomalies": "s.has_discrepancy = TRUE",
}


class SubmissionConflict(ValueError):
    """A write collided with existing state (duplicate, final status)."""

    def __init__(self, message: str, code: str = "duplicate_submission"):
        super().__init__(message)
        self.code = code


class ReferenceNotFound(LookupError):
    """A referenced station, candidate or submission does not exist."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


# ============================================
# LOOKUPS
# ============================================


async def get_polling_station(
    conn: asyncpg.Connection, polling_station_id: int
) -> dict[str, Any] | None:
    row = await conn.fetchrow(
        """
        SELECT id, code, name, ward_id, constituency_id, county_id,
               registered_voters, latitude, longitude, location_radius
        FROM polling_stations
        WHERE id = $1
        """,
        polling_station_id,
    )
    return dict(row) if row else None


async def get_submission(
    conn: asyncpg.Connection, submission_id: int, *, for_update: bool = False
) -> dict[str, Any] | None:
    """
    Get a submission together with the location ids of its station.

    With `for_update` the submission row stays locked until the caller's
    transaction ends.
    """
    lock = "FOR UPDATE OF s" if for_update else ""
    row = await conn.fetchrow(
        f"""
        SELECT s.*, ps.ward_id, ps.constituency_id, ps.county_id
        FROM submissions s
        JOIN polling_stations ps ON s.polling_station_id = ps.id
        WHERE s.id = $1
        {lock}
        """,
        submission_id,
    )
    return dict(row) if row else None


def _ancestry(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "polling_station_id": row.get("polling_station_id", row.get("id")),
        "ward_id": row.get("ward_id"),
        "constituency_id": row.get("constituency_id"),
        "county_id": row.get("county_id"),
    }


async def _check_submitter_access(
    conn: asyncpg.Connection,
    user: Mapping[str, Any],
    *,
    candidate_id: int,
    polling_station_id: int,
    submission_type: str,
) -> None:
    """Raise PermissionError when the caller may not submit for this candidate."""
    role = user.get("role")

    if role == "agent":
        agent = await conn.fetchrow(
            "SELECT id, polling_station_id FROM agents WHERE user_id = $1 AND candidate_id = $2",
            user["id"],
            candidate_id,
        )
        if not agent:
            raise PermissionError("Unauthorized for this candidate")
        if submission_type == "primary" and agent["polling_station_id"] != polling_station_id:
            raise PermissionError("Agent not assigned to this polling station")

    elif role == "candidate":
        own = await conn.fetchval(
            "SELECT id FROM candidates WHERE user_id = $1 AND id = $2",
            user["id"],
            candidate_id,
        )
        if not own:
            raise PermissionError("Unauthorized for this candidate")


def can_revise_submission(existing: Mapping[str, Any] | None) -> bool:
    """True when no submission exists yet or the existing one was sent back."""
    if existing is None:
        return True
    return existing["status"] in REVISABLE_STATUSES


def _dedupe_photos(photos: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    unique: list[dict[str, Any]] = []
    seen: set[str] = set()
    for photo in photos:
        if photo["hash"] in seen:
            continue
        seen.add(photo["hash"])
        unique.append(dict(photo))
    return unique


# ============================================
# SUBMISSION INTAKE
# ============================================


async def create_submission(
    conn: asyncpg.Connection,
    *,
    user: Mapping[str, Any],
    polling_station_id: int,
    candidate_id: int,
    submission_type: str = "primary",
    submitted_lat: float | None = None,
    submitted_lng: float | None = None,
    form_captured_at: datetime | None = None,
    device_id: str | None = None,
    device_type: str | None = None,
    ip_address: str | None = None,
    photos: Sequence[Mapping[str, Any]] | None = None,
    config: TallyConfig,
) -> dict[str, Any]:
    """
    Register a field submission for a polling station.

    Photos are already stored; only their metadata is registered here.
    The initial confidence score assumes sound arithmetic since the result
    is attached later by `record_result`.

    Raises:
        ReferenceNotFound: station or candidate does not exist
        PermissionError: caller may not submit for this candidate/station
        SubmissionConflict: a non-revisable submission already exists
    """
    if submission_type not in SUBMISSION_TYPES:
        raise ValueError(f"Invalid submission type: {submission_type}")

    if submitted_lat is not None and submitted_lng is not None:
        validate_coordinates(submitted_lat, submitted_lng)

    station = await get_polling_station(conn, polling_station_id)
    if not station:
        raise ReferenceNotFound("Polling station", polling_station_id)

    candidate_exists = await conn.fetchval(
        "SELECT id FROM candidates WHERE id = $1", candidate_id
    )
    if not candidate_exists:
        raise ReferenceNotFound("Candidate", candidate_id)

    await _check_submitter_access(
        conn,
        user,
        candidate_id=candidate_id,
        polling_station_id=polling_station_id,
        submission_type=submission_type,
    )

    verification = verify_location(
        submitted_lat,
        submitted_lng,
        station["latitude"],
        station["longitude"],
        station["location_radius"],
        config=config,
    )

    unique_photos = _dedupe_photos(photos or [])
    submitted_at = datetime.now(UTC)

    confidence_score = calculate_confidence_score(
        location_verified=verification["verified"],
        distance=verification["distance"],
        photo_count=len(unique_photos),
        has_all_required_photos=has_required_photos(
            [p["photo_type"] for p in unique_photos], config.required_photo_types
        ),
        math_valid=True,
        submitted_within_hours=hours_between(form_captured_at, submitted_at),
        historical_match=False,
    )

    async with conn.transaction():
        existing = await conn.fetchrow(
            """
            SELECT id, status FROM submissions
            WHERE user_id = $1 AND polling_station_id = $2
              AND candidate_id = $3 AND submission_type = $4
            FOR UPDATE
            """,
            user["id"],
            polling_station_id,
            candidate_id,
            submission_type,
        )

        if not can_revise_submission(existing):
            tally_logger.log_duplicate_submission(user["id"], polling_station_id, candidate_id)
            raise SubmissionConflict("Submission already exists for this polling station")

        if existing:
            # Photos, results, votes and reviews cascade with the submission
            await conn.execute("DELETE FROM submissions WHERE id = $1", existing["id"])

        try:
            row = await conn.fetchrow(
                """
                INSERT INTO submissions (
                    polling_station_id, user_id, candidate_id, submission_type,
                    submitted_lat, submitted_lng, location_verified,
                    device_id, device_type, ip_address, confidence_score,
                    form_captured_at, submitted_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                RETURNING *
                """,
                polling_station_id,
                user["id"],
                candidate_id,
                submission_type,
                submitted_lat,
                submitted_lng,
                verification["verified"],
                device_id,
                device_type,
                ip_address,
                confidence_score,
                form_captured_at,
                submitted_at,
            )
        except asyncpg.UniqueViolationError as e:
            tally_logger.log_duplicate_submission(user["id"], polling_station_id, candidate_id)
            raise SubmissionConflict("Submission already exists for this polling station") from e

        submission = dict(row)

        if unique_photos:
            await conn.executemany(
                """
                INSERT INTO submission_photos (
                    submission_id, photo_type, file_path, file_size, mime_type, hash
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                [
                    (
                        submission["id"],
                        p["photo_type"],
                        p["file_path"],
                        p.get("file_size"),
                        p.get("mime_type"),
                        p["hash"],
                    )
                    for p in unique_photos
                ],
            )

        await create_audit_log(
            conn,
            AuditAction.SUBMISSION_REVISED if existing else AuditAction.SUBMISSION_CREATED,
            user_id=user["id"],
            resource_type="submission",
            resource_id=submission["id"],
            details={
                "polling_station_id": polling_station_id,
                "photo_count": len(unique_photos),
                "replaced_submission_id": existing["id"] if existing else None,
            },
        )

    tally_logger.log_submission_created(
        submission["id"],
        polling_station_id,
        user["id"],
        submission_type,
        verification["verified"],
        confidence_score,
    )

    return {
        "submission": submission,
        "photos": unique_photos,
        "location_verified": verification["verified"],
        "distance": verification["distance"],
        "confidence_score": confidence_score,
        "revised": existing is not None,
    }


# ============================================
# RESULT INTAKE
# ============================================


async def record_result(
    conn: asyncpg.Connection,
    *,
    user: Mapping[str, Any],
    submission_id: int,
    position: str,
    registered_voters: int,
    total_votes_cast: int,
    valid_votes: int,
    rejected_votes: int,
    candidate_votes: Sequence[Mapping[str, Any]],
    manually_verified: bool = False,
    config: TallyConfig,
) -> dict[str, Any]:
    """
    Attach a declared result to a submission.

    Arithmetic errors never block: the result is stored with its
    validation errors and the submission's confidence score is lowered.
    Anomalies mark the submission as having a discrepancy without
    changing its status. Verified submissions are final.
    """
    if position not in POSITIONS:
        raise ValueError(f"Invalid position: {position}")

    counts = {
        "registered_voters": registered_voters,
        "total_votes_cast": total_votes_cast,
        "valid_votes": valid_votes,
        "rejected_votes": rejected_votes,
        "candidate_votes": list(candidate_votes),
    }
    validation = validate_vote_counts(counts)
    anomalies = detect_anomalies(counts, config=config)

    async with conn.transaction():
        submission = await get_submission(conn, submission_id, for_update=True)
        if not submission:
            raise ReferenceNotFound("Submission", submission_id)

        if user.get("role") != "admin" and submission["user_id"] != user["id"]:
            raise PermissionError("Unauthorized for this submission")

        if submission["status"] == "verified":
            raise SubmissionConflict(
                "Verified submissions cannot take a new result", code="submission_final"
            )

        existing = await conn.fetchval(
            "SELECT id FROM results WHERE submission_id = $1", submission_id
        )
        if existing:
            raise SubmissionConflict(
                "Result already recorded for this submission", code="duplicate_result"
            )

        try:
            row = await conn.fetchrow(
                """
                INSERT INTO results (
                    submission_id, polling_station_id, position,
                    registered_voters, total_votes_cast, valid_votes, rejected_votes,
                    is_valid, validation_errors, manually_verified
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
                """,
                submission_id,
                submission["polling_station_id"],
                position,
                registered_voters,
                total_votes_cast,
                valid_votes,
                rejected_votes,
                validation["valid"],
                None if validation["valid"] else json.dumps({"errors": validation["errors"]}),
                manually_verified,
            )
        except asyncpg.UniqueViolationError as e:
            raise SubmissionConflict(
                "Result already recorded for this submission", code="duplicate_result"
            ) from e

        result = dict(row)

        await conn.executemany(
            """
            INSERT INTO candidate_votes (result_id, candidate_name, party_name, votes)
            VALUES ($1, $2, $3, $4)
            """,
            [
                (result["id"], cv["candidate_name"], cv.get("party_name"), cv["votes"])
                for cv in candidate_votes
            ],
        )

        if not validation["valid"]:
            await conn.execute(
                """
                UPDATE submissions
                SET confidence_score = GREATEST(confidence_score - $2, 0)
                WHERE id = $1
                """,
                submission_id,
                config.invalid_math_penalty,
            )

        if anomalies["has_anomalies"]:
            await conn.execute(
                """
                UPDATE submissions
                SET has_discrepancy = TRUE, flagged_reason = $2
                WHERE id = $1
                """,
                submission_id,
                "; ".join(anomalies["flags"]),
            )

        await create_audit_log(
            conn,
            AuditAction.RESULT_CREATED,
            user_id=user["id"],
            resource_type="result",
            resource_id=result["id"],
            severity=AuditSeverity.INFO if validation["valid"] else AuditSeverity.WARNING,
            details={
                "submission_id": submission_id,
                "position": position,
                "total_votes_cast": total_votes_cast,
                "valid_votes": valid_votes,
            },
        )

    tally_logger.log_result_recorded(
        submission_id, position, validation["valid"], validation["errors"]
    )
    if anomalies["has_anomalies"]:
        tally_logger.log_anomalies(submission_id, anomalies["flags"])

    return {
        "result": result,
        "valid": validation["valid"],
        "errors": validation["errors"],
        "anomalies": anomalies["flags"] if anomalies["has_anomalies"] else None,
    }


# ============================================
# REVIEW
# ============================================


async def review_submission(
    conn: asyncpg.Connection,
    *,
    reviewer: Mapping[str, Any],
    submission_id: int,
    action: str,
    review_notes: str | None = None,
    scope: Scope | None = None,
) -> dict[str, Any]:
    """
    Apply a reviewer decision to a submission.

    approve -> verified, reject -> rejected, request_revision -> flagged.
    A verified submission is final. Submissions outside the reviewer's
    scope are reported as missing.
    """
    new_status = REVIEW_TRANSITIONS.get(action)
    if new_status is None:
        raise ValueError(f"Invalid action: {action}")

    async with conn.transaction():
        # Concurrent reviews of the same submission serialise on this lock
        submission = await get_submission(conn, submission_id, for_update=True)
        if not submission:
            raise ReferenceNotFound("Submission", submission_id)

        if scope is not None and not within_scope(scope, _ancestry(submission)):
            raise ReferenceNotFound("Submission", submission_id)

        if submission["status"] == "verified":
            raise SubmissionConflict(
                "Verified submissions cannot be reviewed again", code="submission_final"
            )

        verified_at = (
            datetime.now(UTC) if new_status == "verified" else submission["verified_at"]
        )

        row = await conn.fetchrow(
            """
            UPDATE submissions
            SET status = $2, verified_at = $3
            WHERE id = $1
            RETURNING id, status, verified_at
            """,
            submission_id,
            new_status,
            verified_at,
        )

        await conn.execute(
            """
            INSERT INTO submission_reviews (submission_id, reviewer_id, action, review_notes)
            VALUES ($1, $2, $3, $4)
            """,
            submission_id,
            reviewer["id"],
            action,
            review_notes,
        )

        await create_audit_log(
            conn,
            REVIEW_ACTIONS[action],
            user_id=reviewer["id"],
            resource_type="submission",
            resource_id=submission_id,
            details={"status": new_status, "review_notes": review_notes},
        )

    tally_logger.log_review(submission_id, reviewer["id"], action, new_status)

    return dict(row)


async def recompute_confidence_score(
    conn: asyncpg.Connection,
    *,
    submission_id: int,
    user_id: int | None = None,
    config: TallyConfig,
) -> dict[str, Any]:
    """
    Rebuild a submission's confidence score from its stored signals.

    Allowed on any status, including verified.
    """
    submission = await get_submission(conn, submission_id)
    if not submission:
        raise ReferenceNotFound("Submission", submission_id)

    station = await get_polling_station(conn, submission["polling_station_id"])
    verification = verify_location(
        submission["submitted_lat"],
        submission["submitted_lng"],
        station["latitude"] if station else None,
        station["longitude"] if station else None,
        station["location_radius"] if station else None,
        config=config,
    )

    photo_types = [
        row["photo_type"]
        for row in await conn.fetch(
            "SELECT photo_type FROM submission_photos WHERE submission_id = $1",
            submission_id,
        )
    ]

    is_valid = await conn.fetchval(
        "SELECT is_valid FROM results WHERE submission_id = $1", submission_id
    )

    score = calculate_confidence_score(
        location_verified=verification["verified"],
        distance=verification["distance"],
        photo_count=len(photo_types),
        has_all_required_photos=has_required_photos(photo_types, config.required_photo_types),
        math_valid=is_valid is not False,
        submitted_within_hours=hours_between(
            submission.get("form_captured_at"), submission["submitted_at"]
        ),
        historical_match=False,
    )

    await conn.execute(
        "UPDATE submissions SET confidence_score = $2 WHERE id = $1",
        submission_id,
        score,
    )

    await create_audit_log(
        conn,
        AuditAction.CONFIDENCE_RECOMPUTED,
        user_id=user_id,
        resource_type="submission",
        resource_id=submission_id,
        details={"previous_score": submission["confidence_score"], "confidence_score": score},
    )

    return {
        "submission_id": submission_id,
        "previous_score": submission["confidence_score"],
        "confidence_score": score,
    }


async def list_review_queue(
    conn: asyncpg.Connection,
    *,
    queue_filter: str = "all",
    scope: Scope,
) -> list[dict[str, Any]]:
    """List submissions awaiting review, discrepancies first."""
    if queue_filter not in QUEUE_FILTERS:
        raise ValueError(f"Invalid filter: {queue_filter}")

    clause, params = scope_predicate(scope, start=1)

    rows = await conn.fetch(
        f"""
        SELECT
            s.id,
            s.polling_station_id,
            s.user_id,
            s.candidate_id,
            s.submission_type,
            s.status,
            s.confidence_score,
            s.location_verified,
            s.has_discrepancy,
            s.flagged_reason,
            s.submitted_at,
            ps.code AS polling_station_code,
            ps.name AS polling_station_name,
            ps.ward_id,
            ps.constituency_id,
            ps.county_id,
            r.position,
            r.registered_voters,
            r.total_votes_cast,
            r.valid_votes,
            r.rejected_votes,
            r.validation_errors,
            (SELECT COUNT(*) FROM submission_photos sp WHERE sp.submission_id = s.id)
                AS photo_count
        FROM submissions s
        JOIN polling_stations ps ON s.polling_station_id = ps.id
        LEFT JOIN results r ON r.submission_id = s.id
        WHERE {QUEUE_FILTERS[queue_filter]} AND {clause}
        ORDER BY
            CASE
                WHEN s.has_discrepancy THEN 1
                WHEN s.status = 'flagged' THEN 2
                WHEN s.status = 'pending' THEN 3
                ELSE 4
            END,
            s.submitted_at DESC
        """,
        *params,
    )

    return [dict(row) for row in rows]


# ============================================
# LISTINGS
# ============================================


async def list_submissions(
    conn: asyncpg.Connection,
    user: Mapping[str, Any],
    *,
    polling_station_id: int | None = None,
    candidate_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    List the most recent submissions visible to the caller.

    Agents and candidates only see submissions made for their own
    candidate. The candidate filter is honoured for admins only.

    Raises:
        ValueError: unknown status
        ReferenceNotFound: agent or candidate caller without a profile
    """
    if status is not None and status not in SUBMISSION_STATUSES:
        raise ValueError(f"Invalid status: {status}")

    role = user.get("role")
    if role == "agent":
        candidate_id = await conn.fetchval(
            "SELECT candidate_id FROM agents WHERE user_id = $1", user["id"]
        )
        if candidate_id is None:
            raise ReferenceNotFound("Agent profile for user", user["id"])
    elif role == "candidate":
        profile = await get_candidate_profile(conn, user["id"])
        if not profile:
            raise ReferenceNotFound("Candidate profile for user", user["id"])
        candidate_id = profile["id"]
    elif role != "admin":
        candidate_id = None

    conditions = []
    params: list[Any] = []
    for column, value in (
        ("s.candidate_id", candidate_id),
        ("s.polling_station_id", polling_station_id),
        ("s.status", status),
    ):
        if value is not None:
            params.append(value)
            conditions.append(f"{column} = ${len(params)}")

    where = " AND ".join(conditions) if conditions else "TRUE"
    params.append(limit)

    rows = await conn.fetch(
        f"""
        SELECT
            s.*,
            u.full_name AS submitter_name,
            ps.name AS polling_station_name,
            ps.code AS polling_station_code
        FROM submissions s
        JOIN users u ON s.user_id = u.id
        JOIN polling_stations ps ON s.polling_station_id = ps.id
        WHERE {where}
        ORDER BY s.submitted_at DESC
        LIMIT ${len(params)}
        """,
        *params,
    )

    return [dict(row) for row in rows]


async def list_reviews(
    conn: asyncpg.Connection,
    submission_id: int,
    *,
    scope: Scope,
    user_id: int | None = None,
) -> list[dict[str, Any]]:
    """
    Review history of a submission, newest first.

    With `user_id` only that user's own submissions are readable. Anything
    outside the caller's reach is reported as missing.
    """
    submission = await get_submission(conn, submission_id)
    if (
        not submission
        or not within_scope(scope, _ancestry(submission))
        or (user_id is not None and submission["user_id"] != user_id)
    ):
        raise ReferenceNotFound("Submission", submission_id)

    rows = await conn.fetch(
        """
        SELECT
            sr.id,
            sr.submission_id,
            sr.reviewer_id,
            u.full_name AS reviewer_name,
            sr.action,
            sr.review_notes,
            sr.created_at
        FROM submission_reviews sr
        JOIN users u ON sr.reviewer_id = u.id
        WHERE sr.submission_id = $1
        ORDER BY sr.created_at DESC, sr.id DESC
        """,
        submission_id,
    )

    return [dict(row) for row in rows]


# ============================================
# CROSS-VERIFICATION
# ============================================


async def cross_verify_station(
    conn: asyncpg.Connection,
    *,
    polling_station_id: int,
    position: str,
    scope: Scope,
) -> dict[str, Any]:
    """
    Compare the verified primary result at a station with backup and
    public submissions for the same position.
    """
    station = await get_polling_station(conn, polling_station_id)
    if not station or not within_scope(scope, _ancestry(station)):
        raise ReferenceNotFound("Polling station", polling_station_id)

    rows = await conn.fetch(
        """
        SELECT
            s.id AS submission_id,
            s.submission_type,
            s.status,
            cv.candidate_name,
            cv.party_name,
            cv.votes
        FROM submissions s
        JOIN results r ON r.submission_id = s.id AND r.position = $2
        JOIN candidate_votes cv ON cv.result_id = r.id
        WHERE s.polling_station_id = $1
          AND s.status <> 'rejected'
        ORDER BY s.submitted_at, s.id, cv.id
        """,
        polling_station_id,
        position,
    )

    submissions: dict[int, dict[str, Any]] = {}
    for row in rows:
        entry = submissions.setdefault(
            row["submission_id"],
            {
                "submission_id": row["submission_id"],
                "submission_type": row["submission_type"],
                "status": row["status"],
                "votes": [],
            },
        )
        entry["votes"].append(
            {"candidate_name": row["candidate_name"], "votes": row["votes"]}
        )

    primary = next(
        (
            s
            for s in submissions.values()
            if s["submission_type"] == "primary" and s["status"] == "verified"
        ),
        None,
    )

    comparisons = []
    if primary:
        for entry in submissions.values():
            if entry["submission_type"] == "primary":
                continue
            variance = calculate_variance(primary["votes"], entry["votes"])
            comparisons.append(
                {
                    "submission_id": entry["submission_id"],
                    "submission_type": entry["submission_type"],
                    "status": entry["status"],
                    **variance,
                }
            )

    return {
        "polling_station_id": polling_station_id,
        "position": position,
        "primary": primary,
        "comparisons": comparisons,
    }
