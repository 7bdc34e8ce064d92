"""Submission API routes.

Field intake, review queue and reviewer decisions.
"""

from datetime import datetime
from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from app.api.deps import (
    get_config,
    get_current_user,
    get_user_scope,
    require_admin,
    require_reviewer,
)
from app.core.config import TallyConfig
from app.core.database import get_db
from app.core.responses import success_response
from app.services import submissions as submissions_service
from app.services.scope import Scope

router = APIRouter(prefix="/submissions", tags=["Submissions"])


# ============================================
# PYDANTIC MODELS
# ============================================


class PhotoMetadata(BaseModel):
    """Metadata of a photo already uploaded to storage."""

    photo_type: str = Field(
        "other",
        pattern="^(full_form|closeup|signature|stamp|serial_number|other)$",
    )
    file_path: str = Field(..., min_length=1)
    hash: str = Field(..., min_length=1)
    file_size: int | None = Field(None, ge=0)
    mime_type: str | None = None


class SubmissionCreate(BaseModel):
    """Create submission request."""

    polling_station_id: int = Field(..., gt=0)
    candidate_id: int = Field(..., gt=0)
    submission_type: str = Field("primary", pattern="^(primary|backup|public)$")
    submitted_lat: float | None = Field(None, ge=-90, le=90)
    submitted_lng: float | None = Field(None, ge=-180, le=180)
    form_captured_at: datetime | None = None
    device_id: str | None = None
    device_type: str | None = None
    photos: list[PhotoMetadata] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    """Reviewer decision."""

    action: str = Field(..., pattern="^(approve|reject|request_revision)$")
    review_notes: str | None = None


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ============================================
# INTAKE
# ============================================


@router.get("", response_model=dict)
async def list_submissions(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    polling_station_id: int | None = None,
    candidate_id: int | None = None,
    status_filter: str | None = Query(
        None, alias="status", pattern="^(pending|verified|flagged|rejected)$"
    ),
):
    """List recent submissions; agents and candidates see their own candidate's."""
    submissions = await submissions_service.list_submissions(
        conn,
        current_user,
        polling_station_id=polling_station_id,
        candidate_id=candidate_id,
        status=status_filter,
    )
    return success_response(data={"submissions": submissions, "count": len(submissions)})


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_submission(
    payload: SubmissionCreate,
    request: Request,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    config: Annotated[TallyConfig, Depends(get_config)],
):
    """Register a field submission with its photo metadata."""
    created = await submissions_service.create_submission(
        conn,
        user=current_user,
        polling_station_id=payload.polling_station_id,
        candidate_id=payload.candidate_id,
        submission_type=payload.submission_type,
        submitted_lat=payload.submitted_lat,
        submitted_lng=payload.submitted_lng,
        form_captured_at=payload.form_captured_at,
        device_id=payload.device_id,
        device_type=payload.device_type,
        ip_address=_client_ip(request),
        photos=[photo.model_dump() for photo in payload.photos],
        config=config,
    )
    message = (
        "Submission revised successfully"
        if created["revised"]
        else "Submission created successfully"
    )
    return success_response(data=created, message=message)


# ============================================
# REVIEW
# ============================================


@router.get("/review-queue", response_model=dict)
async def get_review_queue(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    reviewer: Annotated[dict, Depends(require_reviewer)],
    scope: Annotated[Scope, Depends(get_user_scope)],
    filter: str = Query("all", pattern="^(all|pending|flagged|anomalies)$"),
):
    """List submissions awaiting review within the caller's scope."""
    queue = await submissions_service.list_review_queue(
        conn, queue_filter=filter, scope=scope
    )
    return success_response(data={"submissions": queue, "count": len(queue)})


@router.post("/{submission_id}/review", response_model=dict)
async def review_submission(
    submission_id: int,
    payload: ReviewRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    reviewer: Annotated[dict, Depends(require_reviewer)],
    scope: Annotated[Scope, Depends(get_user_scope)],
):
    """Approve, reject or send back a submission."""
    reviewed = await submissions_service.review_submission(
        conn,
        reviewer=reviewer,
        submission_id=submission_id,
        action=payload.action,
        review_notes=payload.review_notes,
        scope=scope,
    )
    return success_response(data=reviewed, message=f"Submission {reviewed['status']}")


@router.get("/{submission_id}/reviews", response_model=dict)
async def get_submission_reviews(
    submission_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    scope: Annotated[Scope, Depends(get_user_scope)],
):
    """Review history of a submission. Agents only read their own."""
    reviews = await submissions_service.list_reviews(
        conn,
        submission_id,
        scope=scope,
        user_id=current_user["id"] if current_user.get("role") == "agent" else None,
    )
    return success_response(data={"reviews": reviews, "count": len(reviews)})


@router.post("/{submission_id}/recompute-score", response_model=dict)
async def recompute_score(
    submission_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    admin: Annotated[dict, Depends(require_admin)],
    config: Annotated[TallyConfig, Depends(get_config)],
):
    """Rebuild a submission's confidence score from its stored signals."""
    recomputed = await submissions_service.recompute_confidence_score(
        conn, submission_id=submission_id, user_id=admin["id"], config=config
    )
    return success_response(data=recomputed, message="Confidence score recomputed")
