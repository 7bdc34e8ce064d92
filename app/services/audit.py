"""Audit logging service for tracking tally actions."""

import json
from typing import Any

import asyncpg


# ============================================================================
# AUDIT LOG TYPES
# ============================================================================


class AuditAction:
    """Standard audit action types."""

    # Field intake
    SUBMISSION_CREATED = "submission_created"
    SUBMISSION_REVISED = "submission_revised"
    RESULT_CREATED = "result_created"

    # Review
    SUBMISSION_APPROVE = "submission_approve"
    SUBMISSION_REJECT = "submission_reject"
    SUBMISSION_REQUEST_REVISION = "submission_request_revision"
    CONFIDENCE_RECOMPUTED = "confidence_recomputed"


class AuditSeverity:
    """Severity levels for audit logs."""

    INFO = "info"
    WARNING = "warning"


REVIEW_ACTIONS = {
    "approve": AuditAction.SUBMISSION_APPROVE,
    "reject": AuditAction.SUBMISSION_REJECT,
    "request_revision": AuditAction.SUBMISSION_REQUEST_REVISION,
}


# ============================================================================
# AUDIT LOG FUNCTIONS
# ============================================================================


async def create_audit_log(
    conn: asyncpg.Connection,
    action_type: str,
    user_id: int | None = None,
    resource_type: str | None = None,
    resource_id: int | None = None,
    severity: str = AuditSeverity.INFO,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create an audit log entry.

    Args:
        conn: Database connection
        action_type: Type of action (use AuditAction constants)
        user_id: ID of user performing action (None for system actions)
        resource_type: Type of resource affected (submission, result)
        resource_id: ID of specific resource affected
        severity: Log severity (info, warning, critical)
        details: Additional details stored as JSON

    Returns:
        Created audit log entry
    """
    result = await conn.fetchrow(
        """
        INSERT INTO audit_logs (
            user_id, action_type, resource_type, resource_id, severity, details
        )
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING id, user_id, action_type, resource_type, resource_id,
                  severity, details, timestamp
        """,
        user_id,
        action_type,
        resource_type,
        resource_id,
        severity,
        json.dumps(details, default=str) if details is not None else None,
    )

    return dict(result) if result else {}
