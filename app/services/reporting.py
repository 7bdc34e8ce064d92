"""Polling station reporting status.

Shows which stations in a scope have submitted, and in what state, so
coordinators can chase stations that have not reported.
"""

from typing import Any

import asyncpg

from app.core.database import read_snapshot
from app.services.scope import Scope, scope_predicate

STATUS_FILTERS = {
    "all": "",
    "submitted": "HAVING COUNT(s.id) > 0",
    "not_submitted": "HAVING COUNT(s.id) = 0",
}


async def get_reporting_status(
    conn: asyncpg.Connection,
    *,
    scope: Scope,
    status_filter: str = "all",
) -> dict[str, Any]:
    """
    List stations in scope with their submission state.

    Stations with nothing submitted come first, then flagged, pending and
    verified. The summary always covers every station in scope, whatever
    `status_filter` hides from the list.
    """
    if status_filter not in STATUS_FILTERS:
        raise ValueError(f"Invalid status filter: {status_filter}")

    clause, params = scope_predicate(scope, start=1)

    async with read_snapshot(conn):
        stations = await conn.fetch(
            f"""
            SELECT
                ps.id,
                ps.code,
                ps.name,
                ps.registered_voters,
                ps.ward_id,
                ps.constituency_id,
                ps.county_id,
                COUNT(s.id) AS submission_count,
                BOOL_OR(s.status = 'verified') IS TRUE AS has_verified,
                BOOL_OR(s.status = 'pending') IS TRUE AS has_pending,
                BOOL_OR(s.status = 'flagged') IS TRUE AS has_flagged,
                BOOL_OR(s.status = 'rejected') IS TRUE AS has_rejected,
                COUNT(s.id) FILTER (WHERE s.status = 'verified') AS verified_count,
                MAX(s.submitted_at) AS last_submitted_at
            FROM polling_stations ps
            LEFT JOIN submissions s ON s.polling_station_id = ps.id
            WHERE {clause}
            GROUP BY ps.id
            {STATUS_FILTERS[status_filter]}
            ORDER BY
                CASE
                    WHEN COUNT(s.id) = 0 THEN 1
                    WHEN BOOL_OR(s.status = 'flagged') THEN 2
                    WHEN BOOL_OR(s.status = 'pending') THEN 3
                    WHEN BOOL_OR(s.status = 'verified') THEN 4
                    ELSE 5
                END,
                ps.code ASC
            """,
            *params,
        )

        counts = await conn.fetchrow(
            f"""
            SELECT
                COUNT(DISTINCT ps.id) AS total_stations,
                COUNT(DISTINCT s.polling_station_id) AS submitted_stations,
                COUNT(DISTINCT ps.id) FILTER (WHERE s.status = 'verified') AS verified_stations,
                COUNT(DISTINCT ps.id) FILTER (WHERE s.status = 'pending') AS pending_stations,
                COUNT(DISTINCT ps.id) FILTER (WHERE s.status = 'flagged') AS flagged_stations
            FROM polling_stations ps
            LEFT JOIN submissions s ON s.polling_station_id = ps.id
            WHERE {clause}
            """,
            *params,
        )

    total = int(counts["total_stations"] or 0) if counts else 0
    submitted = int(counts["submitted_stations"] or 0) if counts else 0

    return {
        "level": scope.level,
        "location_id": scope.location_id,
        "stations": [dict(row) for row in stations],
        "summary": {
            "total_stations": total,
            "submitted_stations": submitted,
            "verified_stations": int(counts["verified_stations"] or 0) if counts else 0,
            "pending_stations": int(counts["pending_stations"] or 0) if counts else 0,
            "flagged_stations": int(counts["flagged_stations"] or 0) if counts else 0,
            "not_submitted_stations": total - submitted,
            "reporting_percentage": round(submitted / total * 100, 2) if total else 0.0,
        },
    }
