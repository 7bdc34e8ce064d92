"""Ballot candidate listings."""

from typing import Any

import asyncpg

from app.services.scope import POSITIONS, Scope


async def list_ballot_candidates(
    conn: asyncpg.Connection,
    *,
    position: str | None = None,
    scope: Scope | None = None,
) -> list[dict[str, Any]]:
    """
    List candidates appearing on the ballot.

    Operator accounts (`is_system_user = TRUE`) are never included. A ward,
    constituency or county scope keeps only candidates registered to that
    location.
    """
    if position is not None and position not in POSITIONS:
        raise ValueError(f"Invalid position: {position}")

    if scope is not None and scope.deny_all:
        return []

    conditions = ["c.is_system_user = FALSE"]
    params: list[Any] = []
    param_count = 0

    if position:
        param_count += 1
        conditions.append(f"c.position = ${param_count}")
        params.append(position)

    if scope is not None and scope.field in ("ward_id", "constituency_id", "county_id"):
        # Station scopes keep every candidate
        param_count += 1
        conditions.append(f"c.{scope.field} = ${param_count}")
        params.append(scope.location_id)

    rows = await conn.fetch(
        f"""
        SELECT
            c.id,
            c.full_name AS candidate_name,
            c.position,
            c.party_name,
            c.party_abbreviation,
            c.county_id,
            c.constituency_id,
            c.ward_id
        FROM candidates c
        WHERE {" AND ".join(conditions)}
        ORDER BY c.position, c.full_name
        """,
        *params,
    )

    return [dict(row) for row in rows]
