"""Results aggregation across the geographic hierarchy.

Aggregates verified primary submissions for one position inside a scope.
The SQL only selects rows; grouping and percentage maths happen in
`build_aggregate` so they can be exercised on plain dictionaries.

Two denominators are in play and both are intentional:
- `summary.registered_voters` and `summary.total_stations` always describe
  the whole area, whatever has reported so far;
- `summary.turnout_percentage` is turnout among reporting stations only,
  computed against the registered voters declared on the counted results.
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import asyncpg

from app.core.database import read_snapshot
from app.core.logging_config import get_logger
from app.services.scope import Scope, scope_predicate

logger = get_logger(__name__)


def _percentage(part: int | float, whole: int | float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def build_aggregate(
    area: Mapping[str, Any],
    submissions: Iterable[Mapping[str, Any]],
    vote_rows: Iterable[Mapping[str, Any]],
) -> dict[str, Any]:
    """
    Fold qualifying submissions and their vote rows into a tally.

    Args:
        area: {"total_stations", "registered_voters"} for the whole scope
        submissions: one row per qualifying submission with
            submission_id, polling_station_id, registered_voters,
            total_votes_cast, valid_votes, rejected_votes
        vote_rows: candidate vote rows with submission_id,
            polling_station_id, candidate_name, party_name, votes,
            in a deterministic order

    Returns:
        {"results": [...], "summary": {...}}
    """
    total_stations = int(area.get("total_stations") or 0)
    area_registered_voters = int(area.get("registered_voters") or 0)

    # Submission-level figures are summed once per submission, never per
    # candidate row.
    counted: dict[Any, Mapping[str, Any]] = {}
    for row in submissions:
        counted.setdefault(row["submission_id"], row)

    reporting_registered = sum(int(r["registered_voters"] or 0) for r in counted.values())
    total_votes_cast = sum(int(r["total_votes_cast"] or 0) for r in counted.values())
    valid_votes = sum(int(r["valid_votes"] or 0) for r in counted.values())
    rejected_votes = sum(int(r["rejected_votes"] or 0) for r in counted.values())
    stations_reported = len({r["polling_station_id"] for r in counted.values()})

    tallies: dict[str, dict[str, Any]] = {}
    for row in vote_rows:
        if row["submission_id"] not in counted or not row["candidate_name"]:
            continue

        name = row["candidate_name"]
        tally = tallies.get(name)
        if tally is None:
            tally = {
                "candidate_name": name,
                "party_name": row.get("party_name"),
                "total_votes": 0,
                "stations": set(),
            }
            tallies[name] = tally

        tally["total_votes"] += int(row["votes"] or 0)
        tally["stations"].add(row["polling_station_id"])

    results = [
        {
            "candidate_name": tally["candidate_name"],
            "party_name": tally["party_name"],
            "total_votes": tally["total_votes"],
            "percentage": _percentage(tally["total_votes"], valid_votes),
            "polling_stations_count": len(tally["stations"]),
        }
        for tally in tallies.values()
    ]
    # list.sort is stable: equal totals keep first-seen order
    results.sort(key=lambda r: r["total_votes"], reverse=True)

    return {
        "results": results,
        "summary": {
            "total_votes_cast": total_votes_cast,
            "valid_votes": valid_votes,
            "rejected_votes": rejected_votes,
            "registered_voters": area_registered_voters,
            "reporting_registered_voters": reporting_registered,
            "turnout_percentage": _percentage(total_votes_cast, reporting_registered),
            "total_stations": total_stations,
            "stations_reported": stations_reported,
            "reporting_percentage": _percentage(stations_reported, total_stations),
        },
    }


async def aggregate_results(
    conn: asyncpg.Connection,
    position: str,
    scope: Scope,
) -> dict[str, Any]:
    """
    Aggregate verified primary submissions for a position within a scope.

    All reads run in one snapshot so station counts and reported tallies
    come from the same view of the data.
    """
    area_clause, area_params = scope_predicate(scope, start=1)
    clause, scope_params = scope_predicate(scope, start=2)

    async with read_snapshot(conn):
        area = await conn.fetchrow(
            f"""
            SELECT
                COUNT(*) AS total_stations,
                COALESCE(SUM(ps.registered_voters), 0) AS registered_voters
            FROM polling_stations ps
            WHERE {area_clause}
            """,
            *area_params,
        )

        submissions = await conn.fetch(
            f"""
            SELECT
                s.id AS submission_id,
                s.polling_station_id,
                r.registered_voters,
                r.total_votes_cast,
                r.valid_votes,
                r.rejected_votes
            FROM submissions s
            JOIN polling_stations ps ON s.polling_station_id = ps.id
            JOIN results r ON r.submission_id = s.id AND r.position = $1
            WHERE s.status = 'verified'
              AND s.submission_type = 'primary'
              AND {clause}
            ORDER BY s.submitted_at, s.id
            """,
            position,
            *scope_params,
        )

        vote_rows = await conn.fetch(
            f"""
            SELECT
                r.submission_id,
                s.polling_station_id,
                cv.candidate_name,
                cv.party_name,
                cv.votes
            FROM candidate_votes cv
            JOIN results r ON cv.result_id = r.id AND r.position = $1
            JOIN submissions s ON r.submission_id = s.id
            JOIN polling_stations ps ON s.polling_station_id = ps.id
            WHERE s.status = 'verified'
              AND s.submission_type = 'primary'
              AND {clause}
            ORDER BY s.submitted_at, s.id, cv.id
            """,
            position,
            *scope_params,
        )

    aggregate = build_aggregate(
        dict(area) if area else {},
        [dict(row) for row in submissions],
        [dict(row) for row in vote_rows],
    )

    logger.debug(
        f"Aggregated {position} at {scope.level} level: "
        f"{aggregate['summary']['stations_reported']}/{aggregate['summary']['total_stations']} stations"
    )

    return {
        "position": position,
        "level": scope.level,
        "location_id": scope.location_id,
        **aggregate,
        "aggregated_at": datetime.now(UTC).isoformat(),
    }
