"""Electoral scope resolution.

Every read the caller issues is bounded by a single geographic filter derived
from their electoral role. The filter is resolved once per request into a
`Scope` value; downstream queries only ever consume that value.
"""

from collections.abc import Mapping
from typing import Any

import asyncpg
from pydantic import BaseModel, ConfigDict, model_validator

from app.core.logging_config import tally_logger

POSITIONS = ("president", "governor", "senator", "women_rep", "mp", "mca")

# Location field bounding each race; None means a national race.
POSITION_SCOPE_FIELD: dict[str, str | None] = {
    "mca": "ward_id",
    "mp": "constituency_id",
    "governor": "county_id",
    "senator": "county_id",
    "women_rep": "county_id",
    "president": None,
}

# Most specific first
SCOPE_FIELDS = ("polling_station_id", "ward_id", "constituency_id", "county_id")

LEVEL_FIELDS = {
    "station": "polling_station_id",
    "polling_station": "polling_station_id",
    "ward": "ward_id",
    "constituency": "constituency_id",
    "county": "county_id",
}

FIELD_LEVELS = {
    "polling_station_id": "station",
    "ward_id": "ward",
    "constituency_id": "constituency",
    "county_id": "county",
}


class Scope(BaseModel):
    """Single geographic filter bounding a caller's visible data."""

    model_config = ConfigDict(frozen=True)

    county_id: int | None = None
    constituency_id: int | None = None
    ward_id: int | None = None
    polling_station_id: int | None = None
    deny_all: bool = False

    @model_validator(mode="after")
    def _single_filter(self) -> "Scope":
        set_fields = [f for f in SCOPE_FIELDS if getattr(self, f) is not None]
        if len(set_fields) > 1:
            raise ValueError(f"Scope accepts a single location filter, got {set_fields}")
        if self.deny_all and set_fields:
            raise ValueError("A deny-all scope cannot carry a location filter")
        return self

    @classmethod
    def national(cls) -> "Scope":
        return cls()

    @classmethod
    def deny(cls) -> "Scope":
        return cls(deny_all=True)

    @property
    def field(self) -> str | None:
        """Name of the populated location field, if any."""
        for name in SCOPE_FIELDS:
            if getattr(self, name) is not None:
                return name
        return None

    @property
    def location_id(self) -> int | None:
        name = self.field
        return getattr(self, name) if name else None

    @property
    def level(self) -> str:
        if self.deny_all:
            return "none"
        name = self.field
        return FIELD_LEVELS[name] if name else "national"

    @property
    def unrestricted(self) -> bool:
        return not self.deny_all and self.field is None

    def as_filters(self) -> dict[str, Any]:
        if self.deny_all:
            return {"deny_all": True}
        name = self.field
        return {name: getattr(self, name)} if name else {}


def resolve_scope(
    role: str | None,
    position: str | None = None,
    location: Mapping[str, Any] | None = None,
) -> Scope:
    """
    Compute the scope a caller is confined to.

    Only candidate-role callers are restricted. A candidate whose profile is
    missing the location id their race needs gets a scope that matches
    nothing, never an unrestricted one.
    """
    if role != "candidate":
        return Scope.national()

    if position not in POSITION_SCOPE_FIELD:
        return Scope.deny()

    field = POSITION_SCOPE_FIELD[position]
    if field is None:
        return Scope.national()

    value = (location or {}).get(field)
    if value is None:
        return Scope.deny()

    return Scope(**{field: int(value)})


def scope_from_filters(
    *,
    county_id: int | None = None,
    constituency_id: int | None = None,
    ward_id: int | None = None,
    polling_station_id: int | None = None,
    level: str | None = None,
    location_id: int | None = None,
) -> Scope:
    """
    Build the scope a caller asked for from query parameters.

    The legacy `level` + `location_id` pair is translated into the matching
    field. When several fields are supplied the most specific one wins.

    Raises:
        ValueError: unknown level, or a level without a location id
    """
    requested = {
        "county_id": county_id,
        "constituency_id": constituency_id,
        "ward_id": ward_id,
        "polling_station_id": polling_station_id,
    }

    if level is not None and level != "national":
        if level not in LEVEL_FIELDS:
            raise ValueError(f"Invalid level: {level}")
        if location_id is None:
            raise ValueError("location_id is required when level is given")
        requested[LEVEL_FIELDS[level]] = location_id
    elif location_id is not None and level is None:
        raise ValueError("level is required when location_id is given")

    for name in SCOPE_FIELDS:
        if requested[name] is not None:
            return Scope(**{name: requested[name]})

    return Scope.national()


def within_scope(restriction: Scope, ancestry: Mapping[str, Any]) -> bool:
    """
    Check whether a location lies inside a restriction.

    `ancestry` holds the location's own id and those of its parents, e.g.
    {"ward_id": 3, "constituency_id": 42, "county_id": 7}.
    """
    if restriction.deny_all:
        return False
    if restriction.unrestricted:
        return True
    return ancestry.get(restriction.field) == restriction.location_id


async def get_location_ancestry(
    conn: asyncpg.Connection, scope: Scope
) -> dict[str, Any] | None:
    """Look up the hierarchy above the location a scope points at."""
    queries = {
        "polling_station_id": """
            SELECT id AS polling_station_id, ward_id, constituency_id, county_id
            FROM polling_stations WHERE id = $1
        """,
        "ward_id": """
            SELECT id AS ward_id, constituency_id, county_id
            FROM wards WHERE id = $1
        """,
        "constituency_id": """
            SELECT id AS constituency_id, county_id
            FROM constituencies WHERE id = $1
        """,
        "county_id": "SELECT id AS county_id FROM counties WHERE id = $1",
    }

    if scope.field is None:
        return None

    row = await conn.fetchrow(queries[scope.field], scope.location_id)
    return dict(row) if row else None


async def narrow_scope(
    conn: asyncpg.Connection,
    restriction: Scope,
    requested: Scope,
    *,
    user_id: int | None = None,
) -> Scope:
    """
    Combine a caller's restriction with the scope they asked for.

    The restriction always wins. A request inside it may drill down; a
    request outside it silently falls back to the restriction so the
    boundary is never revealed.
    """
    if restriction.deny_all:
        return restriction

    if restriction.unrestricted:
        return requested

    if requested.unrestricted or requested.deny_all:
        return restriction

    ancestry = await get_location_ancestry(conn, requested)
    if ancestry and within_scope(restriction, ancestry):
        return requested

    tally_logger.log_scope_narrowed(
        user_id, requested.as_filters(), restriction.as_filters()
    )
    return restriction


def scope_predicate(
    scope: Scope, *, alias: str = "ps", start: int = 1
) -> tuple[str, list[Any]]:
    """
    Translate a scope into a parameterised predicate on polling stations.

    Args:
        scope: Resolved scope
        alias: Table alias of polling_stations in the calling query
        start: Number of the first positional parameter to use

    Returns:
        (clause, params) where clause is safe to AND into a WHERE
    """
    if scope.deny_all:
        return "FALSE", []

    field = scope.field
    if field is None:
        return "TRUE", []

    column = "id" if field == "polling_station_id" else field
    return f"{alias}.{column} = ${start}", [scope.location_id]


async def get_candidate_profile(
    conn: asyncpg.Connection, user_id: int
) -> dict[str, Any] | None:
    """Get the operator candidate profile linked to a user account."""
    row = await conn.fetchrow(
        """
        SELECT id, position, county_id, constituency_id, ward_id
        FROM candidates
        WHERE user_id = $1 AND is_system_user = TRUE
        """,
        user_id,
    )
    return dict(row) if row else None


async def get_caller_scope(
    conn: asyncpg.Connection, user: Mapping[str, Any] | None
) -> Scope:
    """Resolve the scope of an authenticated (or anonymous) caller."""
    if not user or user.get("role") != "candidate":
        return Scope.national()

    profile = await get_candidate_profile(conn, user["id"])
    if not profile:
        return Scope.deny()

    return resolve_scope("candidate", profile["position"], profile)
