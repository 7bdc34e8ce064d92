"""User lookup for authenticated callers."""

from typing import Any

import asyncpg


async def get_user_by_id(conn: asyncpg.Connection, user_id: int) -> dict[str, Any] | None:
    """Get an active user by ID."""
    result = await conn.fetchrow(
        """
        SELECT id, email, full_name, role, is_active, created_at
        FROM users
        WHERE id = $1 AND is_active = TRUE
        """,
        user_id,
    )
    return dict(result) if result else None
