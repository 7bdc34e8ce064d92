"""API dependencies for authentication, authorization and scope."""

from typing import Annotated

import asyncpg
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import TallyConfig, get_tally_config
from app.core.database import get_db
from app.core.security import decode_access_token
from app.services.scope import Scope, get_caller_scope
from app.services.users import get_user_by_id

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

REVIEWER_ROLES = ("admin", "candidate")


def _credentials_error(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _user_from_token(conn: asyncpg.Connection, token: str) -> dict:
    payload = decode_access_token(token)
    if payload is None:
        raise _credentials_error() from None

    user_id = payload.get("sub")
    if user_id is None:
        raise _credentials_error() from None

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise _credentials_error() from None

    user = await get_user_by_id(conn, user_id)
    if user is None:
        raise _credentials_error("User not found")

    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict:
    """
    Dependency to get the current authenticated user.

    Validates JWT token and returns user data.
    """
    return await _user_from_token(conn, credentials.credentials)


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict | None:
    """Same as get_current_user, but anonymous callers get None."""
    if credentials is None:
        return None
    return await _user_from_token(conn, credentials.credentials)


def require_admin(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """
    Dependency to require admin role.

    Raises HTTP 403 if user is not an admin.
    """
    if current_user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return current_user


def require_reviewer(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """Dependency to require a role allowed to review submissions."""
    if current_user.get("role") not in REVIEWER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only admins and candidates can review submissions",
        )
    return current_user


def forbid_agents(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """Dependency blocking agents from area-wide views."""
    if current_user.get("role") == "agent":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Agents cannot view polling station data",
        )
    return current_user


async def get_user_scope(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
) -> Scope:
    """Scope restriction of the authenticated caller."""
    return await get_caller_scope(conn, current_user)


async def get_optional_scope(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict | None, Depends(get_optional_user)],
) -> Scope:
    """Scope restriction of the caller; anonymous callers are unrestricted."""
    return await get_caller_scope(conn, current_user)


def get_config() -> TallyConfig:
    """Verification thresholds for the request."""
    return get_tally_config()
