"""
Shared route dependencies — bearer session lookup, snapshot access, error mapping.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.errors import DashboardError, FetchError
from core.gateway import Gateway, Snapshot, fetch_snapshot
from core.state import ClientSession

logger = logging.getLogger(__name__)

TIMEZONE = os.getenv("TIMEZONE", "Asia/Kuala_Lumpur")

security = HTTPBearer(auto_error=False)


def local_now() -> datetime:
    """Reference 'now' for time ranges and report stamps."""
    return datetime.now(ZoneInfo(TIMEZONE))


def http_error(e: DashboardError) -> HTTPException:
    return HTTPException(e.status_code, e.message)


@dataclass
class RequestContext:
    token: str
    gateway: Gateway
    session: ClientSession


async def require_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> RequestContext:
    """Resolve the bearer token to a signed-in user and their client session."""
    if not credentials or not credentials.credentials:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Sila log masuk terlebih dahulu.")

    token = credentials.credentials
    gateway = request.app.state.gateway.with_session(token)
    sessions = request.app.state.sessions

    session = sessions.get(token)
    if session is None:
        try:
            user = await gateway.get_current_user()
        except FetchError as e:
            logger.error("Session check failed: %s", e.message)
            raise http_error(e)
        if not user:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Sesi tidak sah. Sila log masuk semula.")
        session = sessions.open(token, user)

    return RequestContext(token=token, gateway=gateway, session=session)


async def refresh_snapshot(ctx: RequestContext) -> Snapshot:
    """Re-fetch both collections; on failure the previous snapshot stays in place."""
    try:
        snapshot = await fetch_snapshot(ctx.gateway)
    except FetchError as e:
        logger.exception("Snapshot refresh failed for user %s", ctx.session.user.get("email"))
        raise http_error(e)
    ctx.session.replace_snapshot(snapshot)
    return snapshot


async def refresh_after_write(ctx: RequestContext) -> None:
    """A write already succeeded; a failed re-fetch only leaves the old snapshot."""
    try:
        await refresh_snapshot(ctx)
    except HTTPException:
        logger.warning("Keeping previous snapshot after write; refresh failed.")


async def current_snapshot(ctx: RequestContext) -> Snapshot:
    if ctx.session.snapshot is None:
        return await refresh_snapshot(ctx)
    return ctx.session.snapshot
