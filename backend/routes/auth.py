"""
Auth routes — sign in, sign out, current user, snapshot refresh.
"""

import logging

from fastapi import APIRouter, Depends, Request

from core.errors import AuthError, DashboardError
from core.gateway import fetch_snapshot
from routes.deps import RequestContext, http_error, refresh_snapshot, require_session
from routes.schemas import LoginRequest

logger = logging.getLogger(__name__)

router = APIRouter()
snapshot_router = APIRouter()


@router.post("/login")
async def login(payload: LoginRequest, request: Request):
    """Sign in with email + password. Returns the bearer token and user."""
    gateway = request.app.state.gateway
    try:
        result = await gateway.sign_in(payload.email, payload.password)
    except AuthError as e:
        logger.info("Failed login for %s", payload.email)
        raise http_error(e)

    token = result["access_token"]
    session = request.app.state.sessions.open(token, result["user"])
    try:
        session.replace_snapshot(await fetch_snapshot(gateway.with_session(token)))
    except DashboardError as e:
        # the listing fetches again on first use
        logger.warning("Initial snapshot fetch failed after login: %s", e.message)

    return {"access_token": token, "user": result["user"]}


@router.post("/logout")
async def logout(request: Request, ctx: RequestContext = Depends(require_session)):
    """Sign out and discard this session's snapshot."""
    try:
        await ctx.gateway.sign_out()
    finally:
        request.app.state.sessions.drop(ctx.token)
    return {"status": "ok", "message": "Log keluar berjaya."}


@router.get("/me")
async def me(ctx: RequestContext = Depends(require_session)):
    return {"user": ctx.session.user}


@snapshot_router.post("/refresh")
async def refresh(ctx: RequestContext = Depends(require_session)):
    """Explicit re-fetch of students and classes."""
    snapshot = await refresh_snapshot(ctx)
    return {
        "students": len(snapshot.students),
        "classes": len(snapshot.classes),
        "fetched_at": snapshot.fetched_at,
    }
