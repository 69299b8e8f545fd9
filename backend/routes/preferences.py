"""
Preference routes — display theme (light / dark / darker).
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from core.state import THEME_CYCLE, load_theme, save_theme
from routes.deps import RequestContext, require_session
from routes.schemas import ThemeUpdate

router = APIRouter()


def _theme_payload(state):
    return {"theme": state.theme.value, "cycle": [t.value for t in THEME_CYCLE]}


@router.get("/theme")
async def get_theme(request: Request, ctx: RequestContext = Depends(require_session)):
    return _theme_payload(load_theme(request.app.state.preferences))


@router.put("/theme")
async def put_theme(payload: ThemeUpdate, request: Request, ctx: RequestContext = Depends(require_session)):
    """Select a theme by name, or ``toggle`` to the next one in the cycle."""
    store = request.app.state.preferences
    current = load_theme(store)
    if payload.toggle:
        new_state = current.toggle()
    elif payload.theme:
        try:
            new_state = current.select(payload.theme)
        except ValueError:
            raise HTTPException(400, f"Unknown theme '{payload.theme}'. Expected one of {[t.value for t in THEME_CYCLE]}.")
    else:
        raise HTTPException(400, "Provide a theme or set toggle.")
    return _theme_payload(save_theme(store, new_state))
