from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from mftconsole.api.deps import get_current_user, is_htmx, render
from mftconsole.models.user import User
from mftconsole.services import users

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
async def profile(request: Request, user: User = Depends(get_current_user)) -> Response:
    return render(request, "profile.html", {"themes": users.THEMES})


@router.post("/theme")
async def set_theme(request: Request, theme: str = Form(""), user: User = Depends(get_current_user)) -> Response:
    try:
        users.set_theme(user.id, theme)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)

    if is_htmx(request) or "application/json" in request.headers.get("accept", ""):
        return JSONResponse({"theme": theme})
    return RedirectResponse("/profile", status_code=status.HTTP_303_SEE_OTHER)
