from __future__ import annotations

from pathlib import Path
from html import escape
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from mftconsole.models.user import User
from mftconsole.services import formatting, notification_store, users

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
templates.env.filters.update(
    {
        "format_bytes": formatting.format_bytes,
        "format_datetime": formatting.format_datetime,
        "time_ago": formatting.time_ago,
        "status_class": formatting.status_class,
        "provider_label": formatting.provider_label,
    }
)
templates.env.globals.update(
    {
        "format_duration": formatting.format_duration,
        "badge_label": notification_store.badge_label,
    }
)


class LoginRequired(Exception):
    pass


def is_htmx(request: Request) -> bool:
    return request.headers.get("HX-Request", "").lower() == "true"


def wants_json(request: Request) -> bool:
    if request.url.path.startswith("/api/"):
        return True
    return "application/json" in request.headers.get("accept", "")


def get_current_user(request: Request) -> User:
    user_id = request.session.get("user_id")
    user = users.get_user(int(user_id)) if user_id else None
    if not user or not user.active:
        request.session.pop("user_id", None)
        raise LoginRequired()
    request.state.user = user
    return user


def render(
    request: Request,
    name: str,
    context: dict[str, Any] | None = None,
    *,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    user = getattr(request.state, "user", None)
    ctx: dict[str, Any] = {"user": user, "unread_count": 0, "message": request.query_params.get("message", "")}
    if user is not None:
        ctx["unread_count"] = notification_store.count_unread(user.id)
    ctx.update(context or {})
    return templates.TemplateResponse(request, name, ctx, status_code=status_code, headers=headers)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return user


def alert_fragment(
    message: str,
    kind: str = "error",
    status_code: int = status.HTTP_400_BAD_REQUEST,
    *,
    reload_after: int | None = None,
) -> HTMLResponse:
    reload = f' data-reload="{reload_after}"' if reload_after else ""
    html = f'<div class="alert alert-{kind}" role="alert"{reload}><span>{escape(message)}</span></div>'
    return HTMLResponse(html, status_code=status_code)
