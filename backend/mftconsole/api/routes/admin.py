from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from mftconsole.api.deps import is_htmx, render, require_admin, wants_json
from mftconsole.models.user import User
from mftconsole.services import admin_tools, users
from mftconsole.services.errors import FormValidationError, NotFoundError, UserDeletionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _user_form(
    request: Request,
    *,
    values: dict[str, Any] | None = None,
    errors: dict[str, str] | None = None,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return render(
        request,
        "admin/user_form.html",
        {"values": values or {}, "errors": errors or {}, "min_length": users.PASSWORD_MIN_LENGTH},
        status_code=status_code,
    )


def _download(payload: list[dict[str, Any]], kind: str, admin: User) -> Response:
    logger.info("Admin %s exported %s %s", admin.id, len(payload), kind)
    filename = admin_tools.export_filename(kind, datetime.now(tz=timezone.utc))
    return Response(
        json.dumps(payload, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -------------------------
# Users
# -------------------------

@router.get("/users")
async def list_users(request: Request, admin: User = Depends(require_admin)) -> Response:
    return render(request, "admin/users.html", {"users": users.list_users()})


@router.get("/users/new")
async def new_user(request: Request, admin: User = Depends(require_admin)) -> Response:
    return _user_form(request)


@router.post("/users")
async def create_user(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    is_admin: str = Form(""),
    admin: User = Depends(require_admin),
) -> Response:
    make_admin = is_admin.strip().lower() in ("on", "true", "1", "yes")
    try:
        users.register_user(email, password, is_admin=make_admin, created_by=admin)
    except FormValidationError as exc:
        return _user_form(
            request,
            values={"email": email, "is_admin": make_admin},
            errors=exc.errors,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return RedirectResponse("/admin/users", status_code=status.HTTP_303_SEE_OTHER)


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: User = Depends(require_admin)) -> JSONResponse:
    if not (user_id.isascii() and user_id.isdigit()):
        return JSONResponse({"error": "Invalid user ID"}, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        users.delete_user(int(user_id), admin)
    except NotFoundError as exc:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)
    except UserDeletionError as exc:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)
    return JSONResponse({"message": "User deleted successfully"})


# -------------------------
# Tools
# -------------------------

@router.get("/tools")
async def tools(request: Request, admin: User = Depends(require_admin)) -> Response:
    return render(request, "admin/tools.html", {"counts": admin_tools.table_counts()})


@router.get("/export-configs")
async def export_configs(admin: User = Depends(require_admin)) -> Response:
    return _download(admin_tools.export_configs(admin), "configs", admin)


@router.get("/export-jobs")
async def export_jobs(admin: User = Depends(require_admin)) -> Response:
    return _download(admin_tools.export_jobs(admin), "jobs", admin)


@router.post("/clear-job-history")
async def clear_job_history(request: Request, admin: User = Depends(require_admin)) -> Response:
    deleted = admin_tools.clear_job_history(admin)
    message = "Job history cleared successfully"
    if wants_json(request) or is_htmx(request):
        return JSONResponse({"message": message, "deleted": deleted})
    return RedirectResponse(f"/admin/tools?message={message.replace(' ', '+')}", status_code=status.HTTP_303_SEE_OTHER)
