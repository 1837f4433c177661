from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from mftconsole.api.deps import get_current_user, render
from mftconsole.models.user import User
from mftconsole.services import notification_store
from mftconsole.services.pagination import PAGE_SIZE_OPTIONS, paginate, parse_page, parse_page_size

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _parse_id(raw: str) -> int | None:
    return int(raw) if raw.isascii() and raw.isdigit() else None


def _badge(request: Request, count: int) -> Response:
    return render(request, "partials/notification_count.html", {"count": count})


@router.get("")
async def notifications_page(request: Request, user: User = Depends(get_current_user)) -> Response:
    params = request.query_params
    per_page = parse_page_size(params.get("perPage"))
    total = notification_store.count_for_user(user.id)
    pagination = paginate(total, parse_page(params.get("page")), per_page)
    items = notification_store.list_for_user(user.id, limit=pagination.page_size, offset=pagination.offset)
    return render(
        request,
        "notifications/list.html",
        {
            "notifications": items,
            "pagination": pagination,
            "links": pagination.links("/notifications", perPage=per_page),
            "page_size_options": PAGE_SIZE_OPTIONS,
        },
    )


@router.get("/dropdown")
async def dropdown(request: Request, user: User = Depends(get_current_user)) -> Response:
    return render(
        request,
        "partials/notification_dropdown.html",
        {
            "notifications": notification_store.recent_for_user(user.id),
            "count": notification_store.count_unread(user.id),
        },
    )


@router.get("/count")
async def count(request: Request, user: User = Depends(get_current_user)) -> Response:
    return _badge(request, notification_store.count_unread(user.id))


@router.post("/mark-all-read")
async def mark_all_read(request: Request, user: User = Depends(get_current_user)) -> Response:
    notification_store.mark_all_read(user.id)
    return _badge(request, 0)


@router.post("/{notification_id}/read")
async def mark_read(request: Request, notification_id: str, user: User = Depends(get_current_user)) -> Response:
    parsed = _parse_id(notification_id)
    if parsed is None:
        return JSONResponse({"error": "Invalid notification ID"}, status_code=status.HTTP_400_BAD_REQUEST)
    notification_store.mark_read(parsed, user.id)
    return _badge(request, notification_store.count_unread(user.id))


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user: User = Depends(get_current_user)) -> JSONResponse:
    parsed = _parse_id(notification_id)
    if parsed is None:
        return JSONResponse({"error": "Invalid notification ID"}, status_code=status.HTTP_400_BAD_REQUEST)
    if not notification_store.delete_notification(parsed, user.id):
        return JSONResponse({"error": "Notification not found"}, status_code=status.HTTP_404_NOT_FOUND)
    return JSONResponse({"message": "Notification deleted"})
