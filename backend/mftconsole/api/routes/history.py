from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse, Response

from mftconsole.api.deps import get_current_user, is_htmx, render
from mftconsole.models.user import User
from mftconsole.services import history_store
from mftconsole.services.errors import NotFoundError, PermissionDeniedError
from mftconsole.services.pagination import (
    PAGE_SIZE_OPTIONS,
    build_page_url,
    paginate,
    parse_page,
    parse_page_size,
)

router = APIRouter(tags=["history"])


@router.get("/history")
async def history(request: Request, user: User = Depends(get_current_user)) -> Response:
    params = request.query_params
    requested_page = parse_page(params.get("page"))
    page_size = parse_page_size(params.get("pageSize"))
    search = (params.get("search") or "").strip()

    total = history_store.count_runs(user, search)
    pagination = paginate(total, requested_page, page_size)
    htmx = is_htmx(request)
    # Past the last page the requested page is empty; paginate() clamps it for HTMX swaps.
    if requested_page > pagination.total_pages and total > 0 and not htmx:
        return RedirectResponse(
            build_page_url("/history", 1, pageSize=page_size, search=search),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    runs = history_store.list_runs(user, search=search, limit=pagination.page_size, offset=pagination.offset)

    context = {
        "runs": runs,
        "pagination": pagination,
        "links": pagination.links("/history", pageSize=page_size, search=search),
        "page_size_options": PAGE_SIZE_OPTIONS,
        "search": search,
    }
    template = "partials/history_content.html" if htmx else "history.html"
    return render(request, template, context)


@router.get("/job-runs/{run_id}")
async def job_run(request: Request, run_id: int, user: User = Depends(get_current_user)) -> Response:
    try:
        run, job, config = history_store.get_run_detail(run_id, user)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return render(request, "job_run.html", {"run": run, "job": job, "config": config})
