from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel

from mftconsole.api.deps import get_current_user, render
from mftconsole.api.schemas import JobResponse, JobRunResponse, job_response, run_response
from mftconsole.models.user import User
from mftconsole.services import history_store, job_store

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class HistoryCountsResponse(BaseModel):
    success: int
    failure: int
    pending: int


@router.get("")
async def dashboard(request: Request, user: User = Depends(get_current_user)) -> Response:
    stats = history_store.dashboard_stats(user)
    return render(
        request,
        "dashboard.html",
        {"recent_runs": history_store.recent_runs(user), **stats},
    )


@router.get("/data", response_model=list[JobRunResponse])
async def dashboard_data(user: User = Depends(get_current_user)) -> list[JobRunResponse]:
    return [run_response(r) for r in history_store.recent_runs(user)]


@router.get("/jobs", response_model=list[JobResponse])
async def dashboard_jobs(user: User = Depends(get_current_user)) -> list[JobResponse]:
    return [job_response(j) for j in job_store.list_jobs(user, enabled_only=True)]


@router.get("/history", response_model=HistoryCountsResponse)
async def dashboard_history(user: User = Depends(get_current_user)) -> HistoryCountsResponse:
    return HistoryCountsResponse(**history_store.status_counts(user))
