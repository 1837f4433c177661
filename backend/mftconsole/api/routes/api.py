from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mftconsole.api.deps import get_current_user
from mftconsole.api.schemas import (
    ConfigResponse,
    HistoryPageResponse,
    JobResponse,
    JobRunResponse,
    RunStatus,
    config_response,
    job_response,
    run_response,
)
from mftconsole.core.config import get_settings
from mftconsole.models.user import User
from mftconsole.services import config_store, history_store, job_store, scheduler_client
from mftconsole.services.errors import ConfigInUseError, FormValidationError, NotFoundError, PermissionDeniedError
from mftconsole.services.pagination import paginate, parse_page, parse_page_size

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _invalid(exc: FormValidationError) -> JSONResponse:
    return JSONResponse(
        {"detail": "Invalid request data", "errors": exc.errors},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def _http_error(exc: NotFoundError | PermissionDeniedError) -> HTTPException:
    code = status.HTTP_404_NOT_FOUND if isinstance(exc, NotFoundError) else status.HTTP_403_FORBIDDEN
    return HTTPException(status_code=code, detail=str(exc))


# -------------------------
# Engine run reports
# -------------------------

class JobRunOpenRequest(BaseModel):
    jobId: int
    configId: int = 0
    status: RunStatus = "running"
    startTime: Optional[datetime] = None


class JobRunUpdateRequest(BaseModel):
    status: Optional[RunStatus] = None
    endTime: Optional[datetime] = None
    bytesTransferred: Optional[int] = Field(default=None, ge=0)
    filesTransferred: Optional[int] = Field(default=None, ge=0)
    errorMessage: Optional[str] = None


def require_engine(x_engine_token: str | None = Header(default=None)) -> None:
    expected = get_settings().engine_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Run reporting is disabled; set MFT_ENGINE_TOKEN to enable it.",
        )
    if not x_engine_token or not secrets.compare_digest(x_engine_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid engine token.")


@router.post(
    "/job-runs",
    response_model=JobRunResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_engine)],
)
async def open_job_run(payload: JobRunOpenRequest) -> JobRunResponse:
    try:
        run = history_store.open_run(
            payload.jobId,
            config_id=payload.configId,
            status=payload.status,
            start_time=payload.startTime,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return run_response(run)


@router.patch("/job-runs/{run_id}", response_model=JobRunResponse, dependencies=[Depends(require_engine)])
async def update_job_run(run_id: int, payload: JobRunUpdateRequest) -> JobRunResponse:
    try:
        run = history_store.update_run(
            run_id,
            status=payload.status,
            end_time=payload.endTime,
            bytes_transferred=payload.bytesTransferred,
            files_transferred=payload.filesTransferred,
            error_message=payload.errorMessage,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("Run %s reported status %s", run_id, run.status)
    return run_response(run)


# -------------------------
# Session-authenticated reads
# -------------------------

@router.get("/configs", response_model=list[ConfigResponse])
async def list_configs(user: User = Depends(get_current_user)) -> list[ConfigResponse]:
    return [config_response(c) for c in config_store.list_configs(user)]


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(user: User = Depends(get_current_user)) -> list[JobResponse]:
    return [job_response(j) for j in job_store.list_jobs(user)]


@router.get("/history", response_model=HistoryPageResponse)
async def list_history(
    page: str | None = Query(default=None),
    pageSize: str | None = Query(default=None),
    search: str = Query(default=""),
    user: User = Depends(get_current_user),
) -> HistoryPageResponse:
    size = parse_page_size(pageSize)
    search = search.strip()
    total = history_store.count_runs(user, search)
    pagination = paginate(total, parse_page(page), size)
    runs = history_store.list_runs(user, search=search, limit=pagination.page_size, offset=pagination.offset)
    return HistoryPageResponse(
        items=[run_response(r) for r in runs],
        page=pagination.page,
        pageSize=pagination.page_size,
        total=pagination.total,
        totalPages=pagination.total_pages,
        search=search,
    )


@router.get("/job-runs/{run_id}", response_model=JobRunResponse)
async def get_job_run(run_id: int, user: User = Depends(get_current_user)) -> JobRunResponse:
    try:
        run, _, _ = history_store.get_run_detail(run_id, user)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return run_response(run)


# -------------------------
# Session-authenticated writes
# -------------------------

@router.post("/configs", response_model=ConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_config(payload: dict[str, Any] = Body(...), user: User = Depends(get_current_user)) -> Any:
    try:
        config = config_store.create_config(config_store.TransferConfigInput.from_form(payload), user)
    except FormValidationError as exc:
        return _invalid(exc)
    return config_response(config)


@router.get("/configs/{config_id}", response_model=ConfigResponse)
async def get_config(config_id: int, user: User = Depends(get_current_user)) -> ConfigResponse:
    try:
        return config_response(config_store.get_config_for_user(config_id, user))
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc


@router.put("/configs/{config_id}", response_model=ConfigResponse)
async def update_config(
    config_id: int,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
) -> Any:
    try:
        config_store.get_config_for_user(config_id, user, "edit")
        config = config_store.update_config(config_id, config_store.TransferConfigInput.from_form(payload), user)
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc
    except FormValidationError as exc:
        return _invalid(exc)
    return config_response(config)


@router.delete("/configs/{config_id}")
async def delete_config(config_id: int, user: User = Depends(get_current_user)) -> dict[str, str]:
    try:
        config_store.delete_config(config_id, user)
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc
    except ConfigInUseError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"message": "Config deleted successfully"}


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(payload: dict[str, Any] = Body(...), user: User = Depends(get_current_user)) -> Any:
    try:
        job = job_store.create_job(job_store.JobInput.from_form(payload), user)
    except FormValidationError as exc:
        return _invalid(exc)
    await scheduler_client.sync_job(job.id, job.enabled)
    return job_response(job)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, user: User = Depends(get_current_user)) -> JobResponse:
    try:
        return job_response(job_store.get_job_for_user(job_id, user))
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc


@router.put("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: int,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
) -> Any:
    try:
        job_store.get_job_for_user(job_id, user, "edit")
        job = job_store.update_job(job_id, job_store.JobInput.from_form(payload), user)
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc
    except FormValidationError as exc:
        return _invalid(exc)
    await scheduler_client.sync_job(job.id, job.enabled)
    return job_response(job)


@router.delete("/jobs/{job_id}")
async def delete_job(job_id: int, user: User = Depends(get_current_user)) -> dict[str, str]:
    try:
        job = job_store.delete_job(job_id, user)
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc
    await scheduler_client.forget_job(job.id)
    return {"message": "Job deleted successfully"}


@router.post("/jobs/{job_id}/run")
async def run_job(job_id: int, user: User = Depends(get_current_user)) -> dict[str, Any]:
    try:
        job = job_store.get_job_for_user(job_id, user, "run")
    except (NotFoundError, PermissionDeniedError) as exc:
        raise _http_error(exc) from exc

    job_store.record_manual_run(job, user)
    try:
        await scheduler_client.run_job_now(job.id)
    except scheduler_client.SchedulerUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except scheduler_client.SchedulerError as exc:
        logger.error("Manual run of job %s failed: %s", job.id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to run job: {exc}") from exc
    return {"message": "Job started successfully", "jobId": job.id, "jobName": job_store.display_name(job)}
