from __future__ import annotations

import logging
import sqlite3
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from mftconsole.api.deps import get_current_user, render
from mftconsole.models.job import Job
from mftconsole.models.user import User
from mftconsole.services import config_store, job_store, scheduler_client
from mftconsole.services.errors import FormValidationError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _form_page(
    request: Request,
    user: User,
    *,
    values: dict[str, Any],
    job_id: int | None = None,
    errors: dict[str, str] | None = None,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return render(
        request,
        "jobs/form.html",
        {
            "values": values,
            "job_id": job_id,
            "errors": errors or {},
            "configs": config_store.list_configs(user),
        },
        status_code=status_code,
    )


def _submitted_values(form: Any) -> dict[str, Any]:
    values: dict[str, Any] = {k: v for k, v in form.items() if k != "config_ids"}
    values["config_ids"] = job_store.parse_config_ids(",".join(form.getlist("config_ids")))
    for key in ("enabled", "webhook_enabled", "notify_on_success", "notify_on_failure"):
        values[key] = key in form
    return values


def _load_for_user(job_id: int, user: User, action: str) -> Job:
    try:
        return job_store.get_job_for_user(job_id, user, action)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def _header_safe(value: str) -> str:
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return quote(value)
    return value


@router.get("")
async def list_jobs(request: Request, user: User = Depends(get_current_user)) -> Response:
    jobs = job_store.list_jobs(user)
    config_ids = [cid for job in jobs for cid in job.config_ids]
    return render(
        request,
        "jobs/list.html",
        {
            "jobs": jobs,
            "configs": config_store.get_configs_by_ids(config_ids),
            "display_names": {job.id: job_store.display_name(job) for job in jobs},
        },
    )


@router.get("/new")
async def new_job(request: Request, user: User = Depends(get_current_user)) -> Response:
    defaults = job_store.JobInput.model_construct().model_dump()
    return _form_page(request, user, values=defaults)


@router.post("")
async def create_job(request: Request, user: User = Depends(get_current_user)) -> Response:
    form = await request.form()
    try:
        data = job_store.JobInput.from_form(form)
        job = job_store.create_job(data, user)
    except FormValidationError as exc:
        return _form_page(
            request,
            user,
            values=_submitted_values(form),
            errors=exc.errors,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    await scheduler_client.sync_job(job.id, job.enabled)
    return RedirectResponse("/jobs", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/{job_id}")
async def edit_job(request: Request, job_id: int, user: User = Depends(get_current_user)) -> Response:
    job = _load_for_user(job_id, user, "edit")
    return _form_page(request, user, values=job_store.form_values(job), job_id=job.id)


@router.post("/{job_id}")
async def update_job(request: Request, job_id: int, user: User = Depends(get_current_user)) -> Response:
    _load_for_user(job_id, user, "edit")
    form = await request.form()
    try:
        data = job_store.JobInput.from_form(form)
        job = job_store.update_job(job_id, data, user)
    except FormValidationError as exc:
        return _form_page(
            request,
            user,
            values=_submitted_values(form),
            job_id=job_id,
            errors=exc.errors,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    await scheduler_client.sync_job(job.id, job.enabled)
    return RedirectResponse("/jobs", status_code=status.HTTP_303_SEE_OTHER)


@router.delete("/{job_id}")
async def delete_job(job_id: int, user: User = Depends(get_current_user)) -> JSONResponse:
    try:
        job = job_store.delete_job(job_id, user)
    except NotFoundError:
        return JSONResponse({"error": "Job not found"}, status_code=status.HTTP_404_NOT_FOUND)
    except PermissionDeniedError:
        return JSONResponse(
            {"error": "You do not have permission to delete this job"},
            status_code=status.HTTP_403_FORBIDDEN,
        )

    await scheduler_client.forget_job(job.id)
    return JSONResponse({"message": "Job deleted successfully"})


@router.post("/{job_id}/duplicate")
async def duplicate_job(job_id: int, user: User = Depends(get_current_user)) -> Response:
    try:
        copy = job_store.duplicate_job(job_id, user)
    except NotFoundError:
        return JSONResponse({"error": "Job not found"}, status_code=status.HTTP_404_NOT_FOUND)
    except PermissionDeniedError:
        return JSONResponse(
            {"error": "You do not have permission to duplicate this job"},
            status_code=status.HTTP_403_FORBIDDEN,
        )
    await scheduler_client.sync_job(copy.id, copy.enabled)
    return RedirectResponse("/jobs", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/{job_id}/run")
async def run_job(job_id: int, user: User = Depends(get_current_user)) -> PlainTextResponse:
    try:
        job = job_store.get_job_for_user(job_id, user, "run")
    except NotFoundError:
        return PlainTextResponse("Job not found", status_code=status.HTTP_404_NOT_FOUND)
    except PermissionDeniedError:
        return PlainTextResponse(
            "You do not have permission to run this job",
            status_code=status.HTTP_403_FORBIDDEN,
        )

    try:
        job_store.record_manual_run(job, user)
    except sqlite3.Error:
        logger.exception("Failed to write audit entry for manual run of job %s", job.id)

    try:
        await scheduler_client.run_job_now(job.id)
    except scheduler_client.SchedulerError as exc:
        logger.error("Manual run of job %s failed: %s", job.id, exc)
        return PlainTextResponse(
            f"Failed to run job: {exc}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    name = job_store.display_name(job)
    return PlainTextResponse(
        f'Job "{name}" has been started successfully',
        headers={"HX-Job-Name": _header_safe(name)},
    )
