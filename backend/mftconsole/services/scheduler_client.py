from __future__ import annotations

import logging

import httpx

from mftconsole.core.config import get_settings

logger = logging.getLogger(__name__)

# Replaced in tests with an httpx.MockTransport.
transport: httpx.AsyncBaseTransport | None = None


# -------------------------
# Errors
# -------------------------

class SchedulerError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SchedulerUnavailableError(SchedulerError):
    pass


# -------------------------
# Helpers
# -------------------------

def _headers() -> dict[str, str]:
    headers = {"Accept": "application/json", "User-Agent": "MFT Console"}
    token = get_settings().scheduler_token
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("error") or payload.get("message") or "")
    return ""


async def _request(method: str, path: str) -> httpx.Response:
    settings = get_settings()
    url = f"{settings.scheduler_url}{path}"
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.scheduler_timeout),
            transport=transport,
        ) as client:
            response = await client.request(method, url, headers=_headers())
    except httpx.TimeoutException as exc:
        raise SchedulerError("The scheduler did not respond in time.") from exc
    except httpx.RequestError as exc:
        raise SchedulerError("Unable to reach the scheduler.") from exc

    if response.status_code >= 400:
        detail = _error_detail(response)
        message = f"Scheduler request failed with status {response.status_code}."
        if detail:
            message = f"{message} {detail}"
        raise SchedulerError(message, status_code=response.status_code)
    return response


# -------------------------
# Public API used by routes
# -------------------------

async def run_job_now(job_id: int) -> None:
    if not get_settings().scheduler_url:
        raise SchedulerUnavailableError("No scheduler is configured; set MFT_SCHEDULER_URL to run jobs.")
    await _request("POST", f"/jobs/{job_id}/run")
    logger.info("Scheduler accepted manual run of job %s", job_id)


async def schedule_job(job_id: int) -> bool:
    """Ask the scheduler to (re)load a job. Returns False when none is configured."""
    if not get_settings().scheduler_url:
        return False
    await _request("PUT", f"/jobs/{job_id}/schedule")
    return True


async def unschedule_job(job_id: int) -> bool:
    if not get_settings().scheduler_url:
        return False
    await _request("DELETE", f"/jobs/{job_id}/schedule")
    return True


async def sync_job(job_id: int, enabled: bool) -> None:
    """Schedule or unschedule a saved job. Failures are logged; the job stays saved."""
    try:
        if enabled:
            await schedule_job(job_id)
        else:
            await unschedule_job(job_id)
    except SchedulerError as exc:
        logger.warning("Scheduler update for job %s failed: %s", job_id, exc)


async def forget_job(job_id: int) -> None:
    try:
        await unschedule_job(job_id)
    except SchedulerError as exc:
        logger.warning("Unscheduling deleted job %s failed: %s", job_id, exc)
