from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from mftconsole.db.session import get_connection
from mftconsole.models.job import RUN_STATUSES, TERMINAL_STATUSES, Job, JobHistory
from mftconsole.models.notification import JOB_COMPLETE, JOB_FAIL, JOB_START
from mftconsole.models.transfer_config import TransferConfig
from mftconsole.models.user import User
from mftconsole.services import config_store, job_store, notification_store
from mftconsole.services.errors import NotFoundError, PermissionDeniedError
from mftconsole.services.formatting import format_bytes

logger = logging.getLogger(__name__)

RECENT_RUNS = 5

# A run's own config wins; 0 means "the job's config".
_FROM = """
    FROM job_histories h
    JOIN jobs j ON j.id = h.job_id
    LEFT JOIN transfer_configs c
        ON c.id = CASE WHEN h.config_id > 0 THEN h.config_id ELSE j.config_id END
"""
_SELECT = "SELECT h.*, j.name AS job_name, COALESCE(c.name, '') AS config_name" + _FROM


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_run(row: sqlite3.Row) -> JobHistory:
    return JobHistory(
        id=row["id"],
        job_id=row["job_id"],
        config_id=row["config_id"],
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=_parse_dt(row["end_time"]),
        status=row["status"],
        bytes_transferred=row["bytes_transferred"],
        files_transferred=row["files_transferred"],
        error_message=row["error_message"],
        job_name=row["job_name"] or "",
        config_name=row["config_name"] or "",
    )


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _scope(user: User, search: str = "") -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if not user.is_admin:
        clauses.append("j.created_by = ?")
        params.append(user.id)
    search = (search or "").strip().lower()
    if search:
        clauses.append(
            "(LOWER(COALESCE(c.name, '')) LIKE ? ESCAPE '\\' OR LOWER(h.status) LIKE ? ESCAPE '\\')"
        )
        pattern = _like_pattern(search)
        params.extend([pattern, pattern])
    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


# -------------------------
# Listing
# -------------------------

def count_runs(user: User, search: str = "") -> int:
    where, params = _scope(user, search)
    with get_connection() as connection:
        row = connection.execute("SELECT COUNT(*)" + _FROM + where, params).fetchone()
    return int(row[0])


def list_runs(user: User, *, search: str = "", limit: int, offset: int = 0) -> list[JobHistory]:
    where, params = _scope(user, search)
    with get_connection() as connection:
        rows = connection.execute(
            _SELECT + where + " ORDER BY h.start_time DESC, h.id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
    return [_row_to_run(r) for r in rows]


def recent_runs(user: User, limit: int = RECENT_RUNS) -> list[JobHistory]:
    return list_runs(user, limit=limit)


def get_run(run_id: int) -> JobHistory | None:
    with get_connection() as connection:
        row = connection.execute(_SELECT + " WHERE h.id = ?", (run_id,)).fetchone()
    return _row_to_run(row) if row else None


def get_run_detail(run_id: int, user: User) -> tuple[JobHistory, Job, TransferConfig]:
    run = get_run(run_id)
    if not run:
        raise NotFoundError("Job run not found")
    job = job_store.get_job(run.job_id)
    if not job:
        raise NotFoundError("Job not found")
    if job.created_by != user.id and not user.is_admin:
        raise PermissionDeniedError("You do not have permission to view this job run")
    config = config_store.get_config(run.config_id or job.config_id)
    if not config:
        raise NotFoundError("Transfer config not found")
    return run, job, config


# -------------------------
# Dashboard
# -------------------------

def dashboard_stats(user: User, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.now(tz=timezone.utc)
    since = (now - timedelta(hours=24)).isoformat()
    where, params = _scope(user)
    joiner = " AND " if where else " WHERE "
    with get_connection() as connection:
        active = connection.execute(
            "SELECT COUNT(*)" + _FROM + where + joiner + "h.status = 'running' AND h.end_time IS NULL",
            params,
        ).fetchone()[0]
        completed = connection.execute(
            "SELECT COUNT(*)" + _FROM + where + joiner + "h.status = 'completed' AND h.end_time >= ?",
            [*params, since],
        ).fetchone()[0]
        failed = connection.execute(
            "SELECT COUNT(*)" + _FROM + where + joiner + "h.status = 'failed'",
            params,
        ).fetchone()[0]
    return {"active_transfers": int(active), "completed_today": int(completed), "failed_transfers": int(failed)}


def status_counts(user: User) -> dict[str, int]:
    where, params = _scope(user)
    with get_connection() as connection:
        rows = connection.execute(
            "SELECT h.status AS status, COUNT(*) AS n" + _FROM + where + " GROUP BY h.status",
            params,
        ).fetchall()
    counts = {"success": 0, "failure": 0, "pending": 0}
    for row in rows:
        if row["status"] == "completed":
            counts["success"] += row["n"]
        elif row["status"] == "failed":
            counts["failure"] += row["n"]
        elif row["status"] in ("pending", "running"):
            counts["pending"] += row["n"]
    return counts


# -------------------------
# Run reports from the transfer engine
# -------------------------

def open_run(
    job_id: int,
    *,
    config_id: int = 0,
    status: str = "running",
    start_time: datetime | None = None,
) -> JobHistory:
    if status not in RUN_STATUSES:
        raise ValueError(f"Unknown run status '{status}'")
    job = job_store.get_job(job_id)
    if not job:
        raise NotFoundError("Job not found")
    start_time = _utc(start_time) if start_time else datetime.now(tz=timezone.utc)
    now = datetime.now(tz=timezone.utc).isoformat()
    with get_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO job_histories (job_id, config_id, start_time, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (job_id, config_id, start_time.isoformat(), status, now, now),
        )
        run_id = int(cursor.lastrowid)
        job_store.set_last_run(connection, job_id, start_time)

    name = job_store.display_name(job)
    notification_store.create_job_notification(
        user_id=job.created_by,
        job_id=job.id,
        job_run_id=run_id,
        type=JOB_START,
        title=f"Job started: {name}",
        message=f'Job "{name}" started running.',
    )
    logger.info("Run %s opened for job %s", run_id, job_id)
    run = get_run(run_id)
    if run is None:
        raise NotFoundError("Job run not found")
    return run


def update_run(
    run_id: int,
    *,
    status: str | None = None,
    end_time: datetime | None = None,
    bytes_transferred: int | None = None,
    files_transferred: int | None = None,
    error_message: str | None = None,
) -> JobHistory:
    run = get_run(run_id)
    if not run:
        raise NotFoundError("Job run not found")
    if status is not None and status not in RUN_STATUSES:
        raise ValueError(f"Unknown run status '{status}'")

    fields: dict[str, Any] = {}
    if status is not None:
        fields["status"] = status
        if status in TERMINAL_STATUSES and end_time is None and run.end_time is None:
            end_time = datetime.now(tz=timezone.utc)
    if end_time is not None:
        fields["end_time"] = _utc(end_time).isoformat()
    if bytes_transferred is not None:
        fields["bytes_transferred"] = max(0, bytes_transferred)
    if files_transferred is not None:
        fields["files_transferred"] = max(0, files_transferred)
    if error_message is not None:
        fields["error_message"] = error_message
    if fields:
        fields["updated_at"] = datetime.now(tz=timezone.utc).isoformat()
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with get_connection() as connection:
            connection.execute(
                f"UPDATE job_histories SET {assignments} WHERE id = ?",
                [*fields.values(), run_id],
            )

    updated = get_run(run_id)
    if updated is None:
        raise NotFoundError("Job run not found")
    if status != run.status and status in ("completed", "failed"):
        _notify_finished(updated)
    return updated


def _notify_finished(run: JobHistory) -> None:
    job = job_store.get_job(run.job_id)
    if not job:
        return
    name = job_store.display_name(job)
    if run.status == "completed":
        if not job.notify_on_success:
            return
        notification_store.create_job_notification(
            user_id=job.created_by,
            job_id=job.id,
            job_run_id=run.id,
            type=JOB_COMPLETE,
            title=f"Job completed: {name}",
            message=(
                f'Job "{name}" completed: {run.files_transferred} files, '
                f"{format_bytes(run.bytes_transferred)} transferred."
            ),
        )
    else:
        if not job.notify_on_failure:
            return
        notification_store.create_job_notification(
            user_id=job.created_by,
            job_id=job.id,
            job_run_id=run.id,
            type=JOB_FAIL,
            title=f"Job failed: {name}",
            message=run.error_message or f'Job "{name}" failed.',
        )
