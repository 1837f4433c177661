from __future__ import annotations

import json
import logging
import re
import sqlite3
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import urlparse

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mftconsole.db.session import get_connection
from mftconsole.models.job import Job
from mftconsole.models.user import User
from mftconsole.services import audit_log, config_store
from mftconsole.services.errors import FormValidationError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

CRON_DESCRIPTORS = {"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
_CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")
# Cron allows 7 for Sunday; the trigger's day_of_week only goes up to 6.
_DOW_SEVEN = re.compile(r"(?<![/\d])7(?!\d)")
_DURATION = re.compile(r"^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$")

_BOOL_FIELDS = ("enabled", "webhook_enabled", "notify_on_success", "notify_on_failure")


def validate_schedule(schedule: str) -> str | None:
    """Return an error message for an unusable cron expression, else None.

    Five-field expressions get an implicit ``0`` seconds field. Field values
    and ranges are checked by APScheduler's ``CronTrigger``.
    """
    schedule = (schedule or "").strip()
    if not schedule:
        return "Schedule is required"
    if schedule.startswith("@"):
        if schedule in CRON_DESCRIPTORS:
            return None
        if schedule.startswith("@every "):
            if _DURATION.match(schedule[len("@every "):].strip()):
                return None
            return "Invalid duration for @every (use e.g. 1h30m, 15m, 45s)"
        return f"Unknown schedule descriptor '{schedule}'"
    fields = schedule.split()
    if len(fields) not in (5, 6):
        return "Schedule must be a cron expression with 5 or 6 fields"
    if len(fields) == 5:
        fields = ["0", *fields]
    values = [f.lower().replace("?", "*") for f in fields]
    values[5] = _DOW_SEVEN.sub("6", values[5])
    try:
        CronTrigger(timezone="UTC", **dict(zip(_CRON_FIELDS, values)))
    except ValueError as exc:
        return f"Invalid cron expression: {exc}"
    return None


def _is_id(value: str) -> bool:
    return value.isascii() and value.isdigit()


def parse_config_ids(raw: str | None) -> list[int]:
    ids: list[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if _is_id(part) and int(part) not in ids:
            ids.append(int(part))
    return ids


def _join_ids(ids: list[int]) -> str:
    return ",".join(str(i) for i in ids)


# -------------------------
# Form model
# -------------------------

class JobInput(BaseModel):
    name: str = Field(default="", max_length=200)
    config_ids: list[int] = Field(default_factory=list)
    schedule: str = ""
    enabled: bool = True
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_secret: str = ""
    webhook_headers: str = ""
    notify_on_success: bool = True
    notify_on_failure: bool = True

    @field_validator("config_ids")
    @classmethod
    def _at_least_one_config(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("Select at least one transfer config")
        return value

    @field_validator("schedule")
    @classmethod
    def _valid_schedule(cls, value: str) -> str:
        error = validate_schedule(value)
        if error:
            raise ValueError(error)
        return value.strip()

    @field_validator("webhook_headers")
    @classmethod
    def _headers_are_object(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return ""
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Webhook headers must be valid JSON: {exc.msg}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("Webhook headers must be a JSON object")
        return value

    @model_validator(mode="after")
    def _webhook_url_when_enabled(self) -> "JobInput":
        if self.webhook_enabled:
            parsed = urlparse(self.webhook_url.strip())
            if not self.webhook_url.strip():
                raise ValueError("webhook_url: Webhook URL is required when webhooks are enabled")
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError("webhook_url: Webhook URL must be an http(s) URL")
        return self

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> "JobInput":
        if hasattr(form, "getlist"):
            raw_ids = [str(v) for v in form.getlist("config_ids")]
        else:
            value = form.get("config_ids") or []
            raw_ids = [str(v) for v in (value if isinstance(value, list) else [value])]
        parts = [p.strip() for raw in raw_ids for p in raw.split(",") if p.strip()]
        bad = [p for p in parts if not _is_id(p)]

        data: dict[str, Any] = {"config_ids": parse_config_ids(",".join(parts))}
        for key in ("name", "schedule", "webhook_url", "webhook_secret", "webhook_headers"):
            data[key] = str(form.get(key) or "").strip()
        for key in _BOOL_FIELDS:
            data[key] = str(form.get(key, "")).strip().lower() in ("on", "true", "1", "yes")
        errors: dict[str, str] = {}
        try:
            result = cls.model_validate(data)
        except ValidationError as exc:
            errors = _errors_by_field(exc)
        if bad:
            errors["config_ids"] = f"Invalid transfer config ID '{bad[0]}'"
        if errors:
            raise FormValidationError(errors)
        return result


def _errors_by_field(exc: ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ())]
        message = str(err.get("msg") or "Invalid value").removeprefix("Value error, ")
        if not loc and ": " in message:
            field, _, message = message.partition(": ")
            errors[field] = message
            continue
        errors[loc[0] if loc else "form"] = message
    return errors


# -------------------------
# Row mapping
# -------------------------

def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_job(row: sqlite3.Row) -> Job:
    ids = parse_config_ids(row["config_ids"])
    if not ids and row["config_id"]:
        ids = [row["config_id"]]
    return Job(
        id=row["id"],
        name=row["name"],
        config_ids=ids,
        schedule=row["schedule"],
        enabled=bool(row["enabled"]),
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        last_run=_parse_dt(row["last_run"]),
        next_run=_parse_dt(row["next_run"]),
        webhook_enabled=bool(row["webhook_enabled"]),
        webhook_url=row["webhook_url"],
        webhook_secret=row["webhook_secret"],
        webhook_headers=row["webhook_headers"],
        notify_on_success=bool(row["notify_on_success"]),
        notify_on_failure=bool(row["notify_on_failure"]),
    )


def _column_values(job: Job) -> dict[str, Any]:
    return {
        "name": job.name,
        "config_id": job.config_id,
        "config_ids": _join_ids(job.config_ids),
        "schedule": job.schedule,
        "enabled": int(job.enabled),
        "last_run": job.last_run.isoformat() if job.last_run else None,
        "next_run": job.next_run.isoformat() if job.next_run else None,
        "webhook_enabled": int(job.webhook_enabled),
        "webhook_url": job.webhook_url,
        "webhook_secret": job.webhook_secret,
        "webhook_headers": job.webhook_headers,
        "notify_on_success": int(job.notify_on_success),
        "notify_on_failure": int(job.notify_on_failure),
    }


def _audit_details(job: Job) -> dict[str, Any]:
    return {
        "name": job.name,
        "config_ids": job.config_ids,
        "schedule": job.schedule,
        "enabled": job.enabled,
        "webhook_enabled": job.webhook_enabled,
    }


def _insert(connection: sqlite3.Connection, job: Job) -> int:
    values = _column_values(job)
    values["created_by"] = job.created_by
    values["created_at"] = job.created_at.isoformat()
    values["updated_at"] = job.updated_at.isoformat()
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cursor = connection.execute(f"INSERT INTO jobs ({columns}) VALUES ({placeholders})", list(values.values()))
    return int(cursor.lastrowid)


def _check_configs(config_ids: list[int], user: User) -> None:
    configs = config_store.get_configs_by_ids(config_ids)
    for config_id in config_ids:
        config = configs.get(config_id)
        if config is None or (config.created_by != user.id and not user.is_admin):
            raise FormValidationError({"config_ids": f"Transfer config #{config_id} not found"})


def _input_to_job(data: JobInput, *, job_id: int, user_id: int, now: datetime) -> Job:
    return Job(
        id=job_id,
        name=data.name,
        config_ids=list(data.config_ids),
        schedule=data.schedule,
        enabled=data.enabled,
        created_by=user_id,
        created_at=now,
        updated_at=now,
        webhook_enabled=data.webhook_enabled,
        webhook_url=data.webhook_url,
        webhook_secret=data.webhook_secret,
        webhook_headers=data.webhook_headers,
        notify_on_success=data.notify_on_success,
        notify_on_failure=data.notify_on_failure,
    )


# -------------------------
# Public API used by routes
# -------------------------

def list_jobs(user: User, *, enabled_only: bool = False) -> list[Job]:
    query = "SELECT * FROM jobs"
    where: list[str] = []
    params: list[Any] = []
    if not user.is_admin:
        where.append("created_by = ?")
        params.append(user.id)
    if enabled_only:
        where.append("enabled = 1")
    if where:
        query += " WHERE " + " AND ".join(where)
    query += " ORDER BY id"
    with get_connection() as connection:
        rows = connection.execute(query, params).fetchall()
    return [_row_to_job(r) for r in rows]


def get_job(job_id: int) -> Job | None:
    with get_connection() as connection:
        row = connection.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return _row_to_job(row) if row else None


def get_job_for_user(job_id: int, user: User, action: str = "access") -> Job:
    job = get_job(job_id)
    if not job:
        raise NotFoundError("Job not found")
    if job.created_by != user.id and not user.is_admin:
        raise PermissionDeniedError(f"You do not have permission to {action} this job")
    return job


def display_name(job: Job) -> str:
    """The job's name, else its first config's name, else ``Job #<id>``."""
    if job.name:
        return job.name
    config = config_store.get_config(job.config_id) if job.config_id else None
    if config and config.name:
        return config.name
    return f"Job #{job.id}"


def create_job(data: JobInput, user: User) -> Job:
    _check_configs(data.config_ids, user)
    now = datetime.now(tz=timezone.utc)
    job = _input_to_job(data, job_id=0, user_id=user.id, now=now)
    with get_connection() as connection:
        job.id = _insert(connection, job)
        audit_log.record(
            connection,
            action="create",
            entity_type="job",
            entity_id=job.id,
            user_id=user.id,
            details=_audit_details(job),
        )
    logger.info("Job %s created by user %s", job.id, user.id)
    return job


def update_job(job_id: int, data: JobInput, user: User) -> Job:
    existing = get_job_for_user(job_id, user, "edit")
    _check_configs(data.config_ids, user)
    now = datetime.now(tz=timezone.utc)
    job = _input_to_job(data, job_id=existing.id, user_id=existing.created_by, now=now)
    job.created_at = existing.created_at
    job.last_run = existing.last_run
    job.next_run = existing.next_run

    values = _column_values(job)
    values["updated_at"] = now.isoformat()
    assignments = ", ".join(f"{k} = ?" for k in values)
    with get_connection() as connection:
        connection.execute(f"UPDATE jobs SET {assignments} WHERE id = ?", [*values.values(), job_id])
        audit_log.record(
            connection,
            action="update",
            entity_type="job",
            entity_id=job_id,
            user_id=user.id,
            details=_audit_details(job),
        )
    logger.info("Job %s updated by user %s", job_id, user.id)
    return job


def delete_job(job_id: int, user: User) -> Job:
    job = get_job_for_user(job_id, user, "delete")
    with get_connection() as connection:
        audit_log.record(
            connection,
            action="delete",
            entity_type="job",
            entity_id=job.id,
            user_id=user.id,
            details=_audit_details(job),
        )
        connection.execute("DELETE FROM jobs WHERE id = ?", (job.id,))
    logger.info("Job %s deleted by user %s", job_id, user.id)
    return job


def duplicate_job(job_id: int, user: User) -> Job:
    original = get_job_for_user(job_id, user, "duplicate")
    now = datetime.now(tz=timezone.utc)
    copy = Job(
        **{
            **original.__dict__,
            "id": 0,
            "name": f"{original.name or display_name(original)} - Copy",
            "config_ids": list(original.config_ids),
            "created_by": user.id,
            "created_at": now,
            "updated_at": now,
            "last_run": None,
            "next_run": None,
        }
    )
    with get_connection() as connection:
        copy.id = _insert(connection, copy)
        audit_log.record(
            connection,
            action="duplicate",
            entity_type="job",
            entity_id=copy.id,
            user_id=user.id,
            details={"original_job_id": original.id, **_audit_details(copy)},
        )
    return copy


def record_manual_run(job: Job, user: User) -> None:
    with get_connection() as connection:
        audit_log.record(
            connection,
            action="run_manual",
            entity_type="job",
            entity_id=job.id,
            user_id=user.id,
            details={"name": display_name(job)},
        )


def set_last_run(connection: sqlite3.Connection, job_id: int, when: datetime) -> None:
    connection.execute("UPDATE jobs SET last_run = ? WHERE id = ?", (when.isoformat(), job_id))


def form_values(job: Job) -> dict[str, Any]:
    values = _column_values(job)
    values["config_ids"] = list(job.config_ids)
    for key in _BOOL_FIELDS:
        values[key] = bool(values[key])
    return values
