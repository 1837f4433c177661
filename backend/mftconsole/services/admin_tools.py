from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from mftconsole.db.session import get_connection
from mftconsole.models.user import User
from mftconsole.services import audit_log, config_store, job_store

logger = logging.getLogger(__name__)

# Never written to an export file.
_EXPORT_REDACTED = ("webhook_secret",)


def export_filename(kind: str, now: datetime) -> str:
    return f"mftconsole_{kind}_{now.strftime('%Y%m%d_%H%M%S')}.json"


def export_configs(admin: User) -> list[dict[str, Any]]:
    exported = []
    for config in config_store.list_configs(admin):
        exported.append(
            {
                "id": config.id,
                **config_store.form_values(config),
                "created_by": config.created_by,
                "created_at": config.created_at.isoformat(),
                "updated_at": config.updated_at.isoformat(),
            }
        )
    return exported


def export_jobs(admin: User) -> list[dict[str, Any]]:
    jobs = job_store.list_jobs(admin)
    configs = config_store.get_configs_by_ids([cid for job in jobs for cid in job.config_ids])
    exported = []
    for job in jobs:
        values = job_store.form_values(job)
        for key in _EXPORT_REDACTED:
            values.pop(key, None)
        exported.append(
            {
                "id": job.id,
                **values,
                "config_names": [configs[cid].name for cid in job.config_ids if cid in configs],
                "created_by": job.created_by,
                "created_at": job.created_at.isoformat(),
                "updated_at": job.updated_at.isoformat(),
            }
        )
    return exported


def clear_job_history(admin: User) -> int:
    with get_connection() as connection:
        deleted = connection.execute("DELETE FROM job_histories").rowcount
        audit_log.record(
            connection,
            action="clear",
            entity_type="job_history",
            entity_id=0,
            user_id=admin.id,
            details={"deleted": deleted},
        )
    logger.info("Admin %s cleared %s job history rows", admin.id, deleted)
    return deleted


def table_counts() -> dict[str, int]:
    with get_connection() as connection:
        row = connection.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM users) AS users,
                (SELECT COUNT(*) FROM transfer_configs) AS configs,
                (SELECT COUNT(*) FROM jobs) AS jobs,
                (SELECT COUNT(*) FROM job_histories) AS runs
            """
        ).fetchone()
    return {key: int(row[key]) for key in ("users", "configs", "jobs", "runs")}
