from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

from mftconsole.db.session import get_connection
from mftconsole.models.notification import (
    CONFIG_UPDATE,
    JOB_COMPLETE,
    JOB_FAIL,
    JOB_START,
    SYSTEM_ALERT,
    UserNotification,
)
from mftconsole.services import users

logger = logging.getLogger(__name__)

DROPDOWN_LIMIT = 10
BADGE_MAX = 99

JOB_TYPES = {JOB_START, JOB_COMPLETE, JOB_FAIL}


def _row_to_notification(row: sqlite3.Row) -> UserNotification:
    return UserNotification(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        link=row["link"],
        job_id=row["job_id"],
        job_run_id=row["job_run_id"],
        config_id=row["config_id"],
        is_read=bool(row["is_read"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def create_notification(
    *,
    user_id: int,
    type: str,
    title: str,
    message: str = "",
    link: str = "",
    job_id: int | None = None,
    job_run_id: int | None = None,
    config_id: int | None = None,
) -> int:
    with get_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO user_notifications
                (user_id, type, title, message, link, job_id, job_run_id, config_id, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                user_id,
                type,
                title,
                message,
                link,
                job_id,
                job_run_id,
                config_id,
                datetime.now(tz=timezone.utc).isoformat(),
            ),
        )
        return int(cursor.lastrowid)


def create_job_notification(
    *, user_id: int, job_id: int, job_run_id: int, type: str, title: str, message: str
) -> int:
    if type not in JOB_TYPES:
        raise ValueError(f"Not a job notification type: {type}")
    return create_notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=f"/job-runs/{job_run_id}",
        job_id=job_id,
        job_run_id=job_run_id,
    )


def create_config_notification(*, user_id: int, config_id: int, title: str, message: str) -> int:
    return create_notification(
        user_id=user_id,
        type=CONFIG_UPDATE,
        title=title,
        message=message,
        link=f"/configs/{config_id}",
        config_id=config_id,
    )


def create_system_notification(title: str, message: str) -> int:
    """Send a system alert to every active user; returns how many were created."""
    user_ids = users.list_active_user_ids()
    for user_id in user_ids:
        create_notification(user_id=user_id, type=SYSTEM_ALERT, title=title, message=message)
    logger.info("System notification %r sent to %s users", title, len(user_ids))
    return len(user_ids)


# -------------------------
# Queries
# -------------------------

def count_for_user(user_id: int) -> int:
    with get_connection() as connection:
        row = connection.execute(
            "SELECT COUNT(*) FROM user_notifications WHERE user_id = ?", (user_id,)
        ).fetchone()
    return int(row[0])


def count_unread(user_id: int) -> int:
    with get_connection() as connection:
        row = connection.execute(
            "SELECT COUNT(*) FROM user_notifications WHERE user_id = ? AND is_read = 0", (user_id,)
        ).fetchone()
    return int(row[0])


def list_for_user(user_id: int, *, limit: int, offset: int = 0) -> list[UserNotification]:
    with get_connection() as connection:
        rows = connection.execute(
            """
            SELECT * FROM user_notifications
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, offset),
        ).fetchall()
    return [_row_to_notification(r) for r in rows]


def recent_for_user(user_id: int) -> list[UserNotification]:
    return list_for_user(user_id, limit=DROPDOWN_LIMIT)


def badge_label(count: int) -> str:
    if count <= 0:
        return ""
    if count > BADGE_MAX:
        return f"{BADGE_MAX}+"
    return str(count)


# -------------------------
# Mutations
# -------------------------

def mark_read(notification_id: int, user_id: int) -> bool:
    with get_connection() as connection:
        cursor = connection.execute(
            "UPDATE user_notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        return cursor.rowcount > 0


def mark_all_read(user_id: int) -> int:
    with get_connection() as connection:
        cursor = connection.execute(
            "UPDATE user_notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        return cursor.rowcount


def delete_notification(notification_id: int, user_id: int) -> bool:
    with get_connection() as connection:
        cursor = connection.execute(
            "DELETE FROM user_notifications WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        return cursor.rowcount > 0
