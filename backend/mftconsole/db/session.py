from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from mftconsole.core.config import get_settings

logger = logging.getLogger(__name__)


@contextmanager
def get_connection() -> Iterator[sqlite3.Connection]:
    """One unit of work: committed on success, rolled back on error, then closed."""
    connection = sqlite3.connect(get_settings().db_path)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    try:
        with connection:
            yield connection
    finally:
        connection.close()


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == column for r in rows)


# Columns added after the first release: (table, column, DDL type).
_ADDED_COLUMNS = [
    ("transfer_configs", "max_concurrent_transfers", "INTEGER NOT NULL DEFAULT 4"),
    ("transfer_configs", "skip_processed_files", "INTEGER NOT NULL DEFAULT 1"),
    ("transfer_configs", "delete_after_transfer", "INTEGER NOT NULL DEFAULT 0"),
    ("jobs", "config_ids", "TEXT NOT NULL DEFAULT ''"),
    ("job_histories", "config_id", "INTEGER NOT NULL DEFAULT 0"),
    ("users", "theme", "TEXT NOT NULL DEFAULT 'light'"),
]


def init_db() -> None:
    db_path = get_settings().db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                is_admin INTEGER NOT NULL DEFAULT 0,
                active INTEGER NOT NULL DEFAULT 1,
                theme TEXT NOT NULL DEFAULT 'light',
                two_factor_enabled INTEGER NOT NULL DEFAULT 0,
                two_factor_secret TEXT,
                backup_codes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS transfer_configs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                source_type TEXT NOT NULL,
                source_path TEXT NOT NULL,
                source_host TEXT NOT NULL DEFAULT '',
                source_port INTEGER NOT NULL DEFAULT 22,
                source_user TEXT NOT NULL DEFAULT '',
                source_key_file TEXT NOT NULL DEFAULT '',
                source_bucket TEXT NOT NULL DEFAULT '',
                source_region TEXT NOT NULL DEFAULT '',
                source_access_key TEXT NOT NULL DEFAULT '',
                source_endpoint TEXT NOT NULL DEFAULT '',
                source_share TEXT NOT NULL DEFAULT '',
                source_domain TEXT NOT NULL DEFAULT '',
                source_passive_mode INTEGER NOT NULL DEFAULT 1,
                destination_type TEXT NOT NULL,
                destination_path TEXT NOT NULL,
                dest_host TEXT NOT NULL DEFAULT '',
                dest_port INTEGER NOT NULL DEFAULT 22,
                dest_user TEXT NOT NULL DEFAULT '',
                dest_key_file TEXT NOT NULL DEFAULT '',
                dest_bucket TEXT NOT NULL DEFAULT '',
                dest_region TEXT NOT NULL DEFAULT '',
                dest_access_key TEXT NOT NULL DEFAULT '',
                dest_endpoint TEXT NOT NULL DEFAULT '',
                dest_share TEXT NOT NULL DEFAULT '',
                dest_domain TEXT NOT NULL DEFAULT '',
                dest_passive_mode INTEGER NOT NULL DEFAULT 1,
                file_pattern TEXT NOT NULL DEFAULT '*',
                output_pattern TEXT NOT NULL DEFAULT '',
                archive_enabled INTEGER NOT NULL DEFAULT 0,
                archive_path TEXT NOT NULL DEFAULT '',
                delete_after_transfer INTEGER NOT NULL DEFAULT 0,
                skip_processed_files INTEGER NOT NULL DEFAULT 1,
                max_concurrent_transfers INTEGER NOT NULL DEFAULT 4,
                rclone_flags TEXT NOT NULL DEFAULT '',
                created_by INTEGER NOT NULL REFERENCES users(id),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL DEFAULT '',
                config_id INTEGER NOT NULL,
                config_ids TEXT NOT NULL DEFAULT '',
                schedule TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                last_run TEXT,
                next_run TEXT,
                webhook_enabled INTEGER NOT NULL DEFAULT 0,
                webhook_url TEXT NOT NULL DEFAULT '',
                webhook_secret TEXT NOT NULL DEFAULT '',
                webhook_headers TEXT NOT NULL DEFAULT '',
                notify_on_success INTEGER NOT NULL DEFAULT 1,
                notify_on_failure INTEGER NOT NULL DEFAULT 1,
                created_by INTEGER NOT NULL REFERENCES users(id),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS job_histories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id INTEGER NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
                config_id INTEGER NOT NULL DEFAULT 0,
                start_time TEXT NOT NULL,
                end_time TEXT,
                status TEXT NOT NULL,
                bytes_transferred INTEGER NOT NULL DEFAULT 0,
                files_transferred INTEGER NOT NULL DEFAULT 0,
                error_message TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_job_histories_start ON job_histories (start_time)"
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS user_notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL DEFAULT '',
                link TEXT NOT NULL DEFAULT '',
                job_id INTEGER,
                job_run_id INTEGER,
                config_id INTEGER,
                is_read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_user_notifications_user ON user_notifications (user_id, created_at)"
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                details_json TEXT NOT NULL DEFAULT '{}',
                timestamp TEXT NOT NULL
            )
            """
        )

        for table, column, ddl in _ADDED_COLUMNS:
            if not _column_exists(connection, table, column):
                logger.info("Adding column %s.%s", table, column)
                connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")

        connection.commit()
