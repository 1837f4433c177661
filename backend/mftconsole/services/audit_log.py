from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any

from mftconsole.db.session import get_connection


def record(
    connection: sqlite3.Connection,
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    user_id: int,
    details: dict[str, Any] | None = None,
) -> None:
    """Append an audit entry inside the caller's transaction."""
    connection.execute(
        """
        INSERT INTO audit_logs (action, entity_type, entity_id, user_id, details_json, timestamp)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            action,
            entity_type,
            entity_id,
            user_id,
            json.dumps(details or {}, ensure_ascii=False, default=str),
            datetime.now(tz=timezone.utc).isoformat(),
        ),
    )


def list_entries(entity_type: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
    query = "SELECT id, action, entity_type, entity_id, user_id, details_json, timestamp FROM audit_logs"
    params: list[Any] = []
    if entity_type:
        query += " WHERE entity_type = ?"
        params.append(entity_type)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    with get_connection() as connection:
        rows = connection.execute(query, params).fetchall()

    return [
        {
            "id": row["id"],
            "action": row["action"],
            "entity_type": row["entity_type"],
            "entity_id": row["entity_id"],
            "user_id": row["user_id"],
            "details": json.loads(row["details_json"] or "{}"),
            "timestamp": datetime.fromisoformat(row["timestamp"]),
        }
        for row in rows
    ]
