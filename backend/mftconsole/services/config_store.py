from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from mftconsole.db.session import get_connection
from mftconsole.models.transfer_config import PROVIDER_TYPES, Endpoint, TransferConfig
from mftconsole.models.user import User
from mftconsole.services import audit_log, notification_store
from mftconsole.services.errors import (
    ConfigInUseError,
    FormValidationError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

# Endpoint attributes stored as <prefix><name> columns.
_ENDPOINT_FIELDS = (
    "host",
    "port",
    "user",
    "key_file",
    "bucket",
    "region",
    "access_key",
    "endpoint",
    "share",
    "domain",
    "passive_mode",
)
_SIDE_PREFIX = {"source": "source_", "destination": "dest_"}

BOOL_FIELDS = (
    "source_passive_mode",
    "dest_passive_mode",
    "archive_enabled",
    "delete_after_transfer",
    "skip_processed_files",
)
_INT_DEFAULTS = {"source_port": 22, "dest_port": 22, "max_concurrent_transfers": 4}


# -------------------------
# Form model
# -------------------------

class TransferConfigInput(BaseModel):
    model_config = ConfigDict(validate_default=True)

    name: str = Field(default="", max_length=200)
    source_type: str = ""
    source_path: str = ""
    source_host: str = ""
    source_port: int = Field(default=22, ge=1, le=65535)
    source_user: str = ""
    source_password: str = ""
    source_key_file: str = ""
    source_bucket: str = ""
    source_region: str = ""
    source_access_key: str = ""
    source_secret_key: str = ""
    source_endpoint: str = ""
    source_share: str = ""
    source_domain: str = ""
    source_passive_mode: bool = True
    destination_type: str = ""
    destination_path: str = ""
    dest_host: str = ""
    dest_port: int = Field(default=22, ge=1, le=65535)
    dest_user: str = ""
    dest_password: str = ""
    dest_key_file: str = ""
    dest_bucket: str = ""
    dest_region: str = ""
    dest_access_key: str = ""
    dest_secret_key: str = ""
    dest_endpoint: str = ""
    dest_share: str = ""
    dest_domain: str = ""
    dest_passive_mode: bool = True
    file_pattern: str = "*"
    output_pattern: str = ""
    archive_enabled: bool = False
    archive_path: str = ""
    delete_after_transfer: bool = False
    skip_processed_files: bool = True
    max_concurrent_transfers: int = Field(default=4, ge=1, le=32)
    rclone_flags: str = ""

    @field_validator("name", "source_type", "source_path", "destination_type", "destination_path")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("This field is required")
        return value.strip()

    @model_validator(mode="after")
    def _check_providers(self) -> "TransferConfigInput":
        for field_name in ("source_type", "destination_type"):
            value = getattr(self, field_name)
            if value not in PROVIDER_TYPES:
                raise ValueError(f"{field_name}: unknown provider type '{value}'")
        if self.archive_enabled and not self.archive_path.strip():
            raise ValueError("archive_path: archive path is required when archiving is enabled")
        if not self.file_pattern.strip():
            self.file_pattern = "*"
        return self

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> "TransferConfigInput":
        data: dict[str, Any] = {}
        for key in cls.model_fields:
            if key in BOOL_FIELDS:
                data[key] = str(form.get(key, "")).strip().lower() in ("on", "true", "1", "yes")
                continue
            raw = form.get(key)
            if raw is None:
                continue
            value = str(raw).strip() if key not in ("source_password", "dest_password") else str(raw)
            if key in _INT_DEFAULTS and value == "":
                continue
            data[key] = value
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise FormValidationError(_errors_by_field(exc)) from exc

    def endpoint(self, side: str) -> Endpoint:
        prefix = _SIDE_PREFIX[side]
        kind = self.source_type if side == "source" else self.destination_type
        path = self.source_path if side == "source" else self.destination_path
        values = {name: getattr(self, prefix + name) for name in _ENDPOINT_FIELDS}
        return Endpoint(
            type=kind,
            path=path,
            password=getattr(self, prefix + "password"),
            secret_key=getattr(self, prefix + "secret_key"),
            **values,
        )


def _errors_by_field(exc: ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "__root__"]
        message = str(err.get("msg") or "Invalid value").removeprefix("Value error, ")
        if not loc and ": " in message:
            # Model-level validators report "<field>: <message>".
            field, _, message = message.partition(": ")
            errors[field] = message
            continue
        errors[loc[0] if loc else "form"] = message
    return errors


# -------------------------
# Row mapping
# -------------------------

def _row_to_endpoint(row: sqlite3.Row, side: str) -> Endpoint:
    prefix = _SIDE_PREFIX[side]
    values = {name: row[prefix + name] for name in _ENDPOINT_FIELDS}
    values["passive_mode"] = bool(values["passive_mode"])
    if side == "source":
        return Endpoint(type=row["source_type"], path=row["source_path"], **values)
    return Endpoint(type=row["destination_type"], path=row["destination_path"], **values)


def _row_to_config(row: sqlite3.Row) -> TransferConfig:
    return TransferConfig(
        id=row["id"],
        name=row["name"],
        source=_row_to_endpoint(row, "source"),
        destination=_row_to_endpoint(row, "destination"),
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        file_pattern=row["file_pattern"],
        output_pattern=row["output_pattern"],
        archive_enabled=bool(row["archive_enabled"]),
        archive_path=row["archive_path"],
        delete_after_transfer=bool(row["delete_after_transfer"]),
        skip_processed_files=bool(row["skip_processed_files"]),
        max_concurrent_transfers=row["max_concurrent_transfers"],
        rclone_flags=row["rclone_flags"],
    )


def _column_values(config: TransferConfig) -> dict[str, Any]:
    values: dict[str, Any] = {
        "name": config.name,
        "source_type": config.source.type,
        "source_path": config.source.path,
        "destination_type": config.destination.type,
        "destination_path": config.destination.path,
        "file_pattern": config.file_pattern,
        "output_pattern": config.output_pattern,
        "archive_enabled": int(config.archive_enabled),
        "archive_path": config.archive_path,
        "delete_after_transfer": int(config.delete_after_transfer),
        "skip_processed_files": int(config.skip_processed_files),
        "max_concurrent_transfers": config.max_concurrent_transfers,
        "rclone_flags": config.rclone_flags,
    }
    for side, endpoint in (("source", config.source), ("destination", config.destination)):
        prefix = _SIDE_PREFIX[side]
        for name in _ENDPOINT_FIELDS:
            value = getattr(endpoint, name)
            values[prefix + name] = int(value) if isinstance(value, bool) else value
    return values


def _input_to_config(data: TransferConfigInput, *, config_id: int, user_id: int, now: datetime) -> TransferConfig:
    return TransferConfig(
        id=config_id,
        name=data.name.strip(),
        source=data.endpoint("source"),
        destination=data.endpoint("destination"),
        created_by=user_id,
        created_at=now,
        updated_at=now,
        file_pattern=data.file_pattern,
        output_pattern=data.output_pattern,
        archive_enabled=data.archive_enabled,
        archive_path=data.archive_path,
        delete_after_transfer=data.delete_after_transfer,
        skip_processed_files=data.skip_processed_files,
        max_concurrent_transfers=data.max_concurrent_transfers,
        rclone_flags=data.rclone_flags,
    )


def _audit_details(config: TransferConfig) -> dict[str, Any]:
    return {
        "name": config.name,
        "source_type": config.source.type,
        "dest_type": config.destination.type,
        "source_path": config.source.path,
        "dest_path": config.destination.path,
        "skip_processed_files": config.skip_processed_files,
        "archive_enabled": config.archive_enabled,
        "delete_after_transfer": config.delete_after_transfer,
    }


def _insert(connection: sqlite3.Connection, config: TransferConfig) -> int:
    values = _column_values(config)
    values["created_by"] = config.created_by
    values["created_at"] = config.created_at.isoformat()
    values["updated_at"] = config.updated_at.isoformat()
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cursor = connection.execute(
        f"INSERT INTO transfer_configs ({columns}) VALUES ({placeholders})",
        list(values.values()),
    )
    return int(cursor.lastrowid)


# -------------------------
# Public API used by routes
# -------------------------

def list_configs(user: User) -> list[TransferConfig]:
    with get_connection() as connection:
        if user.is_admin:
            rows = connection.execute("SELECT * FROM transfer_configs ORDER BY name COLLATE NOCASE").fetchall()
        else:
            rows = connection.execute(
                "SELECT * FROM transfer_configs WHERE created_by = ? ORDER BY name COLLATE NOCASE",
                (user.id,),
            ).fetchall()
    return [_row_to_config(r) for r in rows]


def get_config(config_id: int) -> TransferConfig | None:
    with get_connection() as connection:
        row = connection.execute("SELECT * FROM transfer_configs WHERE id = ?", (config_id,)).fetchone()
    return _row_to_config(row) if row else None


def get_configs_by_ids(config_ids: list[int]) -> dict[int, TransferConfig]:
    ids = sorted({int(i) for i in config_ids if i})
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    with get_connection() as connection:
        rows = connection.execute(
            f"SELECT * FROM transfer_configs WHERE id IN ({placeholders})",
            ids,
        ).fetchall()
    return {r["id"]: _row_to_config(r) for r in rows}


def get_config_for_user(config_id: int, user: User, action: str = "access") -> TransferConfig:
    config = get_config(config_id)
    if not config:
        raise NotFoundError("Config not found")
    if config.created_by != user.id and not user.is_admin:
        raise PermissionDeniedError(f"You do not have permission to {action} this config")
    return config


def create_config(data: TransferConfigInput, user: User) -> TransferConfig:
    now = datetime.now(tz=timezone.utc)
    config = _input_to_config(data, config_id=0, user_id=user.id, now=now)
    with get_connection() as connection:
        config.id = _insert(connection, config)
        audit_log.record(
            connection,
            action="create",
            entity_type="config",
            entity_id=config.id,
            user_id=user.id,
            details=_audit_details(config),
        )
    logger.info("Config %s created by user %s", config.id, user.id)
    return config


def update_config(config_id: int, data: TransferConfigInput, user: User) -> TransferConfig:
    existing = get_config_for_user(config_id, user, "edit")
    now = datetime.now(tz=timezone.utc)
    config = _input_to_config(data, config_id=existing.id, user_id=existing.created_by, now=now)
    config.created_at = existing.created_at

    values = _column_values(config)
    values["updated_at"] = now.isoformat()
    assignments = ", ".join(f"{k} = ?" for k in values)
    with get_connection() as connection:
        connection.execute(
            f"UPDATE transfer_configs SET {assignments} WHERE id = ?",
            [*values.values(), config_id],
        )
        audit_log.record(
            connection,
            action="update",
            entity_type="config",
            entity_id=config_id,
            user_id=user.id,
            details=_audit_details(config),
        )

    notification_store.create_config_notification(
        user_id=config.created_by,
        config_id=config.id,
        title="Configuration updated",
        message=f'Transfer config "{config.name}" was updated.',
    )
    logger.info("Config %s updated by user %s", config_id, user.id)
    return config


def count_jobs_using(connection: sqlite3.Connection, config_id: int) -> int:
    row = connection.execute(
        """
        SELECT COUNT(*) FROM jobs
        WHERE config_id = ? OR (',' || config_ids || ',') LIKE ?
        """,
        (config_id, f"%,{config_id},%"),
    ).fetchone()
    return int(row[0])


def delete_config(config_id: int, user: User) -> None:
    config = get_config_for_user(config_id, user, "delete")
    with get_connection() as connection:
        if count_jobs_using(connection, config.id):
            raise ConfigInUseError("Config is in use by jobs and cannot be deleted")
        audit_log.record(
            connection,
            action="delete",
            entity_type="config",
            entity_id=config.id,
            user_id=user.id,
            details=_audit_details(config),
        )
        connection.execute("DELETE FROM transfer_configs WHERE id = ?", (config.id,))
    logger.info("Config %s deleted by user %s", config_id, user.id)


def duplicate_config(config_id: int, user: User) -> TransferConfig:
    original = get_config_for_user(config_id, user, "duplicate")
    now = datetime.now(tz=timezone.utc)
    copy = TransferConfig(
        **{
            **original.__dict__,
            "id": 0,
            "name": f"{original.name} - Copy",
            "created_by": user.id,
            "created_at": now,
            "updated_at": now,
        }
    )
    with get_connection() as connection:
        copy.id = _insert(connection, copy)
        audit_log.record(
            connection,
            action="duplicate",
            entity_type="config",
            entity_id=copy.id,
            user_id=user.id,
            details={"original_config_id": original.id, **_audit_details(copy)},
        )
    return copy


def form_values(config: TransferConfig) -> dict[str, Any]:
    """Flatten a config into the field names the config form uses."""
    values = _column_values(config)
    for key in BOOL_FIELDS:
        values[key] = bool(values[key])
    return values


def endpoint_from_form(form: Mapping[str, Any], side: str) -> Endpoint:
    """Build one side of a config from raw form data, without saving it."""
    if side not in _SIDE_PREFIX:
        raise ValueError(f"Unknown side '{side}'")
    prefix = _SIDE_PREFIX[side]

    def text(key: str) -> str:
        return str(form.get(key) or "").strip()

    try:
        port = int(text(prefix + "port") or 22)
    except ValueError:
        port = 22
    return Endpoint(
        type=text(f"{side}_type"),
        path=text(f"{side}_path"),
        host=text(prefix + "host"),
        port=port,
        user=text(prefix + "user"),
        key_file=text(prefix + "key_file"),
        bucket=text(prefix + "bucket"),
        region=text(prefix + "region"),
        access_key=text(prefix + "access_key"),
        endpoint=text(prefix + "endpoint"),
        share=text(prefix + "share"),
        domain=text(prefix + "domain"),
        passive_mode=text(prefix + "passive_mode").lower() in ("on", "true", "1", "yes"),
        password=str(form.get(prefix + "password") or ""),
        secret_key=str(form.get(prefix + "secret_key") or ""),
    )
