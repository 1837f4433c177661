from __future__ import annotations

from datetime import datetime, timezone

from mftconsole.models.transfer_config import PROVIDER_TYPES

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_bytes(value: int | None) -> str:
    size = float(value or 0)
    if size < 1024:
        return f"{int(size)} B"
    unit = 0
    while size >= 1024 and unit < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {_BYTE_UNITS[unit]}"


def format_duration(start: datetime | None, end: datetime | None) -> str:
    if start is None:
        return "-"
    if end is None:
        return "Running"
    seconds = max(0, int((_as_utc(end) - _as_utc(start)).total_seconds()))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_datetime(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def time_ago(value: datetime | None, now: datetime | None = None) -> str:
    if value is None:
        return "-"
    now = _as_utc(now or datetime.now(tz=timezone.utc))
    seconds = int((now - _as_utc(value)).total_seconds())
    if seconds < 60:
        return "just now"
    for unit_seconds, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds:
            n = seconds // unit_seconds
            return f"{n} {unit}{'' if n == 1 else 's'} ago"
    return "just now"


_STATUS_CLASSES = {
    "completed": "badge-success",
    "success": "badge-success",
    "failed": "badge-error",
    "failure": "badge-error",
    "running": "badge-info",
    "pending": "badge-warning",
}


def status_class(status: str | None) -> str:
    return _STATUS_CLASSES.get((status or "").lower(), "badge-neutral")


def provider_label(kind: str | None) -> str:
    return PROVIDER_TYPES.get((kind or "").lower(), kind or "-")
