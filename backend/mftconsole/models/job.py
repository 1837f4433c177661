from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

RUN_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


@dataclass
class Job:
    id: int
    name: str
    config_ids: list[int]
    schedule: str
    enabled: bool
    created_by: int
    created_at: datetime
    updated_at: datetime
    last_run: datetime | None = None
    next_run: datetime | None = None
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_secret: str = ""
    webhook_headers: str = ""
    notify_on_success: bool = True
    notify_on_failure: bool = True

    @property
    def config_id(self) -> int:
        return self.config_ids[0] if self.config_ids else 0


@dataclass
class JobHistory:
    id: int
    job_id: int
    config_id: int
    start_time: datetime
    end_time: datetime | None
    status: str
    bytes_transferred: int = 0
    files_transferred: int = 0
    error_message: str = ""
    # Joined for display.
    job_name: str = ""
    config_name: str = ""

    @property
    def is_running(self) -> bool:
        return self.status == "running" and self.end_time is None
