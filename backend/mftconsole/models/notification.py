from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

JOB_START = "job_start"
JOB_COMPLETE = "job_complete"
JOB_FAIL = "job_fail"
CONFIG_UPDATE = "config_update"
SYSTEM_ALERT = "system_alert"


@dataclass
class UserNotification:
    id: int
    user_id: int
    type: str
    title: str
    message: str
    link: str
    job_id: int | None
    job_run_id: int | None
    config_id: int | None
    is_read: bool
    created_at: datetime
