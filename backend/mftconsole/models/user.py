from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    id: int
    email: str
    password_hash: str
    is_admin: bool
    active: bool
    theme: str
    two_factor_enabled: bool
    two_factor_secret: str | None
    backup_codes: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def backup_code_count(self) -> int:
        if not self.backup_codes:
            return 0
        return len([c for c in self.backup_codes.split(",") if c])
