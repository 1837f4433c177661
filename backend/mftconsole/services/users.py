from __future__ import annotations

import logging
import re
import sqlite3
from datetime import datetime, timezone

from werkzeug.security import check_password_hash, generate_password_hash

from mftconsole.core.config import Settings
from mftconsole.db.session import get_connection
from mftconsole.models.user import User
from mftconsole.services import audit_log
from mftconsole.services.errors import FormValidationError, NotFoundError, UserDeletionError

logger = logging.getLogger(__name__)

THEMES = ("light", "dark", "system")

PASSWORD_MIN_LENGTH = 8
_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile(r"[^a-zA-Z0-9]"), "Password must contain at least one special character"),
)
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_USER_COLUMNS = """
    id, email, password_hash, is_admin, active, theme, two_factor_enabled,
    two_factor_secret, backup_codes, created_at, updated_at
"""


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        is_admin=bool(row["is_admin"]),
        active=bool(row["active"]),
        theme=row["theme"] or "light",
        two_factor_enabled=bool(row["two_factor_enabled"]),
        two_factor_secret=row["two_factor_secret"],
        backup_codes=row["backup_codes"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def create_user(email: str, password: str, *, is_admin: bool = False) -> User:
    timestamp = datetime.now(tz=timezone.utc).isoformat()
    with get_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO users (email, password_hash, is_admin, active, theme, created_at, updated_at)
            VALUES (?, ?, ?, 1, 'light', ?, ?)
            """,
            (email.strip().lower(), generate_password_hash(password), int(is_admin), timestamp, timestamp),
        )
        user_id = cursor.lastrowid

    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user(user_id: int) -> User | None:
    with get_connection() as connection:
        row = connection.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def get_user_by_email(email: str) -> User | None:
    with get_connection() as connection:
        row = connection.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?",
            (email.strip().lower(),),
        ).fetchone()
    return _row_to_user(row) if row else None


def list_active_user_ids() -> list[int]:
    with get_connection() as connection:
        rows = connection.execute("SELECT id FROM users WHERE active = 1 ORDER BY id").fetchall()
    return [r["id"] for r in rows]


def authenticate(email: str, password: str) -> User | None:
    user = get_user_by_email(email)
    if not user or not user.active:
        return None
    if not check_password_hash(user.password_hash, password):
        return None
    return user


def check_password(user: User, password: str) -> bool:
    return bool(password) and check_password_hash(user.password_hash, password)


def ensure_admin(settings: Settings) -> None:
    """Create the bootstrap admin when the users table is empty."""
    with get_connection() as connection:
        count = connection.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    if count:
        return
    create_user(settings.admin_email, settings.admin_password, is_admin=True)
    logger.info("Created bootstrap admin %s", settings.admin_email)


def _update(user_id: int, **fields: object) -> None:
    assignments = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values())
    values.append(datetime.now(tz=timezone.utc).isoformat())
    values.append(user_id)
    with get_connection() as connection:
        connection.execute(f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?", values)


def set_theme(user_id: int, theme: str) -> None:
    if theme not in THEMES:
        raise ValueError(f"Unknown theme '{theme}'")
    _update(user_id, theme=theme)


def enable_two_factor(user_id: int, secret: str, hashed_backup_codes: str) -> None:
    _update(user_id, two_factor_enabled=1, two_factor_secret=secret, backup_codes=hashed_backup_codes)


def disable_two_factor(user_id: int) -> None:
    _update(user_id, two_factor_enabled=0, two_factor_secret=None, backup_codes=None)


def set_backup_codes(user_id: int, hashed_backup_codes: str) -> None:
    _update(user_id, backup_codes=hashed_backup_codes)


# -------------------------
# Passwords
# -------------------------

def validate_password(password: str) -> str | None:
    """Return the first password policy violation, else None."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(password):
            return message
    return None


def change_password(user: User, current_password: str, new_password: str, confirm_password: str) -> None:
    if new_password != confirm_password:
        raise FormValidationError({"confirm_password": "New password and confirmation do not match"})
    if not check_password(user, current_password):
        raise FormValidationError({"current_password": "Current password is incorrect"})
    problem = validate_password(new_password)
    if problem:
        raise FormValidationError({"new_password": problem})
    if check_password_hash(user.password_hash, new_password):
        raise FormValidationError({"new_password": "New password must be different from the current password"})

    _update(user.id, password_hash=generate_password_hash(new_password))
    logger.info("Password changed for user %s", user.id)


# -------------------------
# Administration
# -------------------------

def list_users() -> list[User]:
    with get_connection() as connection:
        rows = connection.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY email").fetchall()
    return [_row_to_user(r) for r in rows]


def register_user(email: str, password: str, *, is_admin: bool, created_by: User) -> User:
    email = (email or "").strip().lower()
    errors: dict[str, str] = {}
    if not _EMAIL.match(email):
        errors["email"] = "Enter a valid email address"
    elif get_user_by_email(email):
        errors["email"] = "Email already exists"
    problem = validate_password(password or "")
    if problem:
        errors["password"] = problem
    if errors:
        raise FormValidationError(errors)

    user = create_user(email, password, is_admin=is_admin)
    with get_connection() as connection:
        audit_log.record(
            connection,
            action="create",
            entity_type="user",
            entity_id=user.id,
            user_id=created_by.id,
            details={"email": user.email, "is_admin": user.is_admin},
        )
    logger.info("User %s created by admin %s", user.id, created_by.id)
    return user


def delete_user(user_id: int, acting_user: User) -> User:
    if user_id == acting_user.id:
        raise UserDeletionError("Cannot delete your own account")
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    with get_connection() as connection:
        owned = connection.execute(
            """
            SELECT (SELECT COUNT(*) FROM transfer_configs WHERE created_by = ?)
                 + (SELECT COUNT(*) FROM jobs WHERE created_by = ?)
            """,
            (user_id, user_id),
        ).fetchone()[0]
        if owned:
            raise UserDeletionError("User still owns transfer configs or jobs; delete them first")
        audit_log.record(
            connection,
            action="delete",
            entity_type="user",
            entity_id=user_id,
            user_id=acting_user.id,
            details={"email": user.email},
        )
        connection.execute("DELETE FROM users WHERE id = ?", (user_id,))
    logger.info("User %s deleted by admin %s", user_id, acting_user.id)
    return user
