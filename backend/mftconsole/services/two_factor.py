"""TOTP (RFC 6238) secrets, codes and backup codes for two-factor login.

Secrets are base32 strings without padding. Codes are 6 digits over a 30
second step and are accepted one step either side of the current time.
Backup codes are 8 hex characters, shown once and stored only as hashes.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import io
import secrets
import struct
import time
from urllib.parse import quote, urlencode

import qrcode
import qrcode.image.svg
from werkzeug.security import check_password_hash, generate_password_hash

ISSUER_NAME = "MFT Console"
SECRET_SIZE = 20
TOTP_DIGITS = 6
TOTP_STEP_SECONDS = 30
TOTP_WINDOW = 1
BACKUP_CODE_COUNT = 8
BACKUP_CODE_LENGTH = 8


def generate_secret(length: int = SECRET_SIZE) -> str:
    raw = secrets.token_bytes(length)
    return base64.b32encode(raw).decode("ascii").rstrip("=").upper()


def _normalize_base32(secret: str) -> bytes:
    secret = secret.replace(" ", "").upper()
    padding = "=" * ((8 - len(secret) % 8) % 8)
    return base64.b32decode(secret + padding, casefold=True)


def _totp_at(secret_bytes: bytes, counter: int, digits: int = TOTP_DIGITS) -> str:
    message = struct.pack(">Q", counter)
    digest = hmac.new(secret_bytes, message, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    truncated = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
    return f"{truncated % (10 ** digits):0{digits}d}"


def generate_code(secret: str, for_time: float | None = None) -> str:
    if for_time is None:
        for_time = time.time()
    return _totp_at(_normalize_base32(secret), int(for_time // TOTP_STEP_SECONDS))


def verify_code(secret: str | None, code: str, *, for_time: float | None = None, window: int = TOTP_WINDOW) -> bool:
    if not secret:
        return False
    code = (code or "").replace(" ", "").strip()
    if not (code.isascii() and code.isdigit()) or len(code) != TOTP_DIGITS:
        return False
    try:
        secret_bytes = _normalize_base32(secret)
    except (ValueError, TypeError):
        return False
    if for_time is None:
        for_time = time.time()
    now_counter = int(for_time // TOTP_STEP_SECONDS)
    for offset in range(-window, window + 1):
        if hmac.compare_digest(_totp_at(secret_bytes, now_counter + offset), code):
            return True
    return False


def provisioning_uri(secret: str, account: str, issuer: str = ISSUER_NAME) -> str:
    label = quote(f"{issuer}:{account}")
    params = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": "SHA1",
            "digits": TOTP_DIGITS,
            "period": TOTP_STEP_SECONDS,
        },
        quote_via=quote,
    )
    return f"otpauth://totp/{label}?{params}"


def qr_code_data_uri(otpauth_uri: str) -> str:
    qr = qrcode.QRCode(box_size=8, border=2)
    qr.add_data(otpauth_uri)
    qr.make(fit=True)
    img = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    img.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


# -------------------------
# Backup codes
# -------------------------

def _normalize_backup_code(code: str) -> str:
    return (code or "").replace(" ", "").replace("-", "").strip().lower()


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> tuple[list[str], str]:
    """Return (plain codes for display, comma-joined hashes for storage)."""
    plain = [secrets.token_hex(BACKUP_CODE_LENGTH // 2) for _ in range(count)]
    hashed = [generate_password_hash(code) for code in plain]
    return plain, ",".join(hashed)


def _split_hashes(stored: str | None) -> list[str]:
    return [h for h in (stored or "").split(",") if h]


def validate_backup_code(code: str, stored_hashes: str | None) -> bool:
    code = _normalize_backup_code(code)
    if not code:
        return False
    return any(check_password_hash(h, code) for h in _split_hashes(stored_hashes))


def remove_backup_code(code: str, stored_hashes: str | None) -> str:
    code = _normalize_backup_code(code)
    remaining = [h for h in _split_hashes(stored_hashes) if not check_password_hash(h, code)]
    return ",".join(remaining)
