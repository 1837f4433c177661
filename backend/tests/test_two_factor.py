from __future__ import annotations

import base64
import re

from mftconsole.services import two_factor

# RFC 6238 appendix B secret ("12345678901234567890") in base32.
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def test_generate_code_matches_rfc_vectors() -> None:
    assert two_factor.generate_code(RFC_SECRET, for_time=59) == "287082"
    assert two_factor.generate_code(RFC_SECRET, for_time=1111111109) == "081804"
    assert two_factor.generate_code(RFC_SECRET, for_time=1234567890) == "005924"


def test_verify_code_accepts_one_step_of_drift() -> None:
    assert two_factor.verify_code(RFC_SECRET, "287082", for_time=59)
    assert two_factor.verify_code(RFC_SECRET, "287082", for_time=59 + 30)
    assert two_factor.verify_code(RFC_SECRET, "287 082", for_time=59)
    assert not two_factor.verify_code(RFC_SECRET, "287082", for_time=59 + 90)


def test_verify_code_rejects_malformed_input() -> None:
    assert not two_factor.verify_code(None, "287082")
    assert not two_factor.verify_code(RFC_SECRET, "abcdef")
    assert not two_factor.verify_code(RFC_SECRET, "12345")
    assert not two_factor.verify_code(RFC_SECRET, "\u00b2" * 6, for_time=59)
    assert not two_factor.verify_code("not base32!", "123456")


def test_generate_secret_is_unpadded_base32() -> None:
    secret = two_factor.generate_secret()
    assert len(secret) == 32
    assert re.fullmatch(r"[A-Z2-7]+", secret)
    assert two_factor.generate_secret() != secret


def test_provisioning_uri() -> None:
    uri = two_factor.provisioning_uri("ABC234", "ops@example.com")
    assert uri.startswith("otpauth://totp/MFT%20Console%3Aops%40example.com?")
    assert "secret=ABC234" in uri
    assert "issuer=MFT%20Console" in uri
    assert "digits=6" in uri and "period=30" in uri


def test_qr_code_is_inline_svg() -> None:
    data_uri = two_factor.qr_code_data_uri("otpauth://totp/x?secret=ABC234")
    prefix = "data:image/svg+xml;base64,"
    assert data_uri.startswith(prefix)
    assert b"svg" in base64.b64decode(data_uri[len(prefix):])


def test_backup_codes_are_single_use() -> None:
    plain, hashed = two_factor.generate_backup_codes()
    assert len(plain) == two_factor.BACKUP_CODE_COUNT
    assert all(re.fullmatch(r"[0-9a-f]{8}", code) for code in plain)
    assert len(hashed.split(",")) == two_factor.BACKUP_CODE_COUNT

    assert two_factor.validate_backup_code(plain[0], hashed)
    assert two_factor.validate_backup_code(plain[0].upper(), hashed)
    assert not two_factor.validate_backup_code("", hashed)
    assert not two_factor.validate_backup_code("deadbeef", None)

    remaining = two_factor.remove_backup_code(plain[0], hashed)
    assert len(remaining.split(",")) == two_factor.BACKUP_CODE_COUNT - 1
    assert not two_factor.validate_backup_code(plain[0], remaining)
    assert two_factor.validate_backup_code(plain[1], remaining)
