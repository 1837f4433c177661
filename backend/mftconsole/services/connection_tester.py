from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from mftconsole.core.config import get_settings
from mftconsole.models.transfer_config import BUCKET_PROVIDERS, PROVIDER_TYPES, Endpoint

logger = logging.getLogger(__name__)

REMOTE_NAMES = {"source": "testSource", "destination": "testDest"}
WASABI_ENDPOINT = "s3.wasabisys.com"

_S3_PROVIDERS = {"s3": "AWS", "wasabi": "Wasabi", "minio": "Minio", "b2": "B2"}

# First matching stderr fragment wins.
_STDERR_MESSAGES = (
    (("connect: connection refused",), "Connection test failed: Connection refused by host."),
    (
        ("no such host", "name resolution error"),
        "Connection test failed: Hostname not found or DNS resolution error.",
    ),
    (
        ("authentication failed", "login incorrect", "permission denied"),
        "Connection test failed: Authentication failed (check credentials/permissions).",
    ),
    (("directory not found",), "Connection test failed: Directory/Path not found (check path)."),
    (("couldn't find section",), "Connection test failed: Invalid parameters provided for provider type."),
)


@dataclass
class ConnectionTestResult:
    success: bool
    message: str


def _pairs(*items: tuple[str, str | int | None]) -> list[str]:
    args: list[str] = []
    for key, value in items:
        if value in (None, ""):
            continue
        args.extend([key, str(value)])
    return args


def _provider_args(kind: str, endpoint: Endpoint) -> list[str]:
    """rclone ``config create`` key/value arguments for one provider type."""
    if kind == "sftp":
        return ["host", endpoint.host, "user", endpoint.user] + _pairs(
            ("port", endpoint.port or None),
            ("pass", endpoint.password),
            ("key_file", endpoint.key_file),
        )
    if kind in ("s3", "wasabi", "minio"):
        args = ["provider", _S3_PROVIDERS[kind], "env_auth", "false"] + _pairs(
            ("access_key_id", endpoint.access_key),
            ("secret_access_key", endpoint.secret_key),
            ("region", endpoint.region),
        )
        if kind == "wasabi":
            return args + ["endpoint", endpoint.endpoint or WASABI_ENDPOINT]
        return args + _pairs(("endpoint", endpoint.endpoint))
    if kind == "b2":
        return ["provider", "B2", "env_auth", "false"] + _pairs(
            ("account", endpoint.access_key),
            ("key", endpoint.secret_key),
            ("endpoint", endpoint.endpoint),
            ("region", endpoint.region),
        )
    if kind == "ftp":
        return (
            ["host", endpoint.host, "user", endpoint.user]
            + _pairs(("port", endpoint.port or None), ("pass", endpoint.password))
            + ["passive_mode", "true" if endpoint.passive_mode else "false", "explicit_tls", "true"]
        )
    if kind == "smb":
        return ["host", endpoint.host, "user", endpoint.user] + _pairs(
            ("port", endpoint.port or None),
            ("pass", endpoint.password),
            ("domain", endpoint.domain),
        )
    if kind in ("webdav", "nextcloud"):
        vendor = "nextcloud" if kind == "nextcloud" else "other"
        return ["url", endpoint.endpoint, "vendor", vendor, "user", endpoint.user] + _pairs(
            ("pass", endpoint.password)
        )
    if kind == "gdrive":
        logger.warning("Google Drive test may require a pre-existing token or manual auth")
        return ["scope", "drive"]
    if kind == "gphotos":
        logger.warning("Google Photos test may require a pre-existing token or manual auth")
        return []
    raise ValueError(kind)


def _remote_path(endpoint: Endpoint) -> str:
    if endpoint.type in BUCKET_PROVIDERS and endpoint.bucket:
        return f"{endpoint.bucket}/{endpoint.path.lstrip('/')}".rstrip("/")
    return endpoint.path


def _classify_failure(returncode: int, stderr: str) -> str:
    lowered = stderr.lower()
    for fragments, message in _STDERR_MESSAGES:
        if any(f in lowered for f in fragments):
            return message
    return f"Connection test failed: exit status {returncode}. Stderr: {stderr.strip()}"


def run_connection_test(endpoint: Endpoint, side: str) -> ConnectionTestResult:
    """Try to list ``endpoint`` through rclone with a throwaway config file."""
    if side not in REMOTE_NAMES:
        return ConnectionTestResult(False, "Invalid provider type specified")
    if endpoint.type not in PROVIDER_TYPES:
        return ConnectionTestResult(
            False, f"Provider type '{endpoint.type}' not yet supported for testing via 'rclone config create'"
        )

    settings = get_settings()
    rclone = settings.rclone_path
    timeout = settings.connection_test_timeout
    remote = REMOTE_NAMES[side]
    kind = "sftp" if endpoint.type == "hetzner" else endpoint.type

    temp_dir = tempfile.mkdtemp(prefix="mftconsole-rclone-test-")
    try:
        config_path = Path(temp_dir) / "rclone_test.conf"

        if kind == "local":
            config_path.write_text(f"[{remote}]\ntype = local\nnounc = true\n", encoding="utf-8")
            config_path.chmod(0o600)
        else:
            create_args = [
                rclone, "config", "create", remote, kind,
                "--config", str(config_path),
                "--non-interactive",
            ] + _provider_args(kind, endpoint)
            # Never log argument values; they may carry passwords.
            logger.info("Creating temporary rclone remote %s (%s)", remote, kind)
            created = subprocess.run(create_args, capture_output=True, text=True, timeout=timeout)
            if created.returncode != 0:
                output = (created.stdout or "") + (created.stderr or "")
                return ConnectionTestResult(
                    False,
                    f"Failed to create temp config section: exit status {created.returncode}\nOutput: {output.strip()}",
                )

        lsd_args = [
            rclone,
            "--config", str(config_path),
            "lsd", f"{remote}:{_remote_path(endpoint)}",
            "--low-level-retries", "1",
            "--retries", "1",
        ]
        logger.info("Listing %s:%s", remote, _remote_path(endpoint))
        listed = subprocess.run(lsd_args, capture_output=True, text=True, timeout=timeout)
        if listed.returncode != 0:
            logger.info("rclone lsd failed: %s", (listed.stderr or "").strip())
            return ConnectionTestResult(False, _classify_failure(listed.returncode, listed.stderr or ""))
        return ConnectionTestResult(True, "Connection test successful!")

    except subprocess.TimeoutExpired:
        return ConnectionTestResult(False, f"Connection test timed out after {timeout} seconds.")
    except FileNotFoundError:
        return ConnectionTestResult(
            False, f"rclone executable not found at '{rclone}'. Install rclone or set MFT_RCLONE_PATH."
        )
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
