from __future__ import annotations

import os
import subprocess

import pytest

from mftconsole.models.transfer_config import Endpoint
from mftconsole.services import connection_tester
from mftconsole.services.connection_tester import run_connection_test


class FakeRclone:
    """Stands in for subprocess.run; answers each call from a queue of (returncode, stderr)."""

    def __init__(self, *results) -> None:
        self.results = list(results) or [(0, "")]
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        config_path = args[args.index("--config") + 1]
        self.config_existed = os.path.exists(os.path.dirname(config_path))
        code, stderr = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return subprocess.CompletedProcess(args, code, stdout="", stderr=stderr)


@pytest.fixture
def rclone(monkeypatch):
    def install(*results) -> FakeRclone:
        fake = FakeRclone(*results)
        monkeypatch.setattr(connection_tester.subprocess, "run", fake)
        return fake

    return install


def test_local_endpoint_only_lists(rclone) -> None:
    fake = rclone()
    result = run_connection_test(Endpoint(type="local", path="/srv/data"), "source")

    assert result.success
    assert result.message == "Connection test successful!"
    [args] = fake.calls
    assert args[0] == "rclone"
    assert "testSource:/srv/data" in args
    # The throwaway config directory is gone afterwards.
    config_path = args[args.index("--config") + 1]
    assert fake.config_existed
    assert not os.path.exists(os.path.dirname(config_path))


def test_sftp_creates_remote_then_lists(rclone) -> None:
    fake = rclone()
    endpoint = Endpoint(type="sftp", path="/upload", host="sftp.test", port=2222, user="mft", password="pw")
    result = run_connection_test(endpoint, "destination")

    assert result.success
    create, lsd = fake.calls
    assert create[1:5] == ["config", "create", "testDest", "sftp"]
    assert "--non-interactive" in create
    tail = create[create.index("--non-interactive") + 1:]
    assert tail == ["host", "sftp.test", "user", "mft", "port", "2222", "pass", "pw"]
    assert "testDest:/upload" in lsd


def test_hetzner_is_tested_as_sftp(rclone) -> None:
    fake = rclone()
    run_connection_test(Endpoint(type="hetzner", path="/", host="u1.your-storagebox.de", user="u1"), "source")
    assert fake.calls[0][4] == "sftp"


def test_remote_creation_failure(rclone) -> None:
    rclone((1, "bad option"))
    result = run_connection_test(Endpoint(type="smb", path="/share", host="nas"), "source")
    assert not result.success
    assert result.message.startswith("Failed to create temp config section: exit status 1")


@pytest.mark.parametrize(
    "stderr, message",
    [
        ("dial tcp 10.0.0.1:22: connect: connection refused", "Connection test failed: Connection refused by host."),
        ("lookup nowhere: no such host", "Connection test failed: Hostname not found or DNS resolution error."),
        ("ssh: handshake failed: Authentication failed", "Connection test failed: Authentication failed (check credentials/permissions)."),
        ("error listing: directory not found", "Connection test failed: Directory/Path not found (check path)."),
        ("Couldn't find section in config", "Connection test failed: Invalid parameters provided for provider type."),
        ("something odd\n", "Connection test failed: exit status 3. Stderr: something odd"),
    ],
)
def test_listing_failures_are_classified(rclone, stderr, message) -> None:
    rclone((0, ""), (3, stderr))
    result = run_connection_test(Endpoint(type="ftp", path="/", host="ftp.test", user="u"), "source")
    assert not result.success
    assert result.message == message


def test_timeout(monkeypatch) -> None:
    def slow(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr(connection_tester.subprocess, "run", slow)
    result = run_connection_test(Endpoint(type="local", path="/"), "source")
    assert result.message == "Connection test timed out after 30 seconds."


def test_missing_rclone_binary(monkeypatch) -> None:
    def missing(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(connection_tester.subprocess, "run", missing)
    result = run_connection_test(Endpoint(type="local", path="/"), "source")
    assert result.message == "rclone executable not found at 'rclone'. Install rclone or set MFT_RCLONE_PATH."


def test_rejects_unknown_side_and_provider() -> None:
    assert run_connection_test(Endpoint(type="local", path="/"), "middle").message == "Invalid provider type specified"
    result = run_connection_test(Endpoint(type="dropbox", path="/"), "source")
    assert not result.success
    assert "not yet supported" in result.message


def test_provider_args() -> None:
    wasabi = connection_tester._provider_args("wasabi", Endpoint(type="wasabi", path="/", access_key="AK"))
    assert wasabi[:4] == ["provider", "Wasabi", "env_auth", "false"]
    assert wasabi[-2:] == ["endpoint", "s3.wasabisys.com"]

    ftp = connection_tester._provider_args("ftp", Endpoint(type="ftp", path="/", host="h", passive_mode=False))
    assert ftp[-4:] == ["passive_mode", "false", "explicit_tls", "true"]

    nextcloud = connection_tester._provider_args("nextcloud", Endpoint(type="nextcloud", path="/", endpoint="https://cloud.test"))
    assert nextcloud[:4] == ["url", "https://cloud.test", "vendor", "nextcloud"]

    assert connection_tester._provider_args("gdrive", Endpoint(type="gdrive", path="/")) == ["scope", "drive"]


def test_bucket_is_prefixed_to_remote_path() -> None:
    assert connection_tester._remote_path(Endpoint(type="s3", path="/incoming/", bucket="landing")) == "landing/incoming"
    assert connection_tester._remote_path(Endpoint(type="s3", path="", bucket="landing")) == "landing"
    assert connection_tester._remote_path(Endpoint(type="sftp", path="/incoming", bucket="ignored")) == "/incoming"
