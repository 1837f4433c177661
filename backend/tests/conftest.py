from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from mftconsole.core.config import get_settings
from mftconsole.main import create_app
from mftconsole.models.user import User
from mftconsole.services import config_store, job_store, scheduler_client, users

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"
ENGINE_TOKEN = "engine-secret"


@pytest.fixture(autouse=True)
def settings_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MFT_DB_PATH", str(tmp_path / "console.db"))
    monkeypatch.setenv("MFT_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MFT_LOG_FILE_ENABLE", "0")
    monkeypatch.setenv("MFT_SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("MFT_ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("MFT_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("MFT_ENGINE_TOKEN", ENGINE_TOKEN)
    monkeypatch.setenv("MFT_RCLONE_PATH", "rclone")
    monkeypatch.delenv("MFT_SCHEDULER_URL", raising=False)
    monkeypatch.delenv("MFT_SCHEDULER_TOKEN", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture
def admin(client) -> User:
    user = users.get_user_by_email(ADMIN_EMAIL)
    assert user is not None
    return user


@pytest.fixture
def other_user(client) -> User:
    return users.create_user("bob@example.com", "bob-pass")


def login(client: TestClient, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> None:
    response = client.post("/login", data={"email": email, "password": password}, follow_redirects=False)
    assert response.status_code == 303, response.text
    assert response.headers["location"] == "/dashboard"


def logout(client: TestClient) -> None:
    client.post("/logout", follow_redirects=False)


@pytest.fixture
def admin_client(client, admin):
    login(client)
    return client


def make_config(user: User, name: str = "Inbox to archive", **overrides):
    fields = {
        "name": name,
        "source_type": "local",
        "source_path": "/data/in",
        "destination_type": "local",
        "destination_path": "/data/out",
    }
    fields.update(overrides)
    return config_store.create_config(config_store.TransferConfigInput(**fields), user)


def make_job(user: User, config_ids: list[int], name: str = "Nightly", **overrides):
    fields = {"name": name, "config_ids": config_ids, "schedule": "0 2 * * *"}
    fields.update(overrides)
    return job_store.create_job(job_store.JobInput(**fields), user)


class FakeScheduler:
    """Answers scheduler calls in-process and records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 202
        self.payload: dict = {"status": "accepted"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]


@pytest.fixture
def scheduler(monkeypatch) -> FakeScheduler:
    fake = FakeScheduler()
    monkeypatch.setenv("MFT_SCHEDULER_URL", "http://scheduler.test")
    monkeypatch.setenv("MFT_SCHEDULER_TOKEN", "sched-token")
    get_settings.cache_clear()
    monkeypatch.setattr(scheduler_client, "transport", httpx.MockTransport(fake.handler))
    return fake
