from __future__ import annotations

import json

import pytest
from conftest import ADMIN_PASSWORD, login, make_config, make_job

from mftconsole.services import audit_log, history_store, users
from mftconsole.services.errors import FormValidationError

NEW_PASSWORD = "Str0ng!pass"


# -------------------------
# Access
# -------------------------

@pytest.mark.parametrize("path", ["/admin/users", "/admin/users/new", "/admin/tools", "/admin/export-jobs"])
def test_non_admins_are_refused(client, other_user, path) -> None:
    login(client, "bob@example.com", "bob-pass")
    response = client.get(path)
    assert response.status_code == 403
    assert "Administrator access required" in response.text


def test_admin_nav_links_only_for_admins(client, admin, other_user) -> None:
    login(client)
    assert 'href="/admin/users"' in client.get("/dashboard").text

    client.post("/logout")
    login(client, "bob@example.com", "bob-pass")
    assert 'href="/admin/users"' not in client.get("/dashboard").text


# -------------------------
# Users
# -------------------------

def test_create_user(admin_client, admin) -> None:
    response = admin_client.post(
        "/admin/users",
        data={"email": " Carol@Example.com ", "password": NEW_PASSWORD, "is_admin": "on"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/admin/users"

    carol = users.get_user_by_email("carol@example.com")
    assert carol is not None and carol.is_admin
    assert users.authenticate("carol@example.com", NEW_PASSWORD) is not None
    assert "carol@example.com" in admin_client.get("/admin/users").text

    [entry] = audit_log.list_entries("user")
    assert entry["action"] == "create"
    assert entry["user_id"] == admin.id


@pytest.mark.parametrize(
    ("email", "password", "field", "message"),
    [
        ("not-an-email", NEW_PASSWORD, "email", "Enter a valid email address"),
        ("admin@example.com", NEW_PASSWORD, "email", "Email already exists"),
        ("dave@example.com", "Sh0rt!", "password", "Password must be at least 8 characters long"),
        ("dave@example.com", "alllower1!", "password", "Password must contain at least one uppercase letter"),
        ("dave@example.com", "NoDigits!!", "password", "Password must contain at least one number"),
        ("dave@example.com", "NoSpecial12", "password", "Password must contain at least one special character"),
    ],
)
def test_create_user_validation(admin_client, email, password, field, message) -> None:
    response = admin_client.post("/admin/users", data={"email": email, "password": password})
    assert response.status_code == 400
    assert message in response.text
    with pytest.raises(FormValidationError) as excinfo:
        users.register_user(email, password, is_admin=False, created_by=users.get_user_by_email("admin@example.com"))
    assert excinfo.value.errors[field] == message


def test_delete_user(admin_client, other_user) -> None:
    response = admin_client.delete(f"/admin/users/{other_user.id}")
    assert response.status_code == 200
    assert response.json() == {"message": "User deleted successfully"}
    assert users.get_user(other_user.id) is None


@pytest.mark.parametrize(
    ("user_id", "status_code", "error"),
    [("abc", 400, "Invalid user ID"), ("%C2%B2", 400, "Invalid user ID"), ("9999", 404, "User not found")],
)
def test_delete_user_errors(admin_client, user_id, status_code, error) -> None:
    response = admin_client.delete(f"/admin/users/{user_id}")
    assert response.status_code == status_code
    assert response.json() == {"error": error}


def test_cannot_delete_self_or_owner(admin_client, admin, other_user) -> None:
    response = admin_client.delete(f"/admin/users/{admin.id}")
    assert response.status_code == 400
    assert response.json() == {"error": "Cannot delete your own account"}

    make_config(other_user)
    response = admin_client.delete(f"/admin/users/{other_user.id}")
    assert response.status_code == 400
    assert "still owns" in response.json()["error"]
    assert users.get_user(other_user.id) is not None


# -------------------------
# Tools
# -------------------------

def test_tools_page_shows_counts(admin_client, admin) -> None:
    make_job(admin, [make_config(admin).id])
    page = admin_client.get("/admin/tools")
    assert page.status_code == 200
    assert "Clear job history" in page.text
    assert "<dt>Jobs</dt><dd>1</dd>" in page.text


def test_export_configs(admin_client, admin) -> None:
    config = make_config(admin, "Exported")
    response = admin_client.get("/admin/export-configs")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="mftconsole_configs_')
    assert disposition.endswith('.json"')

    [exported] = json.loads(response.text)
    assert exported["id"] == config.id
    assert exported["name"] == "Exported"
    assert exported["source_path"] == "/data/in"


def test_export_jobs_leaves_out_webhook_secret(admin_client, admin) -> None:
    config = make_config(admin, "Exported")
    make_job(
        admin,
        [config.id],
        webhook_enabled=True,
        webhook_url="https://hooks.example.com/x",
        webhook_secret="s3cret",
    )
    response = admin_client.get("/admin/export-jobs")
    [exported] = response.json()
    assert exported["name"] == "Nightly"
    assert exported["config_names"] == ["Exported"]
    assert exported["webhook_url"] == "https://hooks.example.com/x"
    assert "webhook_secret" not in exported
    assert "s3cret" not in response.text


def test_clear_job_history(admin_client, admin) -> None:
    job = make_job(admin, [make_config(admin).id])
    history_store.open_run(job.id, config_id=job.config_ids[0])
    history_store.open_run(job.id, config_id=job.config_ids[0])

    response = admin_client.post("/admin/clear-job-history", headers={"Accept": "application/json"})
    assert response.json() == {"message": "Job history cleared successfully", "deleted": 2}
    assert history_store.count_runs(admin, "") == 0
    assert audit_log.list_entries("job_history")[0]["details"] == {"deleted": 2}

    redirect = admin_client.post("/admin/clear-job-history", follow_redirects=False)
    assert redirect.status_code == 303
    assert redirect.headers["location"] == "/admin/tools?message=Job+history+cleared+successfully"


# -------------------------
# Change password
# -------------------------

def test_change_password(admin_client) -> None:
    response = admin_client.post(
        "/change-password",
        data={"current_password": ADMIN_PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/profile?message=Password+updated+successfully"
    assert users.authenticate("admin@example.com", NEW_PASSWORD) is not None
    assert users.authenticate("admin@example.com", ADMIN_PASSWORD) is None


def test_change_password_over_htmx(admin_client) -> None:
    response = admin_client.post(
        "/change-password",
        data={"current_password": ADMIN_PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        headers={"HX-Request": "true"},
    )
    assert response.status_code == 200
    assert 'class="alert alert-success"' in response.text
    assert "Password updated successfully!" in response.text


@pytest.mark.parametrize(
    ("current", "new", "confirm", "message"),
    [
        (ADMIN_PASSWORD, NEW_PASSWORD, "Other!pass1", "New password and confirmation do not match"),
        ("wrong-pass", NEW_PASSWORD, NEW_PASSWORD, "Current password is incorrect"),
        (ADMIN_PASSWORD, "weak", "weak", "Password must be at least 8 characters long"),
    ],
)
def test_change_password_errors(admin_client, current, new, confirm, message) -> None:
    data = {"current_password": current, "new_password": new, "confirm_password": confirm}
    htmx = admin_client.post("/change-password", data=data, headers={"HX-Request": "true"})
    assert htmx.status_code == 400
    assert message in htmx.text

    page = admin_client.post("/change-password", data=data)
    assert page.status_code == 400
    assert message in page.text
    assert users.authenticate("admin@example.com", ADMIN_PASSWORD) is not None


def test_new_password_must_differ(admin, client) -> None:
    users.change_password(admin, ADMIN_PASSWORD, NEW_PASSWORD, NEW_PASSWORD)
    with pytest.raises(FormValidationError) as excinfo:
        users.change_password(users.get_user(admin.id), NEW_PASSWORD, NEW_PASSWORD, NEW_PASSWORD)
    assert excinfo.value.errors == {"new_password": "New password must be different from the current password"}
