from __future__ import annotations

import re

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, login, logout

from mftconsole.services import two_factor, users


def _enable_two_factor(client) -> tuple[str, list[str]]:
    page = client.get("/profile/2fa/setup")
    assert page.status_code == 200
    secret = re.search(r'class="secret">([A-Z2-7]+)<', page.text).group(1)
    codes = re.findall(r"<li><code>([0-9a-f]{8})</code></li>", page.text)
    assert len(codes) == two_factor.BACKUP_CODE_COUNT

    response = client.post(
        "/profile/2fa/verify",
        data={"code": two_factor.generate_code(secret)},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/profile?message=2FA+enabled+successfully"
    return secret, codes


def test_pages_redirect_to_login_when_signed_out(client) -> None:
    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/login"

    assert client.get("/", follow_redirects=False).headers["location"] == "/login"


def test_api_and_htmx_requests_get_401_when_signed_out(client) -> None:
    response = client.get("/api/configs")
    assert response.status_code == 401
    assert response.json() == {"detail": "Not authenticated"}

    htmx = client.get("/notifications/count", headers={"HX-Request": "true"})
    assert htmx.status_code == 401
    assert htmx.headers["HX-Redirect"] == "/login"


def test_login_rejects_bad_password(client) -> None:
    response = client.post("/login", data={"email": ADMIN_EMAIL, "password": "nope"})
    assert response.status_code == 401
    assert "Invalid email or password" in response.text


def test_login_and_logout(client) -> None:
    login(client)
    assert client.get("/dashboard").status_code == 200
    assert client.get("/", follow_redirects=False).headers["location"] == "/dashboard"

    logout(client)
    assert client.get("/dashboard", follow_redirects=False).status_code == 303


def test_enable_two_factor_then_sign_in_with_totp(client, admin) -> None:
    login(client)
    secret, _ = _enable_two_factor(client)
    assert users.get_user(admin.id).two_factor_enabled

    logout(client)
    response = client.post(
        "/login", data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}, follow_redirects=False
    )
    assert response.headers["location"] == "/login/verify"
    # Password alone does not sign in.
    assert client.get("/dashboard", follow_redirects=False).status_code == 303

    bad = client.post("/login/verify", data={"code": "000000"})
    assert bad.status_code == 400
    assert "Invalid verification code. Please try again." in bad.text

    good = client.post("/login/verify", data={"code": two_factor.generate_code(secret)}, follow_redirects=False)
    assert good.status_code == 303
    assert good.headers["location"] == "/dashboard"
    assert client.get("/dashboard").status_code == 200


def test_setup_rejects_wrong_code_and_hides_codes(client, admin) -> None:
    login(client)
    client.get("/profile/2fa/setup")
    response = client.post("/profile/2fa/verify", data={"code": "12"})
    assert response.status_code == 400
    assert "Invalid verification code" in response.text
    assert "[BACKUP CODE ALREADY GENERATED]" in response.text
    assert not users.get_user(admin.id).two_factor_enabled


def test_setup_verify_without_setup_session(client) -> None:
    login(client)
    response = client.post("/profile/2fa/verify", data={"code": "123456"})
    assert response.status_code == 400
    assert response.text == "Setup session expired"


def test_backup_code_signs_in_once(client, admin) -> None:
    login(client)
    _, codes = _enable_two_factor(client)
    logout(client)

    client.post("/login", data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    response = client.post("/login/backup-code", data={"code": codes[0]}, follow_redirects=False)
    assert response.status_code == 303
    assert users.get_user(admin.id).backup_code_count == two_factor.BACKUP_CODE_COUNT - 1

    logout(client)
    client.post("/login", data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    reused = client.post("/login/backup-code", data={"code": codes[0]})
    assert reused.status_code == 400
    assert "Invalid backup code. Please try again." in reused.text


def test_second_step_without_pending_login_goes_back_to_login(client) -> None:
    for path in ("/login/verify", "/login/backup-code"):
        assert client.get(path, follow_redirects=False).headers["location"] == "/login"
        assert client.post(path, data={"code": "123456"}, follow_redirects=False).headers["location"] == "/login"


def test_disable_two_factor(client, admin) -> None:
    login(client)
    _enable_two_factor(client)

    missing = client.post("/profile/2fa/disable", data={})
    assert missing.status_code == 400
    assert "Current password is required" in missing.text

    wrong = client.post("/profile/2fa/disable", data={"current_password": "wrong"})
    assert wrong.status_code == 400
    assert "Current password is incorrect" in wrong.text

    ok = client.post("/profile/2fa/disable", data={"current_password": ADMIN_PASSWORD})
    assert ok.status_code == 200
    assert "Two-factor authentication has been disabled" in ok.text
    refreshed = users.get_user(admin.id)
    assert not refreshed.two_factor_enabled
    assert refreshed.two_factor_secret is None

    again = client.post("/profile/2fa/disable", data={"current_password": ADMIN_PASSWORD})
    assert again.status_code == 400
    assert "alert-warning" in again.text


def test_regenerated_backup_codes_are_shown_once(client, admin) -> None:
    login(client)
    _enable_two_factor(client)

    response = client.post("/profile/2fa/regenerate-codes", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/profile/2fa/backup-codes"

    first = client.get("/profile/2fa/backup-codes")
    assert "New backup codes generated successfully" in first.text
    shown = re.findall(r"<li><code>([0-9a-f]{8})</code></li>", first.text)
    assert len(shown) == two_factor.BACKUP_CODE_COUNT
    stored = users.get_user(admin.id).backup_codes
    assert all(two_factor.validate_backup_code(code, stored) for code in shown)

    second = client.get("/profile/2fa/backup-codes")
    assert "[REDACTED FOR SECURITY]" in second.text
    assert not re.findall(r"<li><code>([0-9a-f]{8})</code></li>", second.text)


def test_theme_preference(client, admin) -> None:
    login(client)

    response = client.post("/profile/theme", data={"theme": "dark"}, headers={"Accept": "application/json"})
    assert response.json() == {"theme": "dark"}
    assert users.get_user(admin.id).theme == "dark"
    assert 'data-theme="dark"' in client.get("/profile").text

    invalid = client.post("/profile/theme", data={"theme": "neon"})
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Unknown theme 'neon'"}

    form_post = client.post("/profile/theme", data={"theme": "light"}, follow_redirects=False)
    assert form_post.status_code == 303
    assert form_post.headers["location"] == "/profile"
