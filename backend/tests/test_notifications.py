from __future__ import annotations

import pytest
from conftest import login

from mftconsole.models.notification import JOB_START, SYSTEM_ALERT
from mftconsole.services import notification_store


def _notify(user_id: int, title: str = "Heads up", **kwargs) -> int:
    return notification_store.create_notification(user_id=user_id, type=SYSTEM_ALERT, title=title, **kwargs)


def test_count_badge(admin_client, admin) -> None:
    empty = admin_client.get("/notifications/count")
    assert empty.status_code == 200
    assert 'class="badge badge-error hidden"' in empty.text

    _notify(admin.id)
    _notify(admin.id)
    assert ">2</span>" in admin_client.get("/notifications/count").text


def test_unread_count_is_rendered_in_page_header(admin_client, admin) -> None:
    for _ in range(120):
        _notify(admin.id)
    assert ">99+</span>" in admin_client.get("/dashboard").text


def test_mark_read(admin_client, admin) -> None:
    first = _notify(admin.id)
    _notify(admin.id)

    response = admin_client.post(f"/notifications/{first}/read")
    assert response.status_code == 200
    assert ">1</span>" in response.text
    assert notification_store.count_unread(admin.id) == 1

    invalid = admin_client.post("/notifications/abc/read")
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid notification ID"}


def test_mark_all_read(admin_client, admin) -> None:
    for _ in range(3):
        _notify(admin.id)
    response = admin_client.post("/notifications/mark-all-read")
    assert response.status_code == 200
    assert "hidden" in response.text
    assert notification_store.count_unread(admin.id) == 0


def test_users_cannot_touch_each_others_notifications(client, admin, other_user) -> None:
    theirs = _notify(admin.id, "Admin only")
    login(client, "bob@example.com", "bob-pass")

    client.post(f"/notifications/{theirs}/read")
    assert notification_store.count_unread(admin.id) == 1

    response = client.delete(f"/notifications/{theirs}")
    assert response.status_code == 404
    assert response.json() == {"error": "Notification not found"}
    assert "Admin only" not in client.get("/notifications/dropdown").text


def test_delete_notification(admin_client, admin) -> None:
    note = _notify(admin.id)
    response = admin_client.delete(f"/notifications/{note}")
    assert response.status_code == 200
    assert response.json() == {"message": "Notification deleted"}
    assert notification_store.count_for_user(admin.id) == 0

    assert admin_client.delete("/notifications/x1").status_code == 400


def test_non_ascii_digit_ids_are_rejected(admin_client, admin) -> None:
    _notify(admin.id)
    for response in (
        admin_client.post("/notifications/%C2%B2/read"),
        admin_client.delete("/notifications/%C2%B2"),
    ):
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid notification ID"}
    assert notification_store.count_unread(admin.id) == 1


def test_dropdown_shows_latest_ten(admin_client, admin) -> None:
    for i in range(12):
        _notify(admin.id, f"Alert {i:02d}")
    html = admin_client.get("/notifications/dropdown").text
    assert "Alert 11" in html
    assert "Alert 01" not in html
    assert html.count('class="notification-item') == notification_store.DROPDOWN_LIMIT
    assert "Mark all read (12)" in html


def test_empty_dropdown(admin_client) -> None:
    assert "No notifications yet." in admin_client.get("/notifications/dropdown").text


def test_notifications_page_is_paginated(admin_client, admin) -> None:
    for i in range(15):
        _notify(admin.id, f"Note {i:02d}")

    first = admin_client.get("/notifications", params={"perPage": 10})
    assert first.status_code == 200
    assert first.text.count('class="notification-item') == 10

    second = admin_client.get("/notifications", params={"perPage": 10, "page": 2})
    assert second.text.count('class="notification-item') == 5
    assert "Note 00" in second.text


def test_job_notification_requires_job_type() -> None:
    with pytest.raises(ValueError):
        notification_store.create_job_notification(
            user_id=1, job_id=1, job_run_id=1, type=SYSTEM_ALERT, title="x", message="y"
        )


def test_system_notification_reaches_every_active_user(client, admin, other_user) -> None:
    created = notification_store.create_system_notification("Maintenance", "Tonight at 22:00")
    assert created == 2
    for user in (admin, other_user):
        [note] = notification_store.list_for_user(user.id, limit=10)
        assert note.type == SYSTEM_ALERT
        assert note.title == "Maintenance"


def test_job_notification_link(client, admin) -> None:
    note_id = notification_store.create_job_notification(
        user_id=admin.id, job_id=4, job_run_id=9, type=JOB_START, title="Job started: x", message=""
    )
    [note] = notification_store.list_for_user(admin.id, limit=1)
    assert note.id == note_id
    assert note.link == "/job-runs/9"
