from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mftconsole.services.formatting import (
    format_bytes,
    format_datetime,
    format_duration,
    provider_label,
    status_class,
    time_ago,
)
from mftconsole.services.notification_store import badge_label

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_format_bytes_uses_binary_units() -> None:
    assert format_bytes(None) == "0 B"
    assert format_bytes(1023) == "1023 B"
    assert format_bytes(1024) == "1.0 KB"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024**3) == "5.0 GB"


def test_format_duration() -> None:
    assert format_duration(None, NOW) == "-"
    assert format_duration(NOW, None) == "Running"
    assert format_duration(NOW, NOW + timedelta(seconds=45)) == "45s"
    assert format_duration(NOW, NOW + timedelta(seconds=125)) == "2m 5s"
    assert format_duration(NOW, NOW + timedelta(seconds=3725)) == "1h 2m"


def test_format_duration_treats_naive_times_as_utc() -> None:
    naive_start = datetime(2024, 5, 1, 12, 0, 0)
    assert format_duration(naive_start, NOW + timedelta(seconds=10)) == "10s"


def test_time_ago() -> None:
    assert time_ago(None) == "-"
    assert time_ago(NOW - timedelta(seconds=30), now=NOW) == "just now"
    assert time_ago(NOW - timedelta(minutes=1), now=NOW) == "1 minute ago"
    assert time_ago(NOW - timedelta(hours=2), now=NOW) == "2 hours ago"
    assert time_ago(NOW - timedelta(days=3), now=NOW) == "3 days ago"


def test_format_datetime() -> None:
    assert format_datetime(None) == "-"
    assert format_datetime(NOW) == "2024-05-01 12:00:00"


def test_status_class() -> None:
    assert status_class("completed") == "badge-success"
    assert status_class("FAILED") == "badge-error"
    assert status_class("running") == "badge-info"
    assert status_class("something") == "badge-neutral"
    assert status_class(None) == "badge-neutral"


def test_provider_label() -> None:
    assert provider_label("s3") == "Amazon S3"
    assert provider_label("hetzner") == "Hetzner Storage Box"
    assert provider_label("mystery") == "mystery"
    assert provider_label(None) == "-"


def test_badge_label_caps_at_ninety_nine() -> None:
    assert badge_label(0) == ""
    assert badge_label(5) == "5"
    assert badge_label(99) == "99"
    assert badge_label(100) == "99+"
