from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from remediation_core.utils.hashing import sha256_bytes, sha256_text
from remediation_core.utils.masking import (
    is_sensitive_key,
    redact_sensitive_fields,
    sanitize_log_value,
)
from remediation_core.utils.serialization import canonical_json, dumps, json_default
from remediation_core.utils.time import iso_after, parse_iso, to_iso


def test_json_default():
    class Color(Enum):
        RED = "red"

    assert json_default(datetime(2026, 1, 1, tzinfo=timezone.utc)) == "2026-01-01T00:00:00+00:00"
    assert json_default(Color.RED) == "red"
    assert json_default(Decimal("3")) == 3
    assert json_default(Decimal("1.5")) == 1.5
    assert json_default(b"abc") == "abc"
    assert json_default({"b", "a"}) == ["a", "b"]
    assert json_default((1, 2)) == [1, 2]


def test_canonical_json_is_key_order_independent():
    left = canonical_json({"b": 1, "a": {"d": 2, "c": 3}})
    right = canonical_json({"a": {"c": 3, "d": 2}, "b": 1})
    assert left == right
    assert left == '{"a":{"c":3,"d":2},"b":1}'


def test_dumps_handles_non_json_types():
    assert dumps({"at": datetime(2026, 1, 1, tzinfo=timezone.utc)}) == (
        '{"at": "2026-01-01T00:00:00+00:00"}'
    )


def test_hashing():
    assert sha256_text("abc") == sha256_bytes(b"abc")
    assert len(sha256_text("abc")) == 64


def test_to_iso_is_fixed_width_utc():
    naive = datetime(2026, 3, 1, 12, 0, 0)
    assert to_iso(naive) == "2026-03-01T12:00:00.000000+00:00"
    offset = datetime(2026, 3, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_iso(offset) == "2026-03-01T12:00:00.000000+00:00"


def test_parse_iso_accepts_zulu_and_naive():
    assert parse_iso("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_iso("2026-03-01T12:00:00").tzinfo is not None


def test_iso_after():
    start = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert iso_after(90, start) == "2026-03-01T12:01:30.000000+00:00"


def test_sensitive_keys():
    assert is_sensitive_key("Authorization")
    assert is_sensitive_key("db_password")
    assert is_sensitive_key("AWS_SECRET_ACCESS_KEY")
    assert not is_sensitive_key("instanceIds")


def test_redact_sensitive_fields_nested():
    payload = {
        "query": "up",
        "variables": {"db_password": "hunter2", "region": "us-east-1"},
        "headers": [{"Authorization": "Bearer abc"}],
    }
    redacted = redact_sensitive_fields(payload)
    assert redacted == {
        "query": "up",
        "variables": {"db_password": "***", "region": "us-east-1"},
        "headers": [{"Authorization": "***"}],
    }
    # The input is left untouched.
    assert payload["variables"]["db_password"] == "hunter2"


def test_redact_sensitive_fields_depth_limit():
    deep: dict = {}
    node = deep
    for _ in range(30):
        node["child"] = {}
        node = node["child"]
    redacted = redact_sensitive_fields(deep, max_depth=3)
    assert redacted == {"child": {"child": {"child": "***"}}}


def test_sanitize_log_value():
    assert sanitize_log_value("line1\nline2\r") == "line1_line2_"
