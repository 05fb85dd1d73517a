"""
Tests for logging helpers: masking, truncation, bound context and JSON output.
"""

import json
import logging

from althea.core.logging_config import (
    FILTERED,
    JSONFormatter,
    bind_context,
    filter_sensitive_data,
    truncate_large_data,
)


def make_record(msg="hello", extra_fields=None):
    record = logging.LogRecord("althea.test", logging.INFO, __file__, 10, msg, None, None)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


class TestFilterSensitiveData:

    def test_nested_values_are_masked(self):
        data = {
            "user": {"api_key": "sk-1", "name": "Ann"},
            "members": [{"date_of_birth": "1950-01-01", "age": 70}],
            "Authorization": "Bearer x",
        }

        filtered = filter_sensitive_data(data)

        assert filtered["user"] == {"api_key": FILTERED, "name": "Ann"}
        assert filtered["members"][0] == {"date_of_birth": FILTERED, "age": 70}
        assert filtered["Authorization"] == FILTERED
        assert data["user"]["api_key"] == "sk-1"

    def test_custom_keys(self):
        assert filter_sensitive_data({"note": "x", "ok": 1}, ["note"]) == {"note": FILTERED, "ok": 1}

    def test_primitives_pass_through(self):
        assert filter_sensitive_data("plain") == "plain"


def test_truncate_large_data():
    assert truncate_large_data("short", max_length=10) == "short"
    truncated = truncate_large_data("x" * 20, max_length=10)
    assert truncated.startswith("x" * 10)
    assert "total length: 20" in truncated


def test_bind_context_merges_extra_fields():
    adapter = bind_context(logging.getLogger("althea.test"), user_id="u1", session_id="s1")

    _, kwargs = adapter.process("msg", {"extra": {"extra_fields": {"stage": "parsing"}}})

    assert kwargs["extra"]["extra_fields"] == {"user_id": "u1", "session_id": "s1", "stage": "parsing"}


class TestJSONFormatter:

    def test_fields_are_flattened_and_masked(self):
        record = make_record(extra_fields={"session_id": "s1", "token": "abc"})

        line = json.loads(JSONFormatter().format(record))

        assert line["message"] == "hello"
        assert line["level"] == "INFO"
        assert line["session_id"] == "s1"
        assert line["token"] == FILTERED

    def test_record_without_extra_fields(self):
        line = json.loads(JSONFormatter().format(make_record()))
        assert "timestamp" in line
        assert line["logger"] == "althea.test"
