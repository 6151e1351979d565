"""Tests for the JSON log formatter and logger namespacing."""

from __future__ import annotations

import json
import logging

from stubly.logger import REDACTED, JSONFormatter, get_logger


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stubly.auth", level=logging.INFO, pathname=__file__, lineno=1,
        msg="Login for %s", args=("alice",), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_event_is_top_level(self):
        entry = json.loads(JSONFormatter().format(_record(event="LOGIN")))
        assert entry["event"] == "LOGIN"
        assert entry["message"] == "Login for alice"
        assert "extra" not in entry

    def test_secret_extras_are_masked(self):
        entry = json.loads(
            JSONFormatter().format(_record(access_token="abc", password="pw", table="mounts"))
        )
        assert entry["extra"]["access_token"] == REDACTED
        assert entry["extra"]["password"] == REDACTED
        assert entry["extra"]["table"] == "mounts"


class TestNamespacing:
    def test_short_and_qualified_names_match(self):
        assert get_logger("remote").logger is get_logger("stubly.remote").logger

    def test_children_propagate_to_root(self):
        log = get_logger("sync")
        assert log.name == "stubly.sync"
        assert log.logger.propagate is True
        assert logging.getLogger("stubly").handlers
