from __future__ import annotations

import logging

from sshmgr.core.errors import NotFoundError
from sshmgr.core.events import EventLogger, redact
from sshmgr.core.logger import BotTokenFilter, setup_logging
from tests.helpers.log_assertions import read_jsonl


def test_redact_masks_nested_secret_keys():
    out = redact({"user": "alice", "password": "x", "nested": {"Token": "t", "items": [{"secret": "s"}]}})
    assert out["user"] == "alice"
    assert out["password"] == "***REDACTED***"
    assert out["nested"]["Token"] == "***REDACTED***"
    assert out["nested"]["items"][0]["secret"] == "***REDACTED***"


def test_event_logger_writes_redacted_jsonl(tmp_path):
    path = str(tmp_path / "logs" / "events.jsonl")
    ev = EventLogger(path)
    ev.log("t1", "command.completed", {"command": "useradd", "password": "hunter2"})
    ev.log("t2", "command.failed", None)
    rows = read_jsonl(path)
    assert [r["trace_id"] for r in rows] == ["t1", "t2"]
    assert rows[0]["details"]["password"] == "***REDACTED***"
    assert rows[1]["details"] == {}


def test_bot_token_filter_masks_urls():
    rec = logging.LogRecord("x", logging.INFO, __file__, 1, "POST https://api.telegram.org/bot123456:AAbb-cc_dd/sendMessage %s", ("ok",), None)
    BotTokenFilter().filter(rec)
    assert rec.getMessage() == "POST https://api.telegram.org/bot***REDACTED***/sendMessage ok"


def test_setup_logging_is_idempotent(tmp_path):
    logger = setup_logging(str(tmp_path))
    n = len(logger.handlers)
    assert setup_logging(str(tmp_path)) is logger
    assert len(logger.handlers) == n
    assert logging.getLogger("urllib3").level >= logging.WARNING


def test_error_to_dict_carries_code_and_context():
    err = NotFoundError("User not found: bob", username="bob")
    d = err.to_dict()
    assert d["code"] == "not_found"
    assert d["user_message"] == "User not found: bob"
    assert d["context"] == {"username": "bob"}
    assert str(err) == "User not found: bob"


def test_redact_masks_bot_tokens_inside_text():
    token = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"
    out = redact({"error": f"POST /bot{token}/sendMessage failed", "chat_id": 42})
    assert token not in out["error"]
    assert out["chat_id"] == 42


def test_command_events_carry_names_and_codes_only(tmp_path):
    path = str(tmp_path / "events.jsonl")
    EventLogger(path).command("t9", "command.failed", command="renew", username="alice", error_code="not_found")
    (row,) = read_jsonl(path)
    assert row["event"] == "command.failed"
    assert row["details"] == {"command": "renew", "username": "alice", "error_code": "not_found"}
