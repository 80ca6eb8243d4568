from __future__ import annotations

import json

from sshmgr.core.audit.models import AuditEvent, AuditOutcome
from sshmgr.core.audit.sinks import AuditSink, AuditTrail, ChatAuditSink, JsonlAuditSink
from sshmgr.core.audit.store_jsonl import AuditJsonlStore
from tests.helpers.fakes import DummyLogger, RecordingAuditSink


def _store(tmp_path) -> AuditJsonlStore:  # noqa: ANN001
    return AuditJsonlStore(path=str(tmp_path / "audit.jsonl"), head_path=str(tmp_path / "audit.head.json"))


def _event(op: str = "renew", outcome: AuditOutcome = AuditOutcome.success) -> AuditEvent:
    return AuditEvent(trace_id="t1", actor="1001", operation=op, username="alice", outcome=outcome)


def test_jsonl_sink_writes_hash_chained_records(tmp_path):
    store = _store(tmp_path)
    sink = JsonlAuditSink(store)
    sink.record(_event("useradd"))
    sink.record(_event("renew"))
    records = store.tail(10)
    assert [r["operation"] for r in records] == ["useradd", "renew"]
    assert records[1]["prev_hash"] == records[0]["hash"]
    assert records[0]["outcome"] == "success"
    assert store.verify().ok is True
    assert store.verify().checked == 2


def test_tampering_is_detected(tmp_path):
    store = _store(tmp_path)
    for op in ("useradd", "lock", "renew"):
        store.append(_event(op).model_dump(mode="json"))
    lines = (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    rec = json.loads(lines[1])
    rec["outcome"] = "denied"
    lines[1] = json.dumps(rec)
    (tmp_path / "audit.jsonl").write_text("\n".join(lines) + "\n", encoding="utf-8")
    report = store.verify()
    assert report.ok is False
    assert report.broken_at == 2
    assert report.reason == "hash mismatch"


def test_truncation_is_detected(tmp_path):
    store = _store(tmp_path)
    for op in ("useradd", "lock"):
        store.append(_event(op).model_dump(mode="json"))
    lines = (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    (tmp_path / "audit.jsonl").write_text(lines[0] + "\n", encoding="utf-8")
    report = store.verify()
    assert report.ok is False
    assert report.broken_at is None
    assert report.checked == 1


def test_empty_store_verifies(tmp_path):
    report = _store(tmp_path).verify()
    assert report.ok is True
    assert report.checked == 0


def test_chat_sink_posts_summary():
    sent = []
    sink = ChatAuditSink(send_text=lambda chat_id, text: sent.append((chat_id, text)), chat_id=-100)
    sink.record(AuditEvent(actor="1001", operation="userdel", username="bob", outcome=AuditOutcome.failed, error_code="not_found"))
    assert sent == [(-100, "userdel bob: failed (by 1001) [not_found]")]


class _BrokenSink(AuditSink):
    def record(self, event: AuditEvent) -> None:
        raise RuntimeError("disk full")


def test_trail_keeps_going_when_a_sink_fails():
    logger = DummyLogger()
    good = RecordingAuditSink()
    trail = AuditTrail([_BrokenSink(), good], logger=logger)
    trail.record(_event("lock"))
    assert len(good.events) == 1
    assert "_BrokenSink" in logger.text()
    assert "RuntimeError" in logger.text()


def test_trail_recent_is_newest_first_and_filterable():
    trail = AuditTrail([])
    for op in ("useradd", "lock", "renew", "lock"):
        trail.record(_event(op))
    assert [e.operation for e in trail.recent(3)] == ["lock", "renew", "lock"]
    assert len(trail.recent(operation="lock")) == 2
