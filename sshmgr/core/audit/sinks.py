from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Sequence

from sshmgr.core.audit.models import AuditEvent
from sshmgr.core.audit.store_jsonl import AuditJsonlStore
from sshmgr.core.events import redact


class AuditSink:
    def record(self, event: AuditEvent) -> None:
        raise NotImplementedError


class JsonlAuditSink(AuditSink):
    def __init__(self, store: AuditJsonlStore):
        self.store = store

    def record(self, event: AuditEvent) -> None:
        self.store.append(redact(event.model_dump(mode="json")))


class ChatAuditSink(AuditSink):
    """Posts a one-line summary to the operators' log chat."""

    def __init__(self, *, send_text: Callable[[int, str], Any], chat_id: int):
        self._send_text = send_text
        self.chat_id = int(chat_id)

    def record(self, event: AuditEvent) -> None:
        self._send_text(self.chat_id, event.summary())


class AuditTrail(AuditSink):
    """
    Fans an event out to every sink and keeps a short in-memory tail.

    A failing sink is logged and does not stop the others; the command that
    produced the event has already completed by the time it is recorded.
    """

    def __init__(self, sinks: Sequence[AuditSink] = (), *, logger=None, keep_last: int = 100):
        self.sinks: List[AuditSink] = list(sinks)
        self.logger = logger
        self._lock = threading.Lock()
        self._recent: Deque[AuditEvent] = deque(maxlen=max(10, int(keep_last)))

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._recent.appendleft(event)
        for sink in self.sinks:
            try:
                sink.record(event)
            except Exception as e:  # noqa: BLE001
                if self.logger is not None:
                    self.logger.error(f"Audit sink {type(sink).__name__} failed for {event.operation}: {type(e).__name__}")

    def recent(self, n: int = 20, *, operation: Optional[str] = None) -> List[AuditEvent]:
        with self._lock:
            items = [e for e in self._recent if operation is None or e.operation == operation]
        return items[: max(1, int(n))]
