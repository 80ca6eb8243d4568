from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

GENESIS_HASH = "0" * 64


@dataclass(frozen=True)
class ChainReport:
    ok: bool
    checked: int
    broken_at: Optional[int] = None  # 1-based line of the first bad record
    reason: str = ""


def canonical_json(obj: Dict[str, Any]) -> str:
    # Deterministic JSON (no whitespace, sorted keys)
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def compute_hash(prev_hash: str, payload: Dict[str, Any]) -> str:
    h = hashlib.sha256()
    h.update(prev_hash.encode("utf-8"))
    h.update(b"\n")
    h.update(canonical_json(payload).encode("utf-8"))
    return h.hexdigest()


class AuditJsonlStore:
    """
    Append-only audit file; each record carries the hash of the previous one,
    so edits or deletions in the middle are detectable with verify().
    """

    def __init__(self, *, path: str, head_path: str):
        self.path = path
        self.head_path = head_path
        self._lock = threading.Lock()
        for p in (path, head_path):
            parent = os.path.dirname(p)
            if parent:
                os.makedirs(parent, exist_ok=True)

    def read_head_hash(self) -> str:
        if not os.path.exists(self.head_path):
            return GENESIS_HASH
        with open(self.head_path, "r", encoding="utf-8") as f:
            obj = json.load(f)
        return str(obj.get("head_hash") or GENESIS_HASH)

    def _write_head_hash(self, head_hash: str) -> None:
        tmp = self.head_path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"head_hash": head_hash}, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, self.head_path)

    def append(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """payload must not contain prev_hash/hash; returns the stored record."""
        with self._lock:
            prev = self.read_head_hash()
            rec = dict(payload)
            rec["prev_hash"] = prev
            rec["hash"] = compute_hash(prev, payload)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
            self._write_head_hash(str(rec["hash"]))
            return rec

    def iter_records(self) -> Iterable[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def tail(self, n: int = 50) -> List[Dict[str, Any]]:
        records = list(self.iter_records())
        return records[-max(1, int(n)):]

    def verify(self) -> ChainReport:
        prev = GENESIS_HASH
        n = 0
        for n, rec in enumerate(self.iter_records(), start=1):
            payload = {k: v for k, v in rec.items() if k not in {"prev_hash", "hash"}}
            if rec.get("prev_hash") != prev:
                return ChainReport(ok=False, checked=n - 1, broken_at=n, reason="prev_hash mismatch")
            if rec.get("hash") != compute_hash(prev, payload):
                return ChainReport(ok=False, checked=n - 1, broken_at=n, reason="hash mismatch")
            prev = str(rec["hash"])
        if prev != self.read_head_hash():
            return ChainReport(ok=False, checked=n, reason="head hash does not match the last record")
        return ChainReport(ok=True, checked=n)
