"""
Verify the hash chain of the audit log.

Usage:
  python scripts/verify_audit.py [--config /etc/userbot.json]

Exit code 0 when the chain is intact, 1 when it is broken, 2 on config errors.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sshmgr.core.audit.store_jsonl import AuditJsonlStore  # noqa: E402
from sshmgr.core.config import ConfigManager  # noqa: E402
from sshmgr.core.errors import ConfigError  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(description="Verify the audit log hash chain.")
    ap.add_argument("--config", default=None)
    args = ap.parse_args()
    try:
        cfg = ConfigManager(args.config, read_only=True).load()
    except ConfigError as e:
        print(e.user_message, file=sys.stderr)
        return 2
    store = AuditJsonlStore(path=cfg.paths.audit_path, head_path=cfg.paths.audit_head_path)
    report = store.verify()
    if report.ok:
        print(f"OK: {report.checked} records in {cfg.paths.audit_path}")
        return 0
    where = f" at line {report.broken_at}" if report.broken_at else ""
    print(f"FAIL{where}: {report.reason} ({report.checked} records verified before it)")
    return 1


if __name__ == "__main__":
    sys.exit(main())
