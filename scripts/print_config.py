"""
Print the effective bot configuration with secrets masked.

Usage:
  python scripts/print_config.py [--config /etc/userbot.json]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sshmgr.core.config import ConfigManager  # noqa: E402
from sshmgr.core.errors import ConfigError  # noqa: E402
from sshmgr.core.events import redact  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(description="Print the effective (redacted) configuration.")
    ap.add_argument("--config", default=None)
    args = ap.parse_args()
    cm = ConfigManager(args.config, read_only=True)
    try:
        cfg = cm.load()
    except ConfigError as e:
        print(e.user_message, file=sys.stderr)
        return 2
    print(json.dumps(redact(cfg.model_dump(mode="json")), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
