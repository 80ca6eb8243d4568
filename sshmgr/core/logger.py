from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler

# Telegram puts the bot token in the request path: https://api.telegram.org/bot<token>/sendMessage
_BOT_TOKEN_RE = re.compile(r"/bot\d+:[A-Za-z0-9_-]+")


class BotTokenFilter(logging.Filter):
    """Masks Bot API tokens that leak into log lines through request URLs."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "/bot" in msg:
            record.msg = _BOT_TOKEN_RE.sub("/bot***REDACTED***", msg)
            record.args = None
        return True


def setup_logging(log_dir: str = "logs", *, level: int = logging.INFO) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger("sshmgr")
    logger.setLevel(level)
    logger.propagate = False

    token_filter = BotTokenFilter()

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        text_path = os.path.join(log_dir, "sshmgr.log")
        h = RotatingFileHandler(text_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        h.addFilter(token_filter)
        logger.addHandler(h)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler) for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(message)s"))
        sh.addFilter(token_filter)
        logger.addHandler(sh)

    # urllib3 logs full request URLs at DEBUG, which would include the bot token.
    for name in ("urllib3", "requests"):
        noisy = logging.getLogger(name)
        noisy.setLevel(max(level, logging.WARNING))
        noisy.addFilter(token_filter)

    return logger
