from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from sshmgr.core.config.io import atomic_write_json, read_json_file
from sshmgr.core.config.models import AppConfig, default_config_dict
from sshmgr.core.errors import ConfigError

DEFAULT_CONFIG_PATH = "/etc/userbot.json"
ENV_CONFIG_PATH = "SSHMGR_CONFIG"
ENV_BOT_TOKEN = "SSHMGR_BOT_TOKEN"


def resolve_config_path(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return explicit or env.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH


def _format_errors(exc: ValidationError) -> List[str]:
    out: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc or '<root>'}: {err.get('msg', 'invalid')}")
    return out


class ConfigManager:
    """
    Loads the bot's JSON config once at startup.

    A missing file is replaced by a default template (unless read_only) so an
    operator has something to edit; the template still fails to start the bot
    because it has no token and no admins.
    """

    def __init__(self, path: Optional[str] = None, *, logger=None, read_only: bool = False, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.path = resolve_config_path(path, self.environ)
        self.logger = logger
        self.read_only = read_only

    def _read_raw(self) -> Dict[str, Any]:
        res = read_json_file(self.path)
        if res.ok:
            return res.data
        if res.error == "missing":
            data = default_config_dict()
            if not self.read_only:
                atomic_write_json(self.path, data)
                if self.logger:
                    self.logger.warning(f"Config file {self.path} was missing; wrote a default template.")
            return data
        raise ConfigError(f"Cannot read config file {self.path}.", path=self.path, error=res.error)

    def load(self) -> AppConfig:
        raw = self._read_raw()
        token = self.environ.get(ENV_BOT_TOKEN)
        if token:
            raw = dict(raw)
            raw["bot"] = dict(raw.get("bot") or {}, token=token)
        try:
            return AppConfig.model_validate(raw)
        except ValidationError as e:
            errors = _format_errors(e)
            raise ConfigError("Invalid configuration: " + "; ".join(errors), path=self.path, errors=errors) from e


def require_runnable(cfg: AppConfig) -> None:
    """Checks the settings a live bot cannot start without."""
    problems: List[str] = []
    if not cfg.bot.token:
        problems.append("bot.token is empty (or set SSHMGR_BOT_TOKEN)")
    if not cfg.admins:
        problems.append("admins is empty; nobody could manage accounts")
    if cfg.bot.webhook.enabled and not cfg.bot.webhook.path_secret:
        problems.append("bot.webhook.path_secret is required when the webhook is enabled")
    if problems:
        raise ConfigError("Configuration is not runnable: " + "; ".join(problems), problems=problems)
