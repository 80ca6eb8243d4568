from __future__ import annotations

import argparse
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional

import uvicorn

from sshmgr.core.accounts import AccountLifecycleEngine, EngineConfig, GroupPolicy, UserService
from sshmgr.core.accounts.host import HostUserService
from sshmgr.core.audit.sinks import AuditTrail, ChatAuditSink, JsonlAuditSink
from sshmgr.core.audit.store_jsonl import AuditJsonlStore
from sshmgr.core.clock import Clock
from sshmgr.core.codec.render import BarcodeRenderer
from sshmgr.core.config import AppConfig, ConfigManager, require_runnable
from sshmgr.core.dispatcher import CommandDispatcher, ServerInfo
from sshmgr.core.errors import ConfigError, TransportError
from sshmgr.core.events import EventLogger
from sshmgr.core.logger import setup_logging
from sshmgr.core.security import AdminSet, AuthorizationGate
from sshmgr.transport.telegram import PollingRunner, TelegramClient
from sshmgr.web.api import create_app


@dataclass
class Components:
    cfg: AppConfig
    client: TelegramClient
    engine: AccountLifecycleEngine
    dispatcher: CommandDispatcher
    audit: AuditTrail
    event_logger: EventLogger

    def close(self) -> None:
        self.engine.close()


def build_components(
    cfg: AppConfig,
    logger,
    *,
    service: Optional[UserService] = None,
    clock: Optional[Clock] = None,
    client: Optional[TelegramClient] = None,
) -> Components:
    acc = cfg.accounts
    if service is None:
        service = HostUserService(shell=acc.shell, timeout_seconds=acc.service_timeout_seconds)
    if client is None:
        client = TelegramClient(cfg.bot.token, api_base=cfg.bot.api_base, timeout_seconds=cfg.bot.request_timeout_seconds)

    engine = AccountLifecycleEngine(
        service,
        groups=GroupPolicy(max_logins=dict(acc.groups)),
        cfg=EngineConfig(
            prefix=acc.prefix,
            suffix_length=acc.suffix_length,
            max_username_attempts=acc.max_username_attempts,
            secret_length=acc.secret_length,
            past_date_tolerance_days=acc.past_date_tolerance_days,
            service_timeout_seconds=acc.service_timeout_seconds,
        ),
        clock=clock,
        max_workers=max(2, cfg.bot.workers * 2),
    )

    event_logger = EventLogger(cfg.paths.events_path)
    sinks = [JsonlAuditSink(AuditJsonlStore(path=cfg.paths.audit_path, head_path=cfg.paths.audit_head_path))]
    if cfg.log_chat is not None:
        sinks.append(ChatAuditSink(send_text=lambda chat_id, text: client.send_message(chat_id, text, parse_mode=None), chat_id=cfg.log_chat))
    audit = AuditTrail(sinks, logger=logger)

    bc = cfg.barcode
    dispatcher = CommandDispatcher(
        engine=engine,
        gate=AuthorizationGate(admins=AdminSet.of(cfg.admins), public_commands=frozenset(cfg.public_commands)),
        renderer=BarcodeRenderer(
            max_version=bc.max_version,
            box_size=bc.box_size,
            border=bc.border,
            dark_color=bc.dark_color,
            light_color=bc.light_color,
        ),
        server=ServerInfo(address=cfg.server.address, ports=tuple(cfg.server.ports), location=cfg.server.location),
        logger=logger,
        audit=audit,
        event_logger=event_logger,
        share_format=bc.share_format,
        link_label=bc.link_label,
    )
    return Components(cfg=cfg, client=client, engine=engine, dispatcher=dispatcher, audit=audit, event_logger=event_logger)


class WebhookServerHandle:
    def __init__(self, *, app, host: str, port: int, logger):  # noqa: ANN001
        self.app = app
        self.host = host
        self.port = port
        self.logger = logger
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        cfg = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(cfg)

        def run() -> None:
            assert self._server is not None
            self._server.run()

        self._thread = threading.Thread(target=run, name="sshmgr-webhook", daemon=True)
        self._thread.start()
        self.logger.info(f"Webhook server listening on {self.host}:{self.port}")

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=3.0)


def _run_webhook(parts: Components, logger) -> None:
    wh = parts.cfg.bot.webhook
    fastapi_app = create_app(
        parts.dispatcher,
        parts.client,
        logger,
        path_secret=wh.path_secret,
        header_secret=wh.header_secret,
        event_logger=parts.event_logger,
    )
    if wh.public_url:
        url = f"{wh.public_url.rstrip('/')}/telegram/{wh.path_secret}"
        try:
            parts.client.set_webhook(url, secret_token=wh.header_secret)
            logger.info("Telegram webhook registered.")
        except TransportError as e:
            logger.error(f"Could not register the webhook: {e.user_message}")
    else:
        logger.warning("bot.webhook.public_url is empty; assuming the webhook is registered externally.")

    handle = WebhookServerHandle(app=fastapi_app, host=wh.bind_host, port=wh.port, logger=logger)
    handle.start()
    try:
        while handle.is_alive():
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Shutting down webhook server...")
    finally:
        handle.stop()


def _run_polling(parts: Components, logger) -> None:
    bot = parts.cfg.bot
    try:
        # getUpdates is refused while a webhook is set.
        parts.client.delete_webhook()
    except TransportError as e:
        logger.warning(f"Could not clear the webhook: {e.user_message}")
    runner = PollingRunner(
        client=parts.client,
        dispatcher=parts.dispatcher,
        logger=logger,
        workers=bot.workers,
        poll_timeout_seconds=bot.poll_timeout_seconds,
        backoff_seconds=bot.poll_backoff_seconds,
    )
    try:
        runner.run_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down poller...")
    finally:
        runner.stop(wait=True)


def main(argv: Optional[list] = None) -> int:
    ap = argparse.ArgumentParser(description="Telegram bot that manages SSH accounts on this host")
    ap.add_argument("--config", default=None, help="Config file path (default: $SSHMGR_CONFIG or /etc/userbot.json).")
    ap.add_argument("--mode", choices=["poll", "webhook"], default=None, help="Update delivery; defaults to webhook when bot.webhook.enabled.")
    ap.add_argument("--log-dir", default=None, help="Override paths.log_dir.")
    args = ap.parse_args(argv)

    # The log directory may come from the config, so the config is read before logging exists.
    try:
        cfg = ConfigManager(args.config).load()
    except ConfigError as e:
        setup_logging(args.log_dir or "logs").error(e.user_message)
        return 2
    logger = setup_logging(args.log_dir or cfg.paths.log_dir)
    try:
        mode = args.mode or ("webhook" if cfg.bot.webhook.enabled else "poll")
        if mode == "webhook" and not cfg.bot.webhook.enabled:
            cfg = cfg.model_copy(update={"bot": cfg.bot.model_copy(update={"webhook": cfg.bot.webhook.model_copy(update={"enabled": True})})})
        require_runnable(cfg)
    except ConfigError as e:
        logger.error(e.user_message)
        return 2

    parts = build_components(cfg, logger)
    logger.info(f"Starting in {mode} mode for {cfg.server.address} ({len(cfg.admins)} admins).")
    try:
        if mode == "webhook":
            _run_webhook(parts, logger)
        else:
            _run_polling(parts, logger)
    finally:
        parts.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
