from sshmgr.transport.telegram import PollingRunner, TelegramClient, deliver, handle_update, parse_command

__all__ = ["PollingRunner", "TelegramClient", "deliver", "handle_update", "parse_command"]
