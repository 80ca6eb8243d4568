from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from sshmgr.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class SSHMgrError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Account lifecycle ----
class NotFoundError(SSHMgrError):
    def __init__(self, user_message: str = "User not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class AlreadyExistsError(SSHMgrError):
    def __init__(self, user_message: str = "User already exists.", **ctx: Any):
        super().__init__("already_exists", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class UnauthorizedError(SSHMgrError):
    def __init__(self, user_message: str = "You are not allowed to do that.", **ctx: Any):
        super().__init__("unauthorized", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InvalidArgumentError(SSHMgrError):
    def __init__(self, user_message: str = "Invalid argument.", *, code: str = "invalid_argument", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InvalidGroupError(InvalidArgumentError):
    def __init__(self, user_message: str = "Unknown group.", **ctx: Any):
        super().__init__(user_message, code="invalid_group", **ctx)


class InvalidDateError(InvalidArgumentError):
    def __init__(self, user_message: str = "Invalid expiry date.", **ctx: Any):
        super().__init__(user_message, code="invalid_date", **ctx)


class InvalidDurationError(InvalidArgumentError):
    def __init__(self, user_message: str = "Number of days must be positive.", **ctx: Any):
        super().__init__(user_message, code="invalid_duration", **ctx)


class InvalidUsernameError(InvalidArgumentError):
    def __init__(self, user_message: str = "Invalid username.", **ctx: Any):
        super().__init__(user_message, code="invalid_username", **ctx)


class ExhaustedNamespaceError(SSHMgrError):
    def __init__(self, user_message: str = "Could not find a free username, try again.", **ctx: Any):
        super().__init__("exhausted_namespace", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class UnderlyingSystemFailure(SSHMgrError):
    def __init__(self, user_message: str = "The host refused the operation.", *, code: str = "system_failure", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ServiceTimeoutError(UnderlyingSystemFailure):
    def __init__(self, user_message: str = "The host did not answer in time.", **ctx: Any):
        super().__init__(user_message, code="service_timeout", **ctx)


# ---- Credential bundles ----
class CodecError(SSHMgrError):
    def __init__(self, user_message: str = "Malformed credential token.", **ctx: Any):
        super().__init__("codec_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class TokenTooLongError(SSHMgrError):
    def __init__(self, user_message: str = "Credentials are too long to fit in a QR code.", **ctx: Any):
        super().__init__("token_too_long", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


# ---- Ambient ----
class ConfigError(SSHMgrError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class TransportError(SSHMgrError):
    def __init__(self, user_message: str = "Chat transport error.", **ctx: Any):
        super().__init__("transport_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)
