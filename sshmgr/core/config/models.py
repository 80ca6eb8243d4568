from __future__ import annotations

import re
from typing import Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sshmgr.core.randomness import MIN_SECRET_ENTROPY_BITS, secret_entropy_bits

_PREFIX_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")
_GROUP_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")


class WebhookConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = False
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8443, ge=1, le=65535)
    public_url: str = ""
    path_secret: str = ""
    header_secret: str = ""


class BotConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    token: str = ""
    api_base: str = "https://api.telegram.org"
    request_timeout_seconds: float = Field(default=15.0, gt=0, le=300)
    poll_timeout_seconds: int = Field(default=30, ge=0, le=120)
    poll_backoff_seconds: float = Field(default=5.0, ge=0, le=600)
    workers: int = Field(default=4, ge=1, le=64)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    address: str = "ssh.example.com"
    ports: List[int] = Field(default_factory=lambda: [22])
    location: str = "Unknown"

    @field_validator("ports")
    @classmethod
    def _ports_valid(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("at least one port is required")
        if any(p < 1 or p > 65535 for p in v):
            raise ValueError("ports must be within 1..65535")
        if len(set(v)) != len(v):
            raise ValueError("ports must not repeat")
        return v


class AccountsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    prefix: str = "sshuser"
    groups: Dict[str, int] = Field(default_factory=lambda: {"max1": 1, "max2": 2, "max3": 3})
    shell: str = "/bin/rbash"
    suffix_length: int = Field(default=5, ge=3, le=16)
    max_username_attempts: int = Field(default=16, ge=1, le=1000)
    secret_length: int = Field(default=16, ge=8, le=128)
    past_date_tolerance_days: int = Field(default=0, ge=0, le=365)
    service_timeout_seconds: float = Field(default=30.0, gt=0, le=600)

    @field_validator("prefix")
    @classmethod
    def _prefix_valid(cls, v: str) -> str:
        if not _PREFIX_RE.match(v):
            raise ValueError("prefix must be lowercase letters, digits, '_' or '-' and not start with a digit")
        return v

    @field_validator("groups")
    @classmethod
    def _groups_valid(cls, v: Dict[str, int]) -> Dict[str, int]:
        if not v:
            raise ValueError("at least one group is required")
        for name, limit in v.items():
            if not _GROUP_RE.match(name):
                raise ValueError(f"invalid group name: {name}")
            if int(limit) < 1:
                raise ValueError(f"group {name}: max logins must be >= 1")
        return v

    @field_validator("secret_length")
    @classmethod
    def _secret_strong_enough(cls, v: int) -> int:
        if secret_entropy_bits(v) < MIN_SECRET_ENTROPY_BITS:
            raise ValueError(f"secret_length {v} gives less than {MIN_SECRET_ENTROPY_BITS:.0f} bits of entropy")
        return v

    @model_validator(mode="after")
    def _username_fits(self) -> "AccountsConfig":
        if len(self.prefix) + self.suffix_length > 32:
            raise ValueError("prefix + suffix_length must not exceed 32 characters")
        return self


Color = Tuple[int, int, int]


class BarcodeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    max_version: int = Field(default=40, ge=1, le=40)
    box_size: int = Field(default=10, ge=1, le=50)
    border: int = Field(default=4, ge=0, le=20)
    dark_color: Color = (123, 255, 6)
    light_color: Color = (28, 32, 31)
    share_format: Literal["token", "sagernet"] = "token"
    link_label: str = "SSH"


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    events_path: str = "logs/events.jsonl"
    audit_path: str = "logs/audit.jsonl"
    audit_head_path: str = "logs/audit.head.json"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    bot: BotConfig = Field(default_factory=BotConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    admins: List[Union[int, str]] = Field(default_factory=list)
    public_commands: List[str] = Field(default_factory=lambda: ["help"])
    log_chat: Optional[int] = None
    accounts: AccountsConfig = Field(default_factory=AccountsConfig)
    barcode: BarcodeConfig = Field(default_factory=BarcodeConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    @field_validator("public_commands")
    @classmethod
    def _lower(cls, v: List[str]) -> List[str]:
        return [str(x).strip().lower() for x in v if str(x).strip()]


def default_config_dict() -> Dict[str, object]:
    return AppConfig().model_dump(mode="json")
