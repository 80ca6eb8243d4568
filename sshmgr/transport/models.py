"""Subset of the Telegram Bot API types the bot reads."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Chat(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    type: str = "private"


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    is_bot: bool = False
    username: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    message_id: int
    chat: Chat
    from_user: Optional[User] = Field(default=None, alias="from")
    text: Optional[str] = None


class Update(BaseModel):
    model_config = ConfigDict(extra="ignore")
    update_id: int
    message: Optional[Message] = None


class CommandMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    args: List[str] = Field(default_factory=list)
