import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """
    One turn of a conversation.

    Attributes:
        role: Who produced the turn (system, user or assistant)
        content: The text of the turn
        provider: Name of the provider that produced an assistant turn, "" otherwise
        truncated: True when the reply stream was cut short by a transport failure
        created_at: Creation timestamp in nanoseconds
        id: Store row id, None until the message is persisted
    """

    role: Role
    content: str
    provider: str = ""
    truncated: bool = False
    created_at: int = field(default_factory=lambda: time.time_ns())
    id: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.role, Role):
            try:
                self.role = Role(self.role)
            except ValueError:
                raise ValueError(f"Invalid role: {self.role}")
        if self.content is None:
            raise ValueError("Message content must not be None")

    def to_dict(self) -> Dict[str, Any]:
        """Returns the role/content dict providers consume."""
        return {"role": self.role.value, "content": self.content}

    def to_export(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "provider": self.provider,
            "truncated": self.truncated,
            "created_at": format_timestamp(self.created_at),
        }

    def __repr__(self) -> str:
        preview = self.content[:50]
        return f"Message(id={self.id}, role={self.role.value}, content='{preview}...')"


@dataclass
class Conversation:
    id: int
    created_at: int
    updated_at: int
    title: Optional[str] = None
    messages: List[Message] = field(default_factory=list)

    @property
    def system_prompt(self) -> Optional[str]:
        if self.messages and self.messages[0].role == Role.SYSTEM:
            return self.messages[0].content
        return None

    @property
    def turns(self) -> List[Message]:
        """Every message except the system prompt."""
        return [m for m in self.messages if m.role != Role.SYSTEM]

    def to_export(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "messages": [m.to_export() for m in self.messages],
        }


@dataclass(frozen=True)
class ConversationSummary:
    id: int
    updated_at: int
    title: Optional[str] = None


def format_timestamp(ns: int) -> str:
    return datetime.fromtimestamp(ns / 1e9).strftime("%Y-%m-%d %H:%M:%S")
