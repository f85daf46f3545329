"""
Canonical records produced by the format parsers.

Every supported export format is normalized into these two shapes before
it reaches the encrypted store.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Tuple


class ContentType(str, Enum):
    TEXT = "text"
    CODE = "code"


class ChatType(str, Enum):
    LLM = "llm"
    HUMAN = "human"


@dataclass(frozen=True)
class ChatMessage:
    """A single message in canonical form."""

    message_id: str
    """SHA-256 hex of the sanitized content and timestamp."""

    conversation_id: str
    timestamp_utc: int
    """Unix seconds, UTC."""

    author: str
    """'User', the service display name, or a literal participant name."""

    content: str
    content_type: ContentType = ContentType.TEXT

    def to_dict(self) -> dict:
        data = asdict(self)
        data["content_type"] = self.content_type.value
        return data


@dataclass(frozen=True)
class ConversationRecord:
    """A conversation in canonical form."""

    id: str
    source_app: str
    chat_type: ChatType
    display_name: str
    start_time: int
    end_time: int
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_app": self.source_app,
            "chat_type": self.chat_type.value,
            "display_name": self.display_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "tags": list(self.tags),
        }
