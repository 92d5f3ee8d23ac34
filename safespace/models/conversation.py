"""
Conversation turns and the events streamed back to the client.
Turns are immutable; a user's history is an ordered list of them, oldest first.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: str

    def as_message(self) -> dict:
        """Render as an OpenAI-style chat message."""
        return {"role": self.role.value, "content": self.content}


class EventKind(str, Enum):
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ChatEvent:
    """One outbound event. `data` is JSON-encoded onto the wire as-is."""
    kind: EventKind
    data: Any = field(default=None)
