"""
Conversation data model. Plain dataclasses, nothing persisted.
"""

from .conversation import ChatEvent, ConversationTurn, EventKind, Role

__all__ = [
    "ChatEvent",
    "ConversationTurn",
    "EventKind",
    "Role",
]
