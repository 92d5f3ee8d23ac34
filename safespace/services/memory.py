"""
Per-user conversation memory — a bounded, ordered log of recent turns.

Used by the relay to build context for the next completion and updated only
after a completion finishes successfully. Lives for the whole process; a user's
history disappears only through FIFO eviction or an explicit clear.
"""

import logging
from collections import deque
from typing import Optional

from ..core.config import get_settings
from ..models.conversation import ConversationTurn

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 12


class ConversationMemory:
    """Keeps at most `limit` turns per user, dropping the oldest first."""

    def __init__(self, limit: int = DEFAULT_MEMORY_LIMIT):
        if limit < 1:
            raise ValueError("memory limit must be at least 1")
        self.limit = limit
        self._store: dict[str, deque[ConversationTurn]] = {}

    def append(self, user_id: str, turn: ConversationTurn) -> None:
        history = self._store.get(user_id)
        if history is None:
            history = self._store[user_id] = deque(maxlen=self.limit)
        history.append(turn)

    def get(self, user_id: str) -> list[ConversationTurn]:
        """Snapshot of the user's history, oldest first. Empty for unknown users."""
        return list(self._store.get(user_id, ()))

    def clear(self, user_id: str) -> None:
        if self._store.pop(user_id, None) is not None:
            logger.info("Cleared conversation memory for user=%s", user_id)


# ── Global memory ────────────────────────────────────────────────────

_memory: Optional[ConversationMemory] = None


def get_memory() -> ConversationMemory:
    """Get or create the process-wide conversation memory."""
    global _memory
    if _memory is None:
        _memory = ConversationMemory(limit=get_settings().memory_limit)
    return _memory
