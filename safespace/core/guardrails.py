"""
Guardrails — input validation and crisis detection.

Layers:
  1. Input validation (length, emptiness)
  2. Crisis detection (keyword gate — forces crisis personality, calmer sampling)

Crisis detection is deliberately conservative: a false positive only makes the
reply gentler, a false negative misses someone who needs help.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────

MAX_MESSAGE_LENGTH = 10000       # Max input message length

CRISIS_PHRASES = (
    "i want to die",
    "kill myself",
    "suicide",
    "hurt myself",
    "end my life",
    "ending my life",
    "end it all",
    "ending it all",
    "cant go on",
    "can't go on",
    "cannot go on",
    "better off dead",
    "take my life",
    "self harm",
    "self-harm",
    "die tonight",
    "no reason to live",
    "want to disappear",
)


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None


# ── Input Guardrails ──────────────────────────────────────────────────

def check_input(message: str, user_id: str = "") -> GuardrailResult:
    """
    Validate user input before processing.
    Returns GuardrailResult with allowed=False if blocked.
    """

    # 1. Length check
    if len(message) > MAX_MESSAGE_LENGTH:
        logger.info("Rejected oversized message from user=%s (%d chars)", user_id, len(message))
        return GuardrailResult(
            allowed=False,
            reason=f"Message too long ({len(message)} chars). Maximum is {MAX_MESSAGE_LENGTH}.",
        )

    # 2. Empty message
    if not message.strip():
        return GuardrailResult(
            allowed=False,
            reason="Message is empty.",
        )

    return GuardrailResult(allowed=True)


# ── Crisis Detection ──────────────────────────────────────────────────

def is_crisis(text: str) -> bool:
    """True if any crisis phrase appears anywhere in the text, ignoring case."""
    normalized = text.lower()
    return any(phrase in normalized for phrase in CRISIS_PHRASES)
