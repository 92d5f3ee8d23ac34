"""
Personality registry. Maps a personality id to its system prompt.

The set is closed: every PersonalityId has a prompt, and anything the client
sends that isn't a known id resolves to the calm listener.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class PersonalityId(str, Enum):
    CALM_LISTENER = "calm_listener"
    MOTIVATION_COACH = "motivation_coach"
    CBT_HELPER = "cbt_helper"
    JOURNAL_HELPER = "journal_helper"
    CRISIS_MODE = "crisis_mode"


DEFAULT_PERSONALITY = PersonalityId.CALM_LISTENER

# ── Prompts ──────────────────────────────────────────────────────────

BASE_PROMPT = """You are SafeSpace AI, a warm, deeply supportive, emotionally intelligent companion.
Speak like a caring friend, not a therapist.
Use short, comforting sentences.
Reflect feelings, validate, stay present.
Avoid clinical or robotic language.
Ask gentle follow-up questions.
Crisis Mode: slow, calm, grounding, encourage reaching out to trusted person or hotline.
Forbidden: diagnosing, medical advice, instructions."""

CRISIS_INSTRUCTION = (
    "The user may be in crisis. Respond in calm crisis mode. "
    "Encourage reaching out to a trusted person or hotline (988 in the US). "
    "Never provide instructions or steps for self-harm."
)

_PROMPTS: dict[PersonalityId, str] = {
    PersonalityId.CALM_LISTENER: (
        "You are a calm listener. Offer warm, empathetic reflections in gentle, "
        "concise sentences. Validate feelings and keep the tone soft and human."
    ),
    PersonalityId.MOTIVATION_COACH: (
        "You are a motivation coach. Be positive, encouraging, and friendly. "
        "Highlight small wins and gently inspire forward movement without pressure."
    ),
    PersonalityId.CBT_HELPER: (
        "You are a CBT-style helper. Ask structured, compassionate questions about how "
        "thoughts connect to feelings and behavior. Stay warm and non-clinical."
    ),
    PersonalityId.JOURNAL_HELPER: (
        "You are a journaling helper. Reflect themes and patterns, invite deeper "
        "self-reflection, and keep the tone soothing and thoughtful."
    ),
    PersonalityId.CRISIS_MODE: (
        "You are in crisis mode. Speak slowly, calmly, and grounding. Encourage reaching "
        "out to a trusted person or hotline. Never provide instructions for self-harm."
    ),
}


def resolve(requested_id: Optional[str] = None) -> PersonalityId:
    """Resolve a client-supplied id. Unknown or empty → DEFAULT_PERSONALITY."""
    if not requested_id:
        return DEFAULT_PERSONALITY
    try:
        return PersonalityId(requested_id)
    except ValueError:
        logger.debug("Unknown personality '%s', using %s", requested_id, DEFAULT_PERSONALITY.value)
        return DEFAULT_PERSONALITY


def prompt_for(pid: PersonalityId) -> str:
    return _PROMPTS[pid]


def list_personalities() -> list[dict]:
    """Client-selectable personalities. Crisis mode is never chosen directly."""
    return [
        {"id": pid.value, "prompt": prompt}
        for pid, prompt in _PROMPTS.items()
        if pid is not PersonalityId.CRISIS_MODE
    ]
