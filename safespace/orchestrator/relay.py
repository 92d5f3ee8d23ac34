"""
Streaming relay — the chat pipeline for one request.

Validate → classify → (cache hit? replay) → build context → stream upstream
deltas to the client → commit memory + cache → done.

State machine:
  INIT → AWAITING_UPSTREAM → STREAMING → COMPLETING → DONE
                                                     ↘ FAILED | CANCELLED

Only a successful COMPLETING writes to memory or the cache. A failed or
cancelled stream leaves both untouched, even if chunks were already sent.
"""

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, Optional

import httpx

from ..core.config import Settings, get_settings
from ..core.errors import ChatError, ChatValidationError
from ..core.guardrails import check_input, is_crisis
from ..models.conversation import ChatEvent, ConversationTurn, EventKind, Role
from ..services import llm
from ..services.cache import ResponseCache, build_cache_key
from ..services.llm import CancellationToken
from ..services.memory import ConversationMemory
from ..services.personalities import (
    BASE_PROMPT,
    CRISIS_INSTRUCTION,
    PersonalityId,
    prompt_for,
    resolve,
)

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm here with you. Would you like to share a bit more?"
GENERIC_ERROR = "Something went wrong. Please try again later."


class RelayState(str, Enum):
    INIT = "init"
    AWAITING_UPSTREAM = "awaiting_upstream"
    STREAMING = "streaming"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {RelayState.DONE, RelayState.FAILED, RelayState.CANCELLED}


@dataclass(frozen=True)
class RelayRequest:
    """A validated request with its personality and crisis flag decided."""
    user_id: str
    message: str
    personality: PersonalityId
    crisis: bool

    @property
    def cache_key(self) -> str:
        return build_cache_key(self.user_id, self.personality.value, self.message)


@dataclass
class StreamSession:
    """Per-request state. Discarded when the request ends."""
    request: RelayRequest
    token: CancellationToken = field(default_factory=CancellationToken)
    state: RelayState = RelayState.INIT
    buffer: list[str] = field(default_factory=list)
    reply: str = ""           # Final reply, set on DONE
    cached: bool = False

    def cancel(self) -> None:
        self.token.cancel()


class ChatRelay:
    """Runs chat sessions against shared memory, cache and upstream client."""

    def __init__(
        self,
        memory: ConversationMemory,
        cache: ResponseCache,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.memory = memory
        self.cache = cache
        self.client = client
        self.settings = settings or get_settings()

    # ── INIT ─────────────────────────────────────────────────────────

    def prepare(
        self,
        user_id: Optional[str],
        message: Optional[str],
        personality: Optional[str] = None,
    ) -> RelayRequest:
        """
        Validate inputs and decide personality + crisis flag.
        Raises ChatValidationError (400) or ChatConfigurationError (500).
        """
        user_id = (user_id or "").strip()
        message = (message or "").strip()
        if not user_id or not message:
            raise ChatValidationError("Missing userId or message")

        guard = check_input(message, user_id=user_id)
        if not guard.allowed:
            raise ChatValidationError(guard.reason or "Message rejected")

        llm.ensure_configured()

        crisis = is_crisis(message)
        pid = PersonalityId.CRISIS_MODE if crisis else resolve(personality)
        if crisis:
            logger.warning("Crisis language detected (user=%s), forcing %s", user_id, pid.value)

        return RelayRequest(user_id=user_id, message=message, personality=pid, crisis=crisis)

    def open_session(self, request: RelayRequest) -> StreamSession:
        return StreamSession(request=request)

    def build_messages(self, request: RelayRequest) -> list[dict]:
        """System preamble, personality prompt, history, then the new user turn."""
        messages = [
            {"role": "system", "content": BASE_PROMPT},
            {"role": "system", "content": prompt_for(request.personality)},
        ]
        if request.crisis:
            messages.append({"role": "system", "content": CRISIS_INSTRUCTION})
        messages.extend(turn.as_message() for turn in self.memory.get(request.user_id))
        messages.append({"role": "user", "content": request.message})
        return messages

    def temperature_for(self, request: RelayRequest) -> float:
        if request.crisis:
            return self.settings.crisis_llm_temperature
        return self.settings.llm_temperature

    # ── Streaming run ────────────────────────────────────────────────

    async def run(self, session: StreamSession) -> AsyncGenerator[ChatEvent, None]:
        """
        Drive one session through the state machine, yielding outbound events.

        Closing this generator early (client gone) is treated as cancellation.
        """
        request = session.request
        start = time.monotonic()
        deltas = None

        try:
            # Cache fast path — bypasses the state machine entirely
            cached = await self.cache.get(request.cache_key)
            if cached is not None:
                logger.info("Cache hit: user=%s personality=%s", request.user_id, request.personality.value)
                session.cached = True
                if session.token.cancelled:
                    self._mark_cancelled(session)
                    return
                yield ChatEvent(EventKind.CHUNK, cached)
                if session.token.cancelled:
                    self._mark_cancelled(session)
                    return
                session.reply = cached
                session.state = RelayState.DONE
                yield ChatEvent(EventKind.DONE, self._done_payload(session))
                return

            # AWAITING_UPSTREAM
            session.state = RelayState.AWAITING_UPSTREAM
            deltas = llm.stream_completion(
                self.build_messages(request),
                self.temperature_for(request),
                session.token,
                client=self.client,
            )

            # STREAMING
            async for delta in deltas:
                session.state = RelayState.STREAMING
                if session.token.cancelled:
                    break
                session.buffer.append(delta)
                yield ChatEvent(EventKind.CHUNK, delta)

            if session.token.cancelled:
                self._mark_cancelled(session)
                return

            # COMPLETING
            session.state = RelayState.COMPLETING
            reply = "".join(session.buffer)
            if not reply.strip():
                logger.info("Empty reply from upstream (user=%s), using fallback", request.user_id)
                reply = FALLBACK_REPLY
                if session.token.cancelled:
                    self._mark_cancelled(session)
                    return
                yield ChatEvent(EventKind.CHUNK, reply)

            if session.token.cancelled:
                self._mark_cancelled(session)
                return

            self.memory.append(request.user_id, ConversationTurn(Role.USER, request.message))
            self.memory.append(request.user_id, ConversationTurn(Role.ASSISTANT, reply))
            await self.cache.put(request.cache_key, reply)

            session.reply = reply
            session.state = RelayState.DONE
            logger.info(
                "Chat done: user=%s personality=%s crisis=%s %dms reply=%d chars",
                request.user_id, request.personality.value, request.crisis,
                int((time.monotonic() - start) * 1000), len(reply),
            )
            yield ChatEvent(EventKind.DONE, self._done_payload(session))

        except ChatError as e:
            session.state = RelayState.FAILED
            logger.error("Chat failed (user=%s): %s", request.user_id, e.message)
            yield ChatEvent(EventKind.ERROR, e.message)

        except Exception as e:
            session.state = RelayState.FAILED
            logger.exception("Chat failed unexpectedly (user=%s): %s", request.user_id, e)
            yield ChatEvent(EventKind.ERROR, GENERIC_ERROR)

        finally:
            if session.state not in TERMINAL_STATES:
                self._mark_cancelled(session)
            if deltas is not None:
                await deltas.aclose()

    async def complete(self, session: StreamSession) -> dict:
        """
        Buffered variant of run(): same pipeline, one JSON-ready result.
        Raises ChatError if the run ends in an error event.
        """
        done: dict = {}
        async with aclosing(self.run(session)) as events:
            async for event in events:
                if event.kind is EventKind.ERROR:
                    raise ChatError(event.data, status_code=502)
                if event.kind is EventKind.DONE:
                    done = event.data
        return {"reply": session.reply, **done}

    # ── Helpers ──────────────────────────────────────────────────────

    def _done_payload(self, session: StreamSession) -> dict:
        return {
            "crisis": session.request.crisis,
            "personality": session.request.personality.value,
            "cached": session.cached,
        }

    def _mark_cancelled(self, session: StreamSession) -> None:
        session.token.cancel()
        session.state = RelayState.CANCELLED
        logger.info(
            "Chat cancelled: user=%s after %d chunks",
            session.request.user_id, len(session.buffer),
        )
