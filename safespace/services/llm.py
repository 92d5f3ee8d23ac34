"""
Upstream LLM client — streaming chat completions over an OpenAI-compatible API.

Features:
  - Reusable client (connection pooling)
  - Incremental SSE decoding, safe across arbitrary chunk boundaries
  - Delta normalization (string or list-of-parts content → plain text)
  - Cooperative cancellation via CancellationToken
  - Structured logging

Exactly one request is made per call. There is no retry or provider fallback:
a partially streamed reply can't be taken back from the client.
"""

import json
import logging
import time
from typing import Any, AsyncGenerator, AsyncIterator, Optional

import httpx

from ..core.config import get_settings
from ..core.errors import ChatConfigurationError, UpstreamError
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

STREAM_DONE = "[DONE]"
UPSTREAM_UNAVAILABLE = "The support service is temporarily unavailable. Please try again in a moment."

# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=120, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Provider config ──────────────────────────────────────────────────

def get_provider_config(provider: Optional[str] = None) -> tuple[str, str, str]:
    """Returns (base_url, api_key, default_model) for a provider."""
    settings = get_settings()
    p = (provider or get_flags().llm_provider).lower()

    if p == "gemini":
        return (
            "https://generativelanguage.googleapis.com/v1beta/openai",
            settings.gemini_api_key,
            settings.default_llm_model,
        )
    elif p == "aiml":
        return settings.aiml_base_url, settings.aiml_api_key, settings.default_llm_model
    else:  # openai (default)
        return settings.openai_base_url, settings.openai_api_key, settings.default_llm_model


def ensure_configured(provider: Optional[str] = None) -> None:
    """Raise ChatConfigurationError if the active provider has no API key."""
    if not get_provider_config(provider)[1]:
        active = (provider or get_flags().llm_provider).lower()
        logger.error("No API key configured for LLM provider '%s'", active)
        raise ChatConfigurationError(f"{active.upper()}_API_KEY not configured")


# ── Cancellation ─────────────────────────────────────────────────────

class CancellationToken:
    """Set once when the client goes away. Checked, never awaited."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# ── Stream decoding ──────────────────────────────────────────────────

class StreamDecoder:
    """
    Splits decoded text into SSE records (blank-line delimited) and returns
    the `data:` payload of each complete record. Partial records stay
    buffered until their boundary arrives.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        payloads = []
        while "\n\n" in self._buffer:
            record, self._buffer = self._buffer.split("\n\n", 1)
            data = _record_data(record)
            if data is not None:
                payloads.append(data)
        return payloads

    def flush(self) -> list[str]:
        """Payload of a trailing record the upstream never terminated."""
        record, self._buffer = self._buffer, ""
        data = _record_data(record)
        return [data] if data is not None else []


def _record_data(record: str) -> Optional[str]:
    lines = []
    for line in record.split("\n"):
        if line.startswith("data:"):
            value = line[5:]
            lines.append(value[1:] if value.startswith(" ") else value)
    if not lines:
        return None
    return "\n".join(lines)


def parse_delta(data: str) -> Optional[str]:
    """
    Extract the text delta from one completion chunk.

    `choices[0].delta.content` is either a string or a list of parts
    (plain strings or {"text": ...} objects). Both come out as plain text;
    a chunk with no content is no delta. Raises ValueError on malformed
    JSON or when a level of the chunk has the wrong shape.
    """
    chunk = json.loads(data)
    if not isinstance(chunk, dict):
        raise ValueError(f"unexpected chunk type: {type(chunk).__name__}")

    choices = chunk.get("choices") or []
    if not isinstance(choices, list):
        raise ValueError(f"unexpected choices type: {type(choices).__name__}")
    if not choices:
        return None

    choice = choices[0] or {}
    if not isinstance(choice, dict):
        raise ValueError(f"unexpected choice type: {type(choice).__name__}")

    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise ValueError(f"unexpected delta type: {type(delta).__name__}")
    content = delta.get("content")

    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts) or None
    return None


# ── Streaming ────────────────────────────────────────────────────────

def build_payload(
    messages: list[dict],
    temperature: float,
    model: str,
) -> dict[str, Any]:
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "stream": True,
    }


async def stream_completion(
    messages: list[dict],
    temperature: float,
    token: CancellationToken,
    client: Optional[httpx.AsyncClient] = None,
    model: Optional[str] = None,
    provider: Optional[str] = None,
) -> AsyncGenerator[str, None]:
    """
    Stream a chat completion. Yields non-empty text deltas in upstream order.

    Stops quietly once `token` is cancelled. Malformed records are skipped.
    Raises ChatConfigurationError without an API key, UpstreamError on a
    non-2xx response or transport failure.
    """
    base_url, api_key, default_model = get_provider_config(provider)
    if not api_key:
        raise ChatConfigurationError("LLM API key not configured")

    payload = build_payload(messages, temperature, model or default_model)
    url = f"{base_url.rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    client = client or get_client()
    start = time.monotonic()
    total = 0
    skipped = 0

    logger.info("LLM stream start: model=%s messages=%d temperature=%.2f",
                payload["model"], len(messages), temperature)

    try:
        async with client.stream("POST", url, json=payload, headers=headers) as resp:
            if resp.status_code >= 400:
                error_body = await resp.aread()
                error_text = error_body.decode("utf-8", errors="replace")[:500]
                logger.error("LLM stream error %d (model=%s): %s",
                             resp.status_code, payload["model"], error_text)
                raise UpstreamError(UPSTREAM_UNAVAILABLE, upstream_status=resp.status_code)

            async for data in _iter_records(resp, token):
                if data.strip() == STREAM_DONE:
                    break
                try:
                    delta = parse_delta(data)
                except ValueError:
                    skipped += 1
                    logger.debug("LLM stream: skipping malformed record: %s", data[:200])
                    continue
                if token.cancelled:
                    break
                if delta:
                    total += len(delta)
                    yield delta

    except httpx.HTTPError as e:
        logger.warning("LLM stream network error (model=%s): %s", payload["model"], e)
        raise UpstreamError(UPSTREAM_UNAVAILABLE) from e

    logger.info(
        "LLM stream %s: %dms | content=%d chars | skipped=%d | model=%s",
        "cancelled" if token.cancelled else "done",
        int((time.monotonic() - start) * 1000), total, skipped, payload["model"],
    )


async def _iter_records(resp: httpx.Response, token: CancellationToken) -> AsyncIterator[str]:
    decoder = StreamDecoder()
    async for text in resp.aiter_text():
        if token.cancelled:
            return
        for data in decoder.feed(text):
            yield data
    for data in decoder.flush():
        yield data
