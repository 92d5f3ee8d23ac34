"""
FastAPI dependencies. Injected into route handlers.

Tests swap any of these via app.dependency_overrides.
"""

import httpx
from fastapi import Depends

from ..orchestrator.relay import ChatRelay
from ..services.cache import ResponseCache, get_cache as _get_cache
from ..services.llm import get_client
from ..services.memory import ConversationMemory, get_memory as _get_memory
from .config import get_settings


def get_memory() -> ConversationMemory:
    """Process-wide conversation memory."""
    return _get_memory()


def get_cache() -> ResponseCache:
    """Process-wide response cache (in-memory or Redis, per FF_USE_REDIS)."""
    return _get_cache()


def get_http_client() -> httpx.AsyncClient:
    """Shared upstream HTTP client."""
    return get_client()


def get_relay(
    memory: ConversationMemory = Depends(get_memory),
    cache: ResponseCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ChatRelay:
    return ChatRelay(memory=memory, cache=cache, client=client, settings=get_settings())
