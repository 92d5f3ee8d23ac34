import pytest
from fastapi.testclient import TestClient

from safespace.core import dependencies
from safespace.core.config import get_settings
from safespace.core.flags import get_flags
from safespace.factory import create_app
from safespace.orchestrator.relay import ChatRelay
from safespace.services.cache import InMemoryResponseCache
from safespace.services.memory import ConversationMemory


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    """Every test gets a configured provider and the in-memory cache."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm.test/v1")
    monkeypatch.setenv("FF_LLM_PROVIDER", "openai")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    get_settings.cache_clear()
    get_flags.cache_clear()
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()


@pytest.fixture
def memory():
    return ConversationMemory(limit=12)


@pytest.fixture
def cache():
    return InMemoryResponseCache(max_entries=200, ttl_seconds=300)


@pytest.fixture
def make_relay(memory, cache):
    def _make(upstream):
        return ChatRelay(memory=memory, cache=cache, client=upstream.client())
    return _make


@pytest.fixture
def make_client(memory, cache):
    """TestClient whose upstream is the given FakeUpstream."""
    def _make(upstream):
        app = create_app()
        app.dependency_overrides[dependencies.get_memory] = lambda: memory
        app.dependency_overrides[dependencies.get_cache] = lambda: cache
        client = upstream.client()
        app.dependency_overrides[dependencies.get_http_client] = lambda: client
        return TestClient(app)
    return _make

