import asyncio

import httpx
import pytest

from safespace.core.errors import ChatConfigurationError, ChatError, ChatValidationError
from safespace.models.conversation import ChatEvent, ConversationTurn, EventKind, Role
from safespace.orchestrator.relay import FALLBACK_REPLY, RelayState
from safespace.services.personalities import CRISIS_INSTRUCTION, PersonalityId
from upstream import DONE, FakeUpstream, record, stream_of


def run(relay, user_id="u1", message="I feel anxious about work", personality=None, cancel_after=None):
    """Drive one session. Returns (session, [(kind, data), ...])."""
    async def scenario():
        session = relay.open_session(relay.prepare(user_id, message, personality))
        events = []
        async for event in relay.run(session):
            events.append((event.kind, event.data))
            if cancel_after is not None and len(events) >= cancel_after:
                session.cancel()
        return session, events

    return asyncio.run(scenario())


def chunks(events):
    return [data for kind, data in events if kind is EventKind.CHUNK]


# ── Live completion ──────────────────────────────────────────────────

def test_live_completion_commits_what_was_streamed(make_relay, memory, cache):
    upstream = FakeUpstream(stream_of("I'm ", "sorry ", "work feels heavy."))
    relay = make_relay(upstream)

    session, events = run(relay)

    assert events[-1] == (EventKind.DONE, {"crisis": False, "personality": "calm_listener", "cached": False})
    streamed = "".join(chunks(events))
    assert streamed == "I'm sorry work feels heavy."
    assert session.state is RelayState.DONE
    assert memory.get("u1") == [
        ConversationTurn(Role.USER, "I feel anxious about work"),
        ConversationTurn(Role.ASSISTANT, streamed),
    ]
    assert asyncio.run(cache.get("u1::calm_listener::I feel anxious about work")) == streamed


def test_request_carries_preamble_personality_history_and_turn(make_relay, memory):
    memory.append("u1", ConversationTurn(Role.USER, "earlier"))
    memory.append("u1", ConversationTurn(Role.ASSISTANT, "earlier reply"))
    upstream = FakeUpstream(stream_of("ok"))

    run(make_relay(upstream), message="new message", personality="cbt_helper")

    messages = upstream.payloads[0]["messages"]
    assert [m["role"] for m in messages] == ["system", "system", "user", "assistant", "user"]
    assert "SafeSpace" in messages[0]["content"]
    assert "CBT" in messages[1]["content"]
    assert messages[-1] == {"role": "user", "content": "new message"}
    assert upstream.payloads[0]["temperature"] == 0.9


def test_whitespace_reply_gets_single_fallback_chunk(make_relay, memory, cache):
    upstream = FakeUpstream(stream_of(" ", "\n"))

    session, events = run(make_relay(upstream))

    assert chunks(events) == [" ", "\n", FALLBACK_REPLY]
    assert chunks(events).count(FALLBACK_REPLY) == 1
    assert memory.get("u1")[-1] == ConversationTurn(Role.ASSISTANT, FALLBACK_REPLY)
    assert session.reply == FALLBACK_REPLY


def test_empty_stream_gets_fallback(make_relay):
    session, events = run(make_relay(FakeUpstream([DONE])))
    assert chunks(events) == [FALLBACK_REPLY]
    assert events[-1][0] is EventKind.DONE


@pytest.mark.parametrize("bad", [
    b"data: {oops\n\n",
    b'data: {"choices": "x"}\n\n',
    b'data: {"choices": [1]}\n\n',
    b'data: {"choices": [{"delta": "x"}]}\n\n',
])
def test_malformed_record_does_not_abort_stream(make_relay, bad):
    upstream = FakeUpstream([record("before "), bad, record("after"), DONE])
    session, events = run(make_relay(upstream))
    assert chunks(events) == ["before ", "after"]
    assert session.state is RelayState.DONE


# ── Cache ────────────────────────────────────────────────────────────

def test_cache_hit_replays_without_upstream_or_memory(make_relay, memory, cache):
    asyncio.run(cache.put("u1::calm_listener::I feel anxious about work", "cached reply"))
    upstream = FakeUpstream(stream_of("should not be used"))

    session, events = run(make_relay(upstream), message="  I feel anxious about work ")

    assert upstream.calls == 0
    assert events == [
        (EventKind.CHUNK, "cached reply"),
        (EventKind.DONE, {"crisis": False, "personality": "calm_listener", "cached": True}),
    ]
    assert memory.get("u1") == []
    assert session.state is RelayState.DONE


def test_cancel_during_cache_replay_stops_before_done(make_relay, cache):
    asyncio.run(cache.put("u1::calm_listener::I feel anxious about work", "cached reply"))

    session, events = run(make_relay(FakeUpstream()), cancel_after=1)

    assert events == [(EventKind.CHUNK, "cached reply")]
    assert session.state is RelayState.CANCELLED


def test_cancelled_session_replays_nothing(make_relay, cache):
    asyncio.run(cache.put("u1::calm_listener::hi", "cached reply"))
    relay = make_relay(FakeUpstream())

    async def scenario():
        session = relay.open_session(relay.prepare("u1", "hi"))
        session.cancel()
        return session, [event async for event in relay.run(session)]

    session, events = asyncio.run(scenario())
    assert events == []
    assert session.state is RelayState.CANCELLED


def test_second_identical_message_is_served_from_cache(make_relay):
    upstream = FakeUpstream(stream_of("first answer"))
    relay = make_relay(upstream)

    run(relay)
    _, events = run(relay)

    assert upstream.calls == 1
    assert chunks(events) == ["first answer"]
    assert events[-1][1]["cached"] is True


# ── Crisis ───────────────────────────────────────────────────────────

def test_crisis_overrides_personality_and_lowers_temperature(make_relay):
    upstream = FakeUpstream(stream_of("I'm here."))

    session, events = run(make_relay(upstream), message="I want to end my life", personality="motivation_coach")

    assert session.request.personality is PersonalityId.CRISIS_MODE
    assert events[-1] == (EventKind.DONE, {"crisis": True, "personality": "crisis_mode", "cached": False})
    payload = upstream.payloads[0]
    assert payload["temperature"] == 0.7
    assert {"role": "system", "content": CRISIS_INSTRUCTION} in payload["messages"]


# ── Failure and cancellation ─────────────────────────────────────────

def test_client_disconnect_mid_stream_commits_nothing(make_relay, memory, cache):
    upstream = FakeUpstream(stream_of("one ", "two ", "three"))

    session, events = run(make_relay(upstream), cancel_after=1)

    assert events == [(EventKind.CHUNK, "one ")]
    assert session.state is RelayState.CANCELLED
    assert memory.get("u1") == []
    assert len(cache) == 0


def test_closing_the_generator_counts_as_cancel(make_relay, memory, cache):
    upstream = FakeUpstream(stream_of("one ", "two"))
    relay = make_relay(upstream)

    async def scenario():
        session = relay.open_session(relay.prepare("u1", "hello"))
        events = relay.run(session)
        first = await events.__anext__()
        await events.aclose()
        return session, first

    session, first = asyncio.run(scenario())
    assert first.kind is EventKind.CHUNK
    assert session.state is RelayState.CANCELLED
    assert session.token.cancelled
    assert memory.get("u1") == []
    assert len(cache) == 0


def test_upstream_error_status_emits_single_error_event(make_relay, memory, cache):
    upstream = FakeUpstream([b"internal detail"], status_code=500)

    session, events = run(make_relay(upstream))

    assert len(events) == 1
    kind, message = events[0]
    assert kind is EventKind.ERROR
    assert "internal detail" not in message
    assert session.state is RelayState.FAILED
    assert memory.get("u1") == []
    assert len(cache) == 0


def test_transport_failure_after_partial_output(make_relay, memory, cache):
    async def flaky_body():
        yield record("partial ")
        raise httpx.ReadError("connection reset")

    class FlakyUpstream(FakeUpstream):
        def __call__(self, request):
            self.requests.append(request)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=flaky_body())

    session, events = run(make_relay(FlakyUpstream()))

    assert events[0] == (EventKind.CHUNK, "partial ")
    assert events[-1][0] is EventKind.ERROR
    assert [kind for kind, _ in events].count(EventKind.ERROR) == 1
    assert session.state is RelayState.FAILED
    assert memory.get("u1") == []
    assert len(cache) == 0


# ── INIT validation ──────────────────────────────────────────────────

@pytest.mark.parametrize("user_id,message", [("", "hi"), ("u1", ""), ("  ", "hi"), ("u1", "   "), (None, None)])
def test_prepare_rejects_missing_fields(make_relay, user_id, message):
    relay = make_relay(FakeUpstream())
    with pytest.raises(ChatValidationError) as exc:
        relay.prepare(user_id, message)
    assert exc.value.status_code == 400


def test_prepare_rejects_missing_credential(make_relay, monkeypatch):
    from safespace.core.config import get_settings

    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    relay = make_relay(FakeUpstream())
    with pytest.raises(ChatConfigurationError) as exc:
        relay.prepare("u1", "hi")
    assert exc.value.status_code == 500


def test_buffered_completion_matches_stream(make_relay, memory):
    upstream = FakeUpstream(stream_of("Take ", "a breath."))
    relay = make_relay(upstream)

    async def scenario():
        session = relay.open_session(relay.prepare("u1", "hi"))
        return await relay.complete(session)

    result = asyncio.run(scenario())
    assert result == {"reply": "Take a breath.", "crisis": False, "personality": "calm_listener", "cached": False}
    assert memory.get("u1")[-1].content == "Take a breath."


def test_buffered_completion_closes_the_run_on_error(make_relay):
    relay = make_relay(FakeUpstream())
    closed = []

    async def failing_run(session):
        try:
            yield ChatEvent(EventKind.ERROR, "unavailable")
            yield ChatEvent(EventKind.DONE, {})
        finally:
            closed.append(True)

    relay.run = failing_run

    async def scenario():
        session = relay.open_session(relay.prepare("u1", "hi"))
        with pytest.raises(ChatError) as exc:
            await relay.complete(session)
        return exc.value.status_code, list(closed)

    assert asyncio.run(scenario()) == (502, [True])
