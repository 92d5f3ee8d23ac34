"""
Chat API — streaming + buffered endpoints.

GET    /api/chat/stream        — Server-Sent Events (query params, EventSource friendly)
POST   /api/chat/stream        — Server-Sent Events (JSON body)
POST   /api/chat               — Buffered request/response
DELETE /api/memory/{user_id}   — Privacy reset: forget history + cached replies
GET    /api/personalities      — Selectable personalities
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..core.dependencies import get_cache, get_memory, get_relay
from ..core.errors import ChatError
from ..models.conversation import ChatEvent
from ..orchestrator.relay import ChatRelay, RelayRequest
from ..services.cache import ResponseCache
from ..services.llm import CancellationToken
from ..services.memory import ConversationMemory
from ..services.personalities import list_personalities

logger = logging.getLogger(__name__)

chat_router = APIRouter(tags=["chat"])

DISCONNECT_POLL_INTERVAL = 0.25


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Defaults let a missing field reach our own 400 instead of a 422
    user_id: str = Field(default="", alias="userId")
    message: str = ""
    personality: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    crisis: bool = False
    personality: str = ""
    cached: bool = False


def format_sse(event: ChatEvent) -> str:
    return f"event: {event.kind.value}\ndata: {json.dumps(event.data)}\n\n"


def _prepare(relay: ChatRelay, body: ChatRequest) -> RelayRequest:
    try:
        return relay.prepare(body.user_id, body.message, body.personality)
    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    """Cancel the session as soon as the client goes away."""
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling stream")
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


def _stream_response(request: Request, relay: ChatRelay, prepared: RelayRequest) -> StreamingResponse:
    """
    Events:
      event: chunk  data: "Hello"
      event: done   data: {"crisis": false, "personality": "calm_listener", "cached": false}
      event: error  data: "The support service is temporarily unavailable..."
    """
    session = relay.open_session(prepared)

    async def event_generator():
        watcher = asyncio.create_task(_watch_disconnect(request, session.token))
        events = relay.run(session)
        try:
            async for event in events:
                if session.token.cancelled:
                    break
                yield format_sse(event)
        finally:
            watcher.cancel()
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@chat_router.get("/chat/stream")
async def chat_stream_get(
    request: Request,
    user_id: str = Query(default="", alias="userId"),
    message: str = "",
    personality: Optional[str] = None,
    relay: ChatRelay = Depends(get_relay),
):
    """Stream a reply via Server-Sent Events. Query: userId, message, personality."""
    body = ChatRequest(user_id=user_id, message=message, personality=personality)
    return _stream_response(request, relay, _prepare(relay, body))


@chat_router.post("/chat/stream")
async def chat_stream_post(
    body: ChatRequest,
    request: Request,
    relay: ChatRelay = Depends(get_relay),
):
    """Stream a reply via Server-Sent Events. Body: {userId, message, personality}."""
    return _stream_response(request, relay, _prepare(relay, body))


@chat_router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    relay: ChatRelay = Depends(get_relay),
):
    """Send a message and wait for the whole reply."""
    prepared = _prepare(relay, body)
    try:
        result = await relay.complete(relay.open_session(prepared))
    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ChatResponse(**result)


@chat_router.delete("/memory/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_memory(
    user_id: str,
    memory: ConversationMemory = Depends(get_memory),
    cache: ResponseCache = Depends(get_cache),
):
    """Forget everything held for a user. Safe to call repeatedly."""
    memory.clear(user_id)
    await cache.invalidate_user(user_id)
    logger.info("Privacy reset for user=%s", user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@chat_router.get("/personalities")
async def personalities():
    return {"personalities": list_personalities()}
