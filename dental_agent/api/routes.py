"""FastAPI route definitions for the dental booking assistant."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from dental_agent.api.schemas import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    SessionRequest,
    SessionResponse,
)
from dental_agent.engine import ChatEngine, ChatTurnResult

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_CHUNK_SIZE = 3
STREAM_CHUNK_DELAY_SECONDS = 0.015


def _get_engine(request: Request) -> ChatEngine:
    """Retrieve the chat engine built during the FastAPI lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return engine


def _sse(payload: dict | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return f"data: {data}\n\n"


async def _stream_events(result: ChatTurnResult) -> AsyncIterator[str]:
    """Reply text in small chunks, then booking, buttons and ``[DONE]``."""
    for i in range(0, len(result.text), STREAM_CHUNK_SIZE):
        yield _sse({"content": result.text[i : i + STREAM_CHUNK_SIZE]})
        await asyncio.sleep(STREAM_CHUNK_DELAY_SECONDS)
    if result.booking:
        yield _sse({"booking": result.booking})
    if result.quick_replies:
        yield _sse({"quickReplies": result.quick_replies})
    yield _sse("[DONE]")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat/session", response_model=SessionResponse)
async def start_session(request: SessionRequest, http_request: Request):
    """Open a conversation and return the welcome message with main-menu buttons."""
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        started = await asyncio.to_thread(engine.start_session, request.language, request.source)
    except Exception as e:
        logger.exception("[%s] Error starting chat session", request_id)
        raise HTTPException(status_code=500, detail="An internal error occurred. Please try again.") from e
    return SessionResponse(
        session_id=started.session_id,
        reply=started.text,
        quick_replies=started.quick_replies,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message and get the full reply in one JSON response.

    The engine call is synchronous (database plus model round-trips), so
    it runs in a worker thread via ``asyncio.to_thread``.
    """
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            engine.process_message,
            request.session_id,
            request.message,
            request.language,
            request.source,
        )
    except Exception as e:
        # Full traceback in the logs only
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    logger.info("[%s] session=%s booking=%s", request_id, request.session_id, bool(result.booking))
    return ChatResponse(
        reply=result.text,
        session_id=request.session_id,
        quick_replies=result.quick_replies,
        booking=result.booking,
    )


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest, http_request: Request):
    """Same as ``/chat`` but delivered as Server-Sent Events.

    The whole turn completes before the first event; the text is then
    replayed in chunks.
    """
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            engine.process_message,
            request.session_id,
            request.message,
            request.language,
            request.source,
        )
    except Exception as e:
        logger.exception("[%s] Error processing streamed chat request", request_id)
        raise HTTPException(status_code=500, detail="Failed to process message.") from e

    return StreamingResponse(
        _stream_events(result),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
