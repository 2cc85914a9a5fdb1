"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class QuickReply(BaseModel):
    """A clickable suggestion; ``value`` is sent back as the next message."""

    label: str
    value: str


class SessionRequest(BaseModel):
    language: str = Field("en", max_length=8, description="Language code, e.g. 'en' or 'nl'")
    source: str = Field("chat", max_length=30, description="Channel the patient is using")


class SessionResponse(BaseModel):
    session_id: str
    reply: str = Field(..., description="Welcome message")
    quick_replies: list[QuickReply] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique session identifier for conversation continuity",
    )
    language: str = Field("en", max_length=8)
    source: str = Field("chat", max_length=30)


class ChatResponse(BaseModel):
    """Response from the agent."""

    reply: str = Field(..., description="The agent's response message")
    session_id: str = Field(..., description="The session ID for this conversation")
    quick_replies: list[QuickReply] = Field(default_factory=list)
    booking: dict[str, Any] | None = Field(None, description="Set when this turn booked or moved an appointment")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "dental-agent"
