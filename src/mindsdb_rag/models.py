"""
Data models for the MindsDB RAG runtime.

Defines Pydantic models for chat sessions, conversation messages and
agent requests/responses.
"""

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class SessionContext(BaseModel):
    """Shopper context carried across a session."""

    preferences: dict[str, Any] = Field(default_factory=dict)
    purchase_history: list[Any] = Field(default_factory=list)
    current_cart: list[Any] = Field(default_factory=list)
    demographics: dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    """A message in a session's conversation history."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """A chat session stored in the session table."""

    session_id: str
    merchant_id: str
    user_id: str
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    context: SessionContext = Field(default_factory=SessionContext)
    created_at: datetime
    last_activity: datetime
    expires_at: int | None = None  # epoch seconds, mirrors the table's ttl attribute

    @property
    def duration_minutes(self) -> float:
        return (self.last_activity - self.created_at).total_seconds() / 60


class CreateSessionRequest(BaseModel):
    """Request to open a new session."""

    merchant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    context: SessionContext | None = None


class SessionContextUpdate(BaseModel):
    """Partial SessionContext; only the fields that are set get merged."""

    model_config = ConfigDict(extra="forbid")

    preferences: dict[str, Any] | None = None
    purchase_history: list[Any] | None = None
    current_cart: list[Any] | None = None
    demographics: dict[str, Any] | None = None


class UpdateSessionRequest(BaseModel):
    """Request to append a message and/or merge context into a session."""

    session_id: str
    merchant_id: str
    message: ConversationMessage | None = None
    context: SessionContextUpdate | None = None


class SessionStats(BaseModel):
    """Aggregate session figures for a merchant."""

    total_sessions: int = 0
    active_sessions: int = 0
    avg_session_duration: int = 0  # minutes


class ChatRequest(BaseModel):
    """Request model for a chat turn with the agent."""

    query: str = Field(..., min_length=1, max_length=4096)
    merchant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    session_id: str | None = None
    user_context: SessionContext | None = None


class ChatResponse(BaseModel):
    """Response model for a chat turn."""

    response: str
    session_id: str
    latency_ms: float
