"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config import DEFAULT_SESSION_ID


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend.

    ``message`` is optional at the schema level so the route can answer a
    missing message with a 400 ``{"error": ...}`` body instead of a 422.
    A missing, null or blank ``sessionId`` falls back to the default session.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str | None = Field(default=None, max_length=4000, description="The user's message")
    session_id: str = Field(
        default=DEFAULT_SESSION_ID,
        alias="sessionId",
        max_length=100,
        description="Session identifier for conversation continuity",
    )

    @field_validator("session_id", mode="before")
    @classmethod
    def default_blank_session(cls, value: str | None) -> str | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_SESSION_ID
        return value


class ChatResponse(BaseModel):
    """Response from the assistant."""

    model_config = ConfigDict(populate_by_name=True)

    response: str = Field(..., description="The assistant's reply")
    session_id: str = Field(..., alias="sessionId", description="The session ID for this conversation")


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "sonrisas-dental-assistant"
