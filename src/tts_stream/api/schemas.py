"""
API Request/Response Schemas.

Pydantic models for the session endpoints. They provide request
validation, JSON serialization and OpenAPI documentation.

Models:
    SessionRequest: Input schema for POST /v1/session
    SessionAck: Response of control endpoints (pause, resume, ...)
    SkipCredentialResponse: Response of POST /v1/session/skip-credential
    CredentialsUpdate: Input schema for PUT /v1/session/credentials
    CredentialsResponse: Response of PUT /v1/session/credentials

Example Request:
    {
        "text": "Once upon a time, in a land far away...",
        "voice": "Kore",
        "style": "Storyteller",
        "language": "en"
    }
"""
from __future__ import annotations

from pydantic import BaseModel, Field

# A long chapter; anything larger should be split by the caller
MAX_TEXT_CHARS = 200_000


class SessionRequest(BaseModel):
    """
    Start-session request.

    Attributes:
        text: The text to read. 1-200000 characters.
        voice: Prebuilt voice name (Puck, Kore, Charon, Fenrir, Aoede).
            If None, uses the default from settings.
        style: Style preset label ("Storyteller", "News Anchor",
            "Excited", "Whisper") or a free-text instruction.
        language: Language code (en, hi, hinglish).
    """
    text: str = Field(
        ...,
        min_length=1,
        max_length=MAX_TEXT_CHARS,
        description="Text to read (1-200000 characters)",
    )
    voice: str | None = Field(
        default=None,
        description="Prebuilt voice name",
    )
    style: str | None = Field(
        default=None,
        max_length=500,
        description="Style preset label or free-text instruction",
    )
    language: str | None = Field(
        default=None,
        description="Language code (en, hi, hinglish)",
    )


class SessionAck(BaseModel):
    """Acknowledgment of a control operation."""
    ok: bool = Field(default=True)
    session_id: str = Field(..., description="Current session identifier")
    status: str = Field(..., description="Session status after the operation")
    message: str = Field(default="", description="Latest status line")


class SkipCredentialResponse(BaseModel):
    ok: bool = Field(default=True)
    skipped: str = Field(..., description="Masked credential put on cooldown")


class CredentialsUpdate(BaseModel):
    """
    Mid-session credential swap and/or rate-limit change.

    Attributes:
        keys: Replacement API keys, in preference order. Keys kept from
            the previous set keep their usage history.
        requests_per_minute: New per-key request limit.
    """
    keys: list[str] | None = Field(
        default=None,
        min_length=1,
        description="Replacement API keys",
    )
    requests_per_minute: int | None = Field(
        default=None,
        ge=1,
        description="Requests allowed per key per window",
    )


class CredentialsResponse(BaseModel):
    ok: bool = Field(default=True)
    credentials: int = Field(..., description="Number of keys now configured")
    requests_per_minute: int = Field(..., description="Per-key limit now in force")
