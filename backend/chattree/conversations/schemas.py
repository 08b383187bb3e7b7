"""Request and response schemas for conversation endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from chattree.generation.title import TITLE_MAX_LENGTH

# -- Requests --


class CreateConversationRequest(BaseModel):
    model: str | None = None
    preprompt: str | None = None
    title: str | None = None


class PatchConversationRequest(BaseModel):
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)

    @field_validator("title", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class GenerateRequest(BaseModel):
    """Request body for POST /api/conversations/{conversation_id}.

    ``id`` is the parent for a new message, or the message to retry or
    continue. ``files`` are base64 encoded.
    """

    inputs: str | None = None
    id: str | None = None
    is_retry: bool = False
    is_continue: bool = False
    web_search: bool = False
    tools: dict[str, bool] = Field(default_factory=dict)
    files: list[str] = Field(default_factory=list)

    @field_validator("inputs")
    @classmethod
    def _normalize_newlines(cls, value: str | None) -> str | None:
        return value.replace("\r\n", "\n") if value is not None else None


# -- Responses --


class ConversationSummary(BaseModel):
    id: str
    title: str
    model: str
    created_at: datetime
    updated_at: datetime


class SummarizeResponse(BaseModel):
    title: str


class ModelSummary(BaseModel):
    id: str
    name: str
    provider: str
    tools: bool
    available: bool
