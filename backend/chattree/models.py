"""Canonical data structures and generation event types for chattree.

Defined once here, referenced everywhere else. Conversations and messages are
the tree the core operates on; the event classes are the closed set of
progress updates a generation run emits and records on its target message.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


# ---------------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------------


class GenerationParameters(BaseModel):
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None
    max_new_tokens: int = 1024
    truncate: int | None = None  # word budget for the assembled turns
    stop: list[str] = Field(default_factory=list)


class ModelConfig(BaseModel):
    """Everything the core needs to know about one model. Passed explicitly."""

    id: str
    name: str | None = None
    provider: str = "anthropic"
    preprompt: str = ""
    preprompt_token: str = ""
    user_message_token: str = "<|user|>\n"
    user_message_end_token: str = ""
    assistant_message_token: str = "<|assistant|>\n"
    assistant_message_end_token: str = ""
    message_end_token: str = "</s>"
    context_token: str = "<|context|>"
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    tools: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id


# ---------------------------------------------------------------------------
# Web search records
# ---------------------------------------------------------------------------


class WebSearchSource(BaseModel):
    title: str
    link: str
    snippet: str = ""


class MessageWebSearch(BaseModel):
    prompt: str  # the question the search was run for
    searches: list[str] = Field(default_factory=list)  # every query tried, in order
    sources: list[WebSearchSource] = Field(default_factory=list)
    context: str = ""
    created_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Generation events, one class per (type, subtype)
# ---------------------------------------------------------------------------


class StatusUpdate(BaseModel):
    type: Literal["status"] = "status"
    status: Literal["started", "error", "title", "keep_alive"]
    message: str | None = None


class TitleUpdate(BaseModel):
    type: Literal["title"] = "title"
    title: str


class StreamUpdate(BaseModel):
    type: Literal["stream"] = "stream"
    token: str


class ToolParametersUpdate(BaseModel):
    type: Literal["tool"] = "tool"
    subtype: Literal["parameters"] = "parameters"
    uuid: str
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolMessageUpdate(BaseModel):
    type: Literal["tool"] = "tool"
    subtype: Literal["message"] = "message"
    uuid: str
    name: str
    message: str
    display: bool = True


class WebSearchMessageUpdate(BaseModel):
    type: Literal["web_search"] = "web_search"
    subtype: Literal["update"] = "update"
    message: str
    args: list[str] | None = None


class WebSearchErrorUpdate(BaseModel):
    type: Literal["web_search"] = "web_search"
    subtype: Literal["error"] = "error"
    message: str
    args: list[str] | None = None


class WebSearchSourcesUpdate(BaseModel):
    type: Literal["web_search"] = "web_search"
    subtype: Literal["sources"] = "sources"
    message: str
    sources: list[WebSearchSource]


class WebSearchFinalAnswerUpdate(BaseModel):
    type: Literal["web_search"] = "web_search"
    subtype: Literal["final_answer"] = "final_answer"
    web_search: MessageWebSearch


class FileUpdate(BaseModel):
    type: Literal["file"] = "file"
    sha: str


class FinalAnswerUpdate(BaseModel):
    type: Literal["final_answer"] = "final_answer"
    text: str
    interrupted: bool = False


ToolUpdate = Annotated[
    ToolParametersUpdate | ToolMessageUpdate,
    Field(discriminator="subtype"),
]

WebSearchUpdate = Annotated[
    WebSearchMessageUpdate
    | WebSearchErrorUpdate
    | WebSearchSourcesUpdate
    | WebSearchFinalAnswerUpdate,
    Field(discriminator="subtype"),
]

GenerationEvent = Annotated[
    StatusUpdate
    | TitleUpdate
    | StreamUpdate
    | ToolUpdate
    | WebSearchUpdate
    | FileUpdate
    | FinalAnswerUpdate,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Conversation tree
# ---------------------------------------------------------------------------


class Message(BaseModel):
    id: str = Field(default_factory=_new_id)
    role: MessageRole
    content: str = ""
    ancestors: list[str] = Field(default_factory=list)
    children: list[str] = Field(default_factory=list)  # cache, derivable from ancestors
    files: list[str] = Field(default_factory=list)
    updates: list[GenerationEvent] = Field(default_factory=list)  # never holds StreamUpdate
    interrupted: bool = False
    web_search: MessageWebSearch | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def parent_id(self) -> str | None:
        return self.ancestors[-1] if self.ancestors else None


class Conversation(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str = "New Chat"
    model: str
    preprompt: str | None = None
    assistant_id: str | None = None
    root_message_id: str | None = None
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
