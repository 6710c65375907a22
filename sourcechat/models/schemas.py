from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Provider messages ---
class ProviderMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


# --- Chat ---
class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., max_length=50000)
    source_ids: list[str] = Field(default_factory=list, alias="sourceIds")
    provider: Optional[str] = None

    @field_validator("content")
    @classmethod
    def _strip_content(cls, v: str) -> str:
        return v.strip()


class StoredMessage(BaseModel):
    id: str
    conversation_id: str
    role: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str


class Conversation(BaseModel):
    id: str
    user_id: str = ""
    title: str = "New Chat"
    created_at: str
    updated_at: str


# --- Streaming protocol ---
class EventType(str, Enum):
    USER_MESSAGE = "user_message"
    CONTEXT = "context"
    START = "start"
    DELTA = "delta"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})


class CitationEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_id: str = Field(alias="sourceId")
    chunk_id: str = Field(alias="chunkId")
    text: str
    start_time: Optional[float] = Field(default=None, alias="startTime")


class ProtocolEvent(BaseModel):
    """One server-push event. Serialized with camelCase names, None fields omitted."""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    type: EventType
    message_id: Optional[str] = Field(default=None, alias="messageId")
    content: Optional[str] = None
    chunks: Optional[int] = None
    references: Optional[list[dict[str, Any]]] = None
    citation_map: Optional[dict[str, CitationEntry]] = Field(default=None, alias="citationMap")
    model: Optional[str] = None
    token_count: Optional[int] = Field(default=None, alias="tokenCount")
    message: Optional[StoredMessage | str] = None

    @property
    def is_terminal(self) -> bool:
        return EventType(self.type) in TERMINAL_EVENTS

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# --- Providers ---
class ProviderInfo(BaseModel):
    id: str
    model: str


class ProviderListResponse(BaseModel):
    default: str
    providers: list[ProviderInfo]


# --- Suggestions ---
class SuggestionsResponse(BaseModel):
    suggestions: list[str]
    source: Literal["llm", "fallback"]


# --- Stop ---
class StopResponse(BaseModel):
    stopped: bool


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    active_sessions: int = 0
    open_connections: int = 0
