import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    USER_MESSAGE = "user_message"
    CONTEXT = "context"
    START = "start"
    DELTA = "delta"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """A decoded server event. ``message`` is a stored-message dict or a plain string."""
    type: EventType
    message_id: Optional[str] = None
    content: Optional[str] = None
    chunks: Optional[int] = None
    references: Optional[list] = None
    citation_map: Optional[dict] = None
    model: Optional[str] = None
    token_count: Optional[int] = None
    message: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> "StreamEvent":
        return cls(
            type=EventType(data["type"]),
            message_id=data.get("messageId"),
            content=data.get("content"),
            chunks=data.get("chunks"),
            references=data.get("references"),
            citation_map=data.get("citationMap"),
            model=data.get("model"),
            token_count=data.get("tokenCount"),
            message=data.get("message"),
        )


def parse_event(data: str) -> Optional[StreamEvent]:
    """Decode one ``data:`` payload; malformed or unknown events are skipped."""
    try:
        return StreamEvent.from_dict(json.loads(data))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning("Skipping undecodable stream event (%s): %s", e, data[:200])
        return None
