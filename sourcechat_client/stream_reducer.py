"""Folds stream events into immutable chat state.

``reduce`` never mutates its input. An event the protocol does not allow at
that point is logged and the incoming state is returned as-is; pass
``strict=True`` to get a ``ProtocolViolation`` instead.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Optional

from sourcechat_client.errors import ProtocolViolation
from sourcechat_client.events import EventType, StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Failed to generate response"


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str
    content: str
    created_at: Optional[str] = None
    is_streaming: bool = False
    model: Optional[str] = None
    token_count: Optional[int] = None
    citation_map: dict = field(default_factory=dict)


@dataclass(frozen=True)
class StreamingState:
    streaming_message_id: Optional[str] = None
    accumulated_content: str = ""
    is_streaming: bool = False
    last_error: Optional[str] = None


@dataclass(frozen=True)
class ChatState:
    messages: tuple = ()
    streaming: StreamingState = StreamingState()
    context_chunks: Optional[int] = None
    finished_ids: frozenset = frozenset()

    def find(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


def _replace_message(messages: tuple, message_id: str, new: Optional[ChatMessage]) -> tuple:
    """Swap (or drop, when ``new`` is None) the message with ``message_id``."""
    out = []
    for message in messages:
        if message.id != message_id:
            out.append(message)
        elif new is not None:
            out.append(new)
    return tuple(out)


def _require_active(state: ChatState, event: StreamEvent) -> str:
    streaming = state.streaming
    if not streaming.is_streaming:
        if event.message_id in state.finished_ids:
            raise ProtocolViolation(event.type, f"stream {event.message_id} already finished")
        raise ProtocolViolation(event.type, "no active stream")
    if event.message_id and event.message_id != streaming.streaming_message_id:
        raise ProtocolViolation(
            event.type,
            f"message id {event.message_id} does not match active stream "
            f"{streaming.streaming_message_id}",
        )
    return streaming.streaming_message_id


def _on_user_message(state: ChatState, event: StreamEvent) -> ChatState:
    payload = event.message
    if isinstance(payload, dict):
        message = ChatMessage(
            id=payload["id"],
            role=payload.get("role", "user"),
            content=payload.get("content", ""),
            created_at=payload.get("created_at"),
        )
    elif isinstance(payload, str):
        message = ChatMessage(id=f"local-{len(state.messages)}", role="user", content=payload)
    else:
        raise ProtocolViolation(event.type, "missing message payload")

    # The sender may already have added its own message optimistically
    if state.find(message.id) is not None:
        return state
    return replace(state, messages=state.messages + (message,))


def _on_context(state: ChatState, event: StreamEvent) -> ChatState:
    return replace(state, context_chunks=event.chunks or 0)


def _on_start(state: ChatState, event: StreamEvent) -> ChatState:
    if not event.message_id:
        raise ProtocolViolation(event.type, "missing messageId")
    if state.streaming.is_streaming:
        raise ProtocolViolation(
            event.type, f"stream {state.streaming.streaming_message_id} still active"
        )
    if event.message_id in state.finished_ids or state.find(event.message_id):
        raise ProtocolViolation(event.type, f"message {event.message_id} already exists")

    placeholder = ChatMessage(
        id=event.message_id,
        role="assistant",
        content="",
        is_streaming=True,
        model=event.model,
    )
    return replace(
        state,
        messages=state.messages + (placeholder,),
        streaming=StreamingState(
            streaming_message_id=event.message_id, accumulated_content="", is_streaming=True
        ),
    )


def _on_delta(state: ChatState, event: StreamEvent) -> ChatState:
    message_id = _require_active(state, event)
    if not event.content:
        return state

    accumulated = state.streaming.accumulated_content + event.content
    placeholder = state.find(message_id)
    messages = state.messages
    if placeholder is not None:
        messages = _replace_message(messages, message_id, replace(placeholder, content=accumulated))
    return replace(
        state,
        messages=messages,
        streaming=replace(state.streaming, accumulated_content=accumulated),
    )


def _on_complete(state: ChatState, event: StreamEvent) -> ChatState:
    message_id = _require_active(state, event)
    stored = event.message if isinstance(event.message, dict) else {}
    placeholder = state.find(message_id)

    if event.content is not None:
        content = event.content
    else:
        content = stored.get("content", state.streaming.accumulated_content)

    final = ChatMessage(
        id=stored.get("id", message_id),
        role="assistant",
        content=content,
        created_at=stored.get("created_at"),
        is_streaming=False,
        model=event.model or (placeholder.model if placeholder else None),
        token_count=event.token_count,
        citation_map=dict(event.citation_map or {}),
    )
    if placeholder is not None:
        messages = _replace_message(state.messages, message_id, final)
    else:
        messages = state.messages + (final,)
    return replace(
        state,
        messages=messages,
        streaming=StreamingState(),
        finished_ids=state.finished_ids | {message_id, final.id},
    )


def _on_error(state: ChatState, event: StreamEvent) -> ChatState:
    if event.message_id and event.message_id in state.finished_ids:
        raise ProtocolViolation(event.type, f"stream {event.message_id} already finished")
    active = state.streaming
    if active.is_streaming and event.message_id and event.message_id != active.streaming_message_id:
        raise ProtocolViolation(
            event.type,
            f"message id {event.message_id} does not match active stream {active.streaming_message_id}",
        )

    error = event.message if isinstance(event.message, str) and event.message else DEFAULT_ERROR
    message_id = state.streaming.streaming_message_id
    messages = state.messages
    finished = state.finished_ids
    if message_id:
        placeholder = state.find(message_id)
        if placeholder is not None:
            if placeholder.content:
                messages = _replace_message(messages, message_id, replace(placeholder, is_streaming=False))
            else:
                messages = _replace_message(messages, message_id, None)
        finished = finished | {message_id}
    return replace(
        state,
        messages=messages,
        streaming=StreamingState(last_error=error),
        finished_ids=finished,
    )


_HANDLERS: dict[EventType, Callable[[ChatState, StreamEvent], ChatState]] = {
    EventType.USER_MESSAGE: _on_user_message,
    EventType.CONTEXT: _on_context,
    EventType.START: _on_start,
    EventType.DELTA: _on_delta,
    EventType.COMPLETE: _on_complete,
    EventType.ERROR: _on_error,
}

_unhandled = set(EventType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No reducer handler for event types: {sorted(t.value for t in _unhandled)}")


def reduce(state: ChatState, event: StreamEvent, strict: bool = False) -> ChatState:
    handler = _HANDLERS[EventType(event.type)]
    try:
        return handler(state, event)
    except ProtocolViolation as violation:
        if strict:
            raise
        logger.warning("Ignoring out-of-order stream event: %s", violation)
        return state


def stop_streaming(state: ChatState) -> ChatState:
    """Close the active stream locally after the user pressed stop.

    Events that still arrive for the stopped message are then ignored.
    """
    message_id = state.streaming.streaming_message_id
    if not state.streaming.is_streaming or message_id is None:
        return state
    messages = state.messages
    placeholder = state.find(message_id)
    if placeholder is not None:
        messages = _replace_message(messages, message_id, replace(placeholder, is_streaming=False))
    return replace(
        state,
        messages=messages,
        streaming=StreamingState(last_error=state.streaming.last_error),
        finished_ids=state.finished_ids | {message_id},
    )


def consume_stream(
    events: Iterable[StreamEvent],
    state: Optional[ChatState] = None,
    strict: bool = False,
) -> ChatState:
    state = state if state is not None else ChatState()
    for event in events:
        state = reduce(state, event, strict=strict)
    return state
