"""One chat turn from request to final message.

A ``StreamSession`` asks a provider for a reply, pushes every fragment to the
conversation's connections as it arrives, and stores the finished message.
The ``SessionManager`` allows one live session per conversation and owns the
asyncio task each session runs in, which is also how sessions get cancelled.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sourcechat.errors import ConversationBusy, GatewayError, InvalidRequest, ProviderError
from sourcechat.models.schemas import EventType, ProtocolEvent, ProviderMessage, StoredMessage
from sourcechat.services.citations import CitationInfo, build_citations, resolve_citation_map
from sourcechat.services.connection_registry import ConnectionRegistry, SSEConnection
from sourcechat.services.message_store import MessageStore
from sourcechat.services.prompts import build_system_prompt
from sourcechat.services.providers.base import BaseLLMProvider, GenerationConfig, TokenUsage
from sourcechat.services.retrieval import RetrievedChunk, SourceRetriever

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Response generation was stopped."


class SessionState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})


@dataclass
class TurnRequest:
    conversation_id: str
    content: str
    source_ids: list[str] = field(default_factory=list)


@dataclass
class TurnOptions:
    history_limit: int = 10
    retrieval_k: int = 3
    temperature: float = 0.7
    max_tokens: Optional[int] = None


class StreamSession:
    def __init__(
        self,
        request: TurnRequest,
        provider: BaseLLMProvider,
        registry: ConnectionRegistry,
        store: MessageStore,
        retriever: Optional[SourceRetriever] = None,
        options: Optional[TurnOptions] = None,
        origin: Optional[SSEConnection] = None,
    ):
        self.request = request
        self.conversation_id = request.conversation_id
        self.state = SessionState.IDLE
        self.message_id: Optional[str] = None
        self.stored_message: Optional[StoredMessage] = None

        self._provider = provider
        self._registry = registry
        self._store = store
        self._retriever = retriever
        self._options = options or TurnOptions()
        # the connection that requested this turn; it ends with the turn
        self._origin = origin
        self._parts: list[str] = []
        self._citations: list[CitationInfo] = []
        self._messages: list[ProviderMessage] = []

    @property
    def accumulated_text(self) -> str:
        return "".join(self._parts)

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    # --- event plumbing ---

    def _emit(self, event: ProtocolEvent) -> None:
        if self.is_finished:
            logger.debug("Suppressing %s event for finished session %s", event.type, self.message_id)
            return
        self._registry.broadcast(self.conversation_id, event)

    def _finish(self, state: SessionState) -> None:
        self.state = state
        if state is not SessionState.COMPLETED:
            self._parts.clear()
        if self._origin is not None:
            self._origin.close()

    def _fail(self, public_message: str, state: SessionState = SessionState.FAILED) -> None:
        if self.is_finished:
            return
        self._emit(ProtocolEvent(type=EventType.ERROR, message_id=self.message_id, message=public_message))
        self._finish(state)

    def _on_delta(self, text: str) -> None:
        if self.state is not SessionState.STREAMING:
            return
        self._parts.append(text)
        self._emit(ProtocolEvent(type=EventType.DELTA, message_id=self.message_id, content=text))

    # --- lifecycle ---

    async def run(self) -> Optional[StoredMessage]:
        if self.state is not SessionState.IDLE:
            raise RuntimeError("A stream session can only run once")
        try:
            await self._dispatch()

            self.state = SessionState.STREAMING
            usage = await self._provider.stream_chat(
                self._messages,
                self._on_delta,
                GenerationConfig(
                    temperature=self._options.temperature,
                    stream=True,
                    max_tokens=self._options.max_tokens,
                ),
            )
            # the reply is generated; from here the turn runs to completion
            self.state = SessionState.FINALIZING
            return await self._complete(usage)

        except asyncio.CancelledError:
            if not self.is_finished:
                logger.info("Session %s for conversation %s cancelled", self.message_id, self.conversation_id)
                self._fail(CANCELLED_MESSAGE, state=SessionState.CANCELLED)
            raise
        except GatewayError as e:
            logger.warning("Session %s for conversation %s failed: %s", self.message_id, self.conversation_id, e)
            self._fail(e.public_message)
        except Exception:
            logger.exception("Session %s for conversation %s crashed", self.message_id, self.conversation_id)
            self._fail(GatewayError.public_message)
        return None

    async def _dispatch(self) -> None:
        content = self.request.content.strip()
        if not content:
            raise InvalidRequest("Message content is required")

        user_message = await self._store.persist_message(
            self.conversation_id, "user", content, {"sourceIds": list(self.request.source_ids)},
        )
        self._emit(ProtocolEvent(type=EventType.USER_MESSAGE, message=user_message))

        chunks = await self._retrieve(content)
        context_lines, self._citations = build_citations(chunks)
        self._emit(ProtocolEvent(
            type=EventType.CONTEXT,
            chunks=len(chunks),
            references=[
                {
                    "label": info.label,
                    "sourceId": info.chunk.source_id,
                    "chunkId": info.chunk.chunk_id,
                    "startTime": info.chunk.start_time,
                }
                for info in self._citations
            ],
        ))

        history = await self._store.list_messages(self.conversation_id, limit=self._options.history_limit)
        self._messages = self._build_messages(build_system_prompt(context_lines, self._citations), history)

        self.message_id = str(uuid.uuid4())
        self.state = SessionState.DISPATCHED
        self._emit(ProtocolEvent(type=EventType.START, message_id=self.message_id, model=self._provider.model))

    async def _retrieve(self, query: str) -> list[RetrievedChunk]:
        if self._retriever is None or not self.request.source_ids:
            return []
        try:
            return await self._retriever.retrieve(query, self.request.source_ids, self._options.retrieval_k)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # answer without sources rather than failing the turn
            logger.warning("Retrieval failed for conversation %s: %s", self.conversation_id, e)
            return []

    @staticmethod
    def _build_messages(system_prompt: str, history: list[StoredMessage]) -> list[ProviderMessage]:
        turns = [
            ProviderMessage(role=m.role, content=m.content)
            for m in history
            if m.role in ("user", "assistant") and m.content
        ]
        # providers reject a conversation that opens with the assistant
        while turns and turns[0].role == "assistant":
            turns.pop(0)
        return [ProviderMessage(role="system", content=system_prompt)] + turns

    async def _complete(self, usage: TokenUsage) -> StoredMessage:
        text = self.accumulated_text
        if not text.strip():
            raise ProviderError(self._provider.get_provider_name(), "empty response")

        citation_map = resolve_citation_map(text, self._citations) if self._citations else {}
        persist = asyncio.ensure_future(self._store.persist_message(
            self.conversation_id,
            "assistant",
            text,
            {
                "model": self._provider.model,
                "provider": self._provider.get_provider_name(),
                "tokenCount": usage.total_tokens,
                "citationMap": {
                    label: entry.model_dump(by_alias=True, exclude_none=True)
                    for label, entry in citation_map.items()
                },
                "sourceIds": list(self.request.source_ids),
            },
        ))
        try:
            stored = await asyncio.shield(persist)
        except asyncio.CancelledError:
            # a committed row must still be announced with complete
            stored = await persist
            self._publish(stored, usage, citation_map)
            raise
        self._publish(stored, usage, citation_map)
        return stored

    def _publish(self, stored: StoredMessage, usage: TokenUsage, citation_map: dict) -> None:
        self.stored_message = stored
        self._emit(ProtocolEvent(
            type=EventType.COMPLETE,
            message_id=self.message_id,
            content=stored.content,
            message=stored,
            model=self._provider.model,
            token_count=usage.total_tokens,
            citation_map=citation_map,
        ))
        self._finish(SessionState.COMPLETED)
        logger.info(
            "Session %s completed: %d chars, %d tokens, %d citations",
            self.message_id, len(stored.content), usage.total_tokens, len(citation_map),
        )


class SessionManager:
    """Keeps at most one running session per conversation."""

    def __init__(self):
        self._active: dict[str, tuple[StreamSession, asyncio.Task]] = {}

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    @property
    def active_count(self) -> int:
        return len(self._active)

    def start(self, session: StreamSession) -> asyncio.Task:
        cid = session.conversation_id
        if cid in self._active:
            raise ConversationBusy(cid)
        task = asyncio.create_task(session.run(), name=f"stream-session-{cid}")
        self._active[cid] = (session, task)
        task.add_done_callback(lambda t: self._release(cid, t))
        return task

    def _release(self, conversation_id: str, task: asyncio.Task) -> None:
        entry = self._active.get(conversation_id)
        if entry is not None and entry[1] is task:
            del self._active[conversation_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session task for %s raised", conversation_id, exc_info=task.exception())

    def cancel(self, conversation_id: str, session: Optional[StreamSession] = None) -> bool:
        """Cancel the running session, optionally only if it is ``session``.

        A session that is already storing its reply is left to finish.

        The conversation is free for a new session as soon as this returns.
        """
        entry = self._active.get(conversation_id)
        if entry is None:
            return False
        active, task = entry
        if session is not None and active is not session:
            return False
        if active.is_finished or active.state is SessionState.FINALIZING:
            return False
        del self._active[conversation_id]
        task.cancel()
        return True

    async def cancel_all(self) -> None:
        entries = list(self._active.values())
        self._active.clear()
        for _, task in entries:
            task.cancel()
        if entries:
            await asyncio.gather(*(task for _, task in entries), return_exceptions=True)
