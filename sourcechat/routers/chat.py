import logging

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from sourcechat.config import Settings
from sourcechat.dependencies import (
    get_app_settings, get_connection_registry, get_identity, get_message_store,
    get_provider_factory, get_retriever, get_session_manager,
)
from sourcechat.errors import ConversationBusy, ConversationNotFound, InvalidRequest
from sourcechat.models.schemas import Conversation, SendMessageRequest, StopResponse
from sourcechat.services.auth import Identity
from sourcechat.services.connection_registry import DEFAULT_QUEUE_SIZE, ConnectionRegistry, SSEConnection
from sourcechat.services.message_store import MessageStore
from sourcechat.services.providers.factory import ProviderFactory
from sourcechat.services.stream_session import SessionManager, StreamSession, TurnOptions, TurnRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chats", tags=["chat"])


async def load_conversation(chat_id: str, identity: Identity, store: MessageStore) -> Conversation:
    conv = await store.get_conversation(chat_id)
    if conv is None:
        raise ConversationNotFound(chat_id)
    # chats owned by someone else look exactly like missing ones
    if conv.user_id and not identity.anonymous and conv.user_id != identity.user_id:
        raise ConversationNotFound(chat_id)
    return conv


def _turn_options(settings: Settings) -> TurnOptions:
    chat_cfg = settings.chat_config
    return TurnOptions(
        history_limit=chat_cfg.get("history_limit", 10),
        retrieval_k=chat_cfg.get("retrieval_k", 3),
        temperature=chat_cfg.get("temperature", 0.7),
        max_tokens=chat_cfg.get("max_tokens"),
    )


def _open_connection(chat_id: str, settings: Settings, label: str) -> SSEConnection:
    return SSEConnection(
        chat_id,
        max_queue=settings.streaming_config.get("queue_size", DEFAULT_QUEUE_SIZE),
        label=label,
    )


def _event_response(conn: SSEConnection, settings: Settings) -> EventSourceResponse:
    return EventSourceResponse(
        conn.encoded_frames(),
        ping=settings.streaming_config.get("ping_seconds", 15),
    )


@router.post("/{chat_id}/stream")
async def stream_message(
    chat_id: str,
    request: SendMessageRequest,
    identity: Identity = Depends(get_identity),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    sessions: SessionManager = Depends(get_session_manager),
    providers: ProviderFactory = Depends(get_provider_factory),
    store: MessageStore = Depends(get_message_store),
    retriever=Depends(get_retriever),
    settings: Settings = Depends(get_app_settings),
):
    """Start a chat turn and stream its events back over SSE."""
    if not request.content:
        raise InvalidRequest("Message content is required")
    await load_conversation(chat_id, identity, store)
    provider = providers.get(request.provider)
    if sessions.is_busy(chat_id):
        raise ConversationBusy(chat_id)

    conn = _open_connection(chat_id, settings, label=f"turn:{chat_id}")
    session = StreamSession(
        TurnRequest(chat_id, request.content, request.source_ids),
        provider=provider,
        registry=registry,
        store=store,
        retriever=retriever,
        options=_turn_options(settings),
        origin=conn,
    )
    registry.attach(chat_id, conn)
    # the requesting client hanging up stops generation
    conn.on_close(lambda _: sessions.cancel(chat_id, session))
    sessions.start(session)

    logger.info(
        "Streaming turn for chat %s via %s (%d sources)",
        chat_id, provider.get_provider_name(), len(request.source_ids),
    )
    return _event_response(conn, settings)


@router.get("/{chat_id}/events")
async def listen(
    chat_id: str,
    identity: Identity = Depends(get_identity),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    store: MessageStore = Depends(get_message_store),
    settings: Settings = Depends(get_app_settings),
):
    """Attach a passive listener to every turn of a chat."""
    await load_conversation(chat_id, identity, store)
    conn = _open_connection(chat_id, settings, label=f"listener:{chat_id}")
    registry.attach(chat_id, conn)
    return _event_response(conn, settings)


@router.post("/{chat_id}/stop", response_model=StopResponse)
async def stop_streaming(
    chat_id: str,
    identity: Identity = Depends(get_identity),
    sessions: SessionManager = Depends(get_session_manager),
    store: MessageStore = Depends(get_message_store),
):
    await load_conversation(chat_id, identity, store)
    stopped = sessions.cancel(chat_id)
    if stopped:
        logger.info("Stopped active turn for chat %s", chat_id)
    return StopResponse(stopped=stopped)
