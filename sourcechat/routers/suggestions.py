"""Follow-up question suggestions for a chat, generated from its recent history."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from sourcechat.config import Settings
from sourcechat.dependencies import (
    get_app_settings, get_identity, get_message_store, get_provider_factory,
)
from sourcechat.errors import GatewayError
from sourcechat.models.schemas import ProviderMessage, StoredMessage, SuggestionsResponse
from sourcechat.routers.chat import load_conversation
from sourcechat.services.auth import Identity
from sourcechat.services.message_store import MessageStore
from sourcechat.services.prompts import SUGGESTIONS_SYSTEM_PROMPT
from sourcechat.services.providers.base import GenerationConfig
from sourcechat.services.providers.factory import ProviderFactory
from sourcechat.services.structured import FieldConstraint, parse_structured, sanitize_fields

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chats", tags=["suggestions"])

_NUM_MESSAGES = 6  # how much recent history the model sees

_FALLBACK_SUGGESTIONS = [
    "Summarize the key points of my sources",
    "What are the most important takeaways?",
    "Which parts of the sources disagree?",
    "What should I look into next?",
]


def _transcript(messages: list[StoredMessage]) -> str:
    lines = []
    for m in messages:
        speaker = "User" if m.role == "user" else "Assistant"
        lines.append(f"{speaker}: {m.content[:600]}")
    return "\n".join(lines)


def _question_list(count: int, max_length: int):
    def transform(value) -> list[str]:
        if not isinstance(value, list):
            return []
        questions = [q.strip()[:max_length] for q in value if isinstance(q, str) and q.strip()]
        return questions[:count]
    return transform


@router.get("/{chat_id}/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(
    chat_id: str,
    provider: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    store: MessageStore = Depends(get_message_store),
    providers: ProviderFactory = Depends(get_provider_factory),
    settings: Settings = Depends(get_app_settings),
):
    """Return follow-up questions, or a fixed list whenever generation falls short."""
    await load_conversation(chat_id, identity, store)

    cfg = settings.suggestions_config
    count = cfg.get("count", 4)
    max_length = cfg.get("max_length", 120)
    timeout = cfg.get("timeout_seconds", 5.0)
    fallback = SuggestionsResponse(suggestions=_FALLBACK_SUGGESTIONS[:count], source="fallback")

    history = await store.list_messages(chat_id, limit=_NUM_MESSAGES)
    if not history:
        return fallback

    messages = [
        ProviderMessage(
            role="system",
            content=SUGGESTIONS_SYSTEM_PROMPT.format(n=count, max_length=max_length),
        ),
        ProviderMessage(
            role="user",
            content=f"Recent conversation:\n{_transcript(history)}\n\nSuggest {count} follow-up questions.",
        ),
    ]

    text_parts: list[str] = []
    try:
        llm = providers.get(provider)
        await asyncio.wait_for(
            llm.stream_chat(
                messages,
                text_parts.append,
                GenerationConfig(temperature=0.9, stream=False, max_tokens=300),
            ),
            timeout=timeout,
        )
        result = parse_structured("".join(text_parts), fallback={"questions": []})
        record = sanitize_fields(
            result.data,
            {"questions": FieldConstraint(required=True, transform=_question_list(count, max_length))},
        )
    except asyncio.TimeoutError:
        logger.info("Suggestions call timed out after %.1fs", timeout)
        return fallback
    except GatewayError as e:
        logger.warning("Suggestions generation failed: %s", e)
        return fallback

    if not result.success or not record["questions"]:
        logger.warning("Model returned unusable suggestions: %s", (result.raw_text or "")[:200])
        return fallback
    return SuggestionsResponse(suggestions=record["questions"], source="llm")
