import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable

from sourcechat.errors import GatewayError, InvalidRequest, ProviderError
from sourcechat.models.schemas import ProviderMessage

logger = logging.getLogger(__name__)

DeltaHandler = Callable[[str], None]


@dataclass
class GenerationConfig:
    temperature: float = 1.0
    stream: bool = True
    max_tokens: int | None = None


@dataclass
class TokenUsage:
    """Token accounting reported by the vendor for one generation."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def normalize_messages(messages: Iterable[ProviderMessage | dict]) -> list[ProviderMessage]:
    return [m if isinstance(m, ProviderMessage) else ProviderMessage(**m) for m in messages]


def split_system(messages: list[ProviderMessage]) -> tuple[str | None, list[ProviderMessage]]:
    """Pull the first system message out of the conversation.

    Only one system entry is meaningful per request; later ones are dropped.
    """
    system = None
    rest = []
    for m in messages:
        if m.role == "system":
            if system is None:
                system = m.content
            else:
                logger.warning("Dropping extra system message (%d chars)", len(m.content))
            continue
        rest.append(m)
    return system, rest


def validate_messages(messages: list[ProviderMessage]) -> None:
    _, rest = split_system(messages)
    if not rest:
        raise InvalidRequest("At least one non-system message is required")
    if rest[0].role == "assistant":
        raise InvalidRequest("The first non-system message must not be from the assistant")


class BaseLLMProvider(ABC):
    """One vendor's generation API behind the shared delta-callback contract.

    Subclasses only describe the vendor wire shape: how to build a request,
    how to iterate a streaming response and how to read a non-streaming one.
    Validation, empty-delta filtering and error mapping live here.
    """

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    def get_provider_name(self) -> str:
        ...

    @abstractmethod
    def build_request(self, messages: list[ProviderMessage], config: GenerationConfig) -> dict:
        """Translate normalized messages into vendor request kwargs."""
        ...

    @abstractmethod
    def _stream(self, request: dict, usage: TokenUsage) -> AsyncIterator[str]:
        """Yield text fragments as the vendor produces them, filling in usage."""
        ...

    @abstractmethod
    async def _complete(self, request: dict, usage: TokenUsage) -> str:
        ...

    async def stream_chat(
        self,
        messages: list[ProviderMessage | dict],
        on_delta: DeltaHandler,
        config: GenerationConfig | None = None,
    ) -> TokenUsage:
        config = config or GenerationConfig()
        messages = normalize_messages(messages)
        validate_messages(messages)

        request = self.build_request(messages, config)
        usage = TokenUsage()
        try:
            if config.stream:
                async for text in self._stream(request, usage):
                    if text:
                        on_delta(text)
            else:
                text = await self._complete(request, usage)
                if text:
                    on_delta(text)
        except asyncio.CancelledError:
            logger.info("%s generation cancelled", self.get_provider_name())
            raise
        except GatewayError:
            raise
        except Exception as e:
            logger.error("%s generation failed: %s", self.get_provider_name(), e, exc_info=True)
            raise ProviderError(self.get_provider_name(), str(e)) from e
        return usage
