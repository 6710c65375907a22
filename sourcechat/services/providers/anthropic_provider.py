from typing import AsyncIterator
from anthropic import AsyncAnthropic

from sourcechat.models.schemas import ProviderMessage
from sourcechat.services.providers.base import (
    BaseLLMProvider, GenerationConfig, TokenUsage, split_system,
)

DEFAULT_MAX_TOKENS = 8192


class AnthropicProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        super().__init__(model)
        self._client = AsyncAnthropic(api_key=api_key)
        self._default_max_tokens = default_max_tokens

    def get_provider_name(self) -> str:
        return "anthropic"

    def build_request(self, messages: list[ProviderMessage], config: GenerationConfig) -> dict:
        # Anthropic takes the system prompt as a separate field, not a message
        system_msg, chat_messages = split_system(messages)

        request = {
            "model": self.model,
            "temperature": config.temperature,
            "messages": [{"role": m.role, "content": m.content} for m in chat_messages],
            # Anthropic requires max_tokens on every request
            "max_tokens": (
                config.max_tokens if config.max_tokens is not None
                else self._default_max_tokens
            ),
        }
        if system_msg:
            request["system"] = system_msg
        return request

    async def _stream(self, request: dict, usage: TokenUsage) -> AsyncIterator[str]:
        async with self._client.messages.stream(**request) as stream:
            async for text in stream.text_stream:
                yield text

            final = await stream.get_final_message()
            usage.input_tokens = final.usage.input_tokens
            usage.output_tokens = final.usage.output_tokens

    async def _complete(self, request: dict, usage: TokenUsage) -> str:
        response = await self._client.messages.create(**request)
        usage.input_tokens = response.usage.input_tokens
        usage.output_tokens = response.usage.output_tokens
        return "".join(
            block.text for block in response.content if block.type == "text"
        )
