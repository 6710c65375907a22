from typing import AsyncIterator
from openai import AsyncOpenAI

from sourcechat.models.schemas import ProviderMessage
from sourcechat.services.providers.base import BaseLLMProvider, GenerationConfig, TokenUsage


class OpenAIProvider(BaseLLMProvider):
    def __init__(self, api_key: str, model: str = "gpt-4o"):
        super().__init__(model)
        self._client = AsyncOpenAI(api_key=api_key)

    def get_provider_name(self) -> str:
        return "openai"

    def build_request(self, messages: list[ProviderMessage], config: GenerationConfig) -> dict:
        # messages already match OpenAI's schema 1-for-1
        request = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": config.temperature,
        }
        if config.max_tokens is not None:
            request["max_tokens"] = config.max_tokens
        return request

    async def _stream(self, request: dict, usage: TokenUsage) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            **request,
            stream=True,
            stream_options={"include_usage": True},
        )
        try:
            async for chunk in stream:
                if chunk.usage:
                    usage.input_tokens = chunk.usage.prompt_tokens or 0
                    usage.output_tokens = chunk.usage.completion_tokens or 0
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        finally:
            await stream.close()

    async def _complete(self, request: dict, usage: TokenUsage) -> str:
        response = await self._client.chat.completions.create(**request, stream=False)
        if response.usage:
            usage.input_tokens = response.usage.prompt_tokens or 0
            usage.output_tokens = response.usage.completion_tokens or 0
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
