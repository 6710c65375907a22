from typing import AsyncIterator
from google import genai
from google.genai import types

from sourcechat.models.schemas import ProviderMessage
from sourcechat.services.providers.base import (
    BaseLLMProvider, GenerationConfig, TokenUsage, split_system,
)


class GeminiProvider(BaseLLMProvider):
    def __init__(self, api_key: str, model: str = "gemini-2.5-pro"):
        super().__init__(model)
        self._client = genai.Client(api_key=api_key)

    def get_provider_name(self) -> str:
        return "google"

    def build_request(self, messages: list[ProviderMessage], config: GenerationConfig) -> dict:
        # Convert OpenAI-format messages to Gemini contents format
        system_instruction, chat_messages = split_system(messages)
        contents = [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part(text=m.content)],
            )
            for m in chat_messages
        ]

        gen_config = types.GenerateContentConfig(temperature=config.temperature)
        if config.max_tokens is not None:
            gen_config.max_output_tokens = config.max_tokens
        if system_instruction:
            gen_config.system_instruction = system_instruction

        return {"model": self.model, "contents": contents, "config": gen_config}

    @staticmethod
    def _record_usage(chunk, usage: TokenUsage) -> None:
        meta = getattr(chunk, "usage_metadata", None)
        if meta:
            usage.input_tokens = getattr(meta, "prompt_token_count", 0) or 0
            usage.output_tokens = getattr(meta, "candidates_token_count", 0) or 0

    async def _stream(self, request: dict, usage: TokenUsage) -> AsyncIterator[str]:
        # The async client keeps the request cancellable from the event loop
        stream = await self._client.aio.models.generate_content_stream(**request)
        try:
            async for chunk in stream:
                self._record_usage(chunk, usage)
                if chunk.text:
                    yield chunk.text
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _complete(self, request: dict, usage: TokenUsage) -> str:
        response = await self._client.aio.models.generate_content(**request)
        self._record_usage(response, usage)
        return response.text or ""
