import logging

from sourcechat.config import PROVIDER_ALIASES, Settings
from sourcechat.errors import ProviderError, UnsupportedProvider
from sourcechat.services.providers.base import BaseLLMProvider
from sourcechat.services.providers.openai_provider import OpenAIProvider
from sourcechat.services.providers.anthropic_provider import AnthropicProvider, DEFAULT_MAX_TOKENS
from sourcechat.services.providers.gemini_provider import GeminiProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Resolves a provider identifier to a configured adapter instance."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._providers: dict[str, BaseLLMProvider] = {}

    @staticmethod
    def canonical_name(provider_id: str) -> str:
        name = PROVIDER_ALIASES.get((provider_id or "").strip().lower())
        if not name:
            raise UnsupportedProvider(provider_id)
        return name

    def _build(self, name: str) -> BaseLLMProvider:
        api_key = self._settings.provider_api_key(name)
        if not api_key:
            raise ProviderError(
                name, f"Provider '{name}' not configured. Set the API key in .env for this provider."
            )
        model = self._settings.provider_model(name)
        if name == "openai":
            return OpenAIProvider(api_key, model=model)
        if name == "anthropic":
            max_tokens = self._settings.provider_config(name).get("max_tokens", DEFAULT_MAX_TOKENS)
            return AnthropicProvider(api_key, model=model, default_max_tokens=max_tokens)
        if name == "google":
            return GeminiProvider(api_key, model=model)
        raise UnsupportedProvider(name)

    def get(self, provider_id: str | None = None) -> BaseLLMProvider:
        name = self.canonical_name(provider_id or self._settings.default_provider)
        if name not in self._providers:
            self._providers[name] = self._build(name)
            logger.info("Initialized %s provider (model %s)", name, self._providers[name].model)
        return self._providers[name]

    def available_providers(self) -> list[dict]:
        """Return providers whose API keys are configured."""
        available = []
        for name in ("openai", "anthropic", "google"):
            if self._settings.provider_api_key(name):
                available.append({"id": name, "model": self._settings.provider_model(name)})
        return available
