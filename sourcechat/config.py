from pathlib import Path
from functools import lru_cache

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from pydantic import SecretStr


PROVIDER_ALIASES = {
    "openai": "openai",
    "anthropic": "anthropic",
    "claude": "anthropic",
    "google": "google",
    "gemini": "google",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API Keys
    openai_api_key: SecretStr = SecretStr("")
    anthropic_api_key: SecretStr = SecretStr("")
    google_api_key: SecretStr = SecretStr("")

    # Database
    database_url: str = "./data/sourcechat.db"

    # ChromaDB (written by the ingestion pipeline)
    chroma_persist_dir: str = "./data/vectorstore"
    chroma_collection: str = "source_chunks"

    # Server
    log_level: str = "INFO"

    # Auth
    access_code: str = ""

    # Deployment
    allowed_origins: str = ""

    # Loaded from YAML
    yaml_config: dict = {}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        yaml_path = Path(__file__).parent.parent / "config" / "settings.yaml"
        if yaml_path.exists():
            with open(yaml_path, "r", encoding="utf-8") as f:
                self.yaml_config = yaml.safe_load(f) or {}

    @property
    def providers_config(self) -> dict:
        return self.yaml_config.get("providers", {})

    @property
    def default_provider(self) -> str:
        return self.providers_config.get("default", "openai")

    def provider_config(self, provider: str) -> dict:
        return self.providers_config.get(provider, {}) or {}

    def provider_model(self, provider: str) -> str:
        defaults = {
            "openai": "gpt-4o",
            "anthropic": "claude-sonnet-4-20250514",
            "google": "gemini-2.5-pro",
        }
        return self.provider_config(provider).get("model", defaults.get(provider, ""))

    def provider_api_key(self, provider: str) -> str:
        keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        secret = keys.get(provider)
        return secret.get_secret_value() if secret else ""

    @property
    def chat_config(self) -> dict:
        return self.yaml_config.get("chat", {})

    @property
    def streaming_config(self) -> dict:
        return self.yaml_config.get("streaming", {})

    @property
    def suggestions_config(self) -> dict:
        return self.yaml_config.get("suggestions", {})

    @property
    def embedding_config(self) -> dict:
        return self.yaml_config.get("embedding", {})

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
