"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

SUPPORTED_LANGUAGES = ("en-US", "pt-BR")
DEFAULT_LANGUAGE = "en-US"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    extraction_max_retries: int = 2
    extraction_retry_delay_seconds: float = 2.0
    min_audio_bytes: int = 1000
    extraction_endpoint_url: str = "http://localhost:8000/api/process-audio"
    response_timeout_seconds: float | None = None
    preferred_language: str = DEFAULT_LANGUAGE
    supabase_url: str | None = None
    supabase_key: str | None = None
    nutrivoice_user_id: str | None = None
    local_cache_path: str = ".nutrivoice/cache.json"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def remote_storage_enabled(self) -> bool:
        """Return true when a hosted backend and a user identity are configured."""
        return bool(self.supabase_url and self.supabase_key and self.nutrivoice_user_id)


def parse_language(raw: str | None) -> str:
    """Normalize a preferred language to one of the supported locales."""
    if raw is None:
        return DEFAULT_LANGUAGE
    cleaned = raw.strip()
    for language in SUPPORTED_LANGUAGES:
        if cleaned.lower() == language.lower():
            return language
    return DEFAULT_LANGUAGE
