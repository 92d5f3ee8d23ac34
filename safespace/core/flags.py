"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Response cache ───────────────────────────────────────────────
    use_redis: bool = Field(default=False, alias="FF_USE_REDIS")
    # ON  → Cached replies live in Redis, shared by every worker. Needs REDIS_URL.
    # OFF → In-process LRU cache. Each worker keeps its own.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="openai", alias="FF_LLM_PROVIDER")
    # "openai" → OpenAI or any compatible endpoint (default). Needs OPENAI_API_KEY.
    # "gemini" → Google Gemini OpenAI-compatible endpoint. Needs GEMINI_API_KEY.
    # "aiml"   → AIML API proxy. Needs AIML_API_KEY.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
