"""Configuration management for the Intake Kernel."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IntakeSettings(BaseSettings):
    """Runtime settings. Every field can be overridden through INTAKE_* env vars."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    db_path: str = Field(default=":memory:", alias="INTAKE_DB_PATH")

    # Versioning; both feed the ingestion idempotency key
    engine_version: str = Field(default="intake-brain-v3", alias="INTAKE_ENGINE_VERSION")
    ingestion_limits_version: str = Field(default="sync-v1", alias="INTAKE_INGESTION_LIMITS_VERSION")

    # Artifact fetch limits
    fetch_timeout_seconds: float = Field(default=8.0, alias="INTAKE_FETCH_TIMEOUT_SECONDS")
    max_fetch_bytes: int = Field(default=1_000_000, alias="INTAKE_MAX_FETCH_BYTES")
    max_redirects: int = Field(default=3, alias="INTAKE_MAX_REDIRECTS")
    min_extract_chars: int = Field(default=80, alias="INTAKE_MIN_EXTRACT_CHARS")
    user_agent: str = Field(default="intake-kernel/0.1 (+artifact-ingest)", alias="INTAKE_USER_AGENT")

    # Optional LLM collaborator
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="INTAKE_OPENAI_MODEL")
    embedding_model: str = Field(default="text-embedding-3-small", alias="INTAKE_EMBEDDING_MODEL")
    llm_timeout_seconds: float = Field(default=20.0, alias="INTAKE_LLM_TIMEOUT_SECONDS")

    log_level: str = Field(default="INFO", alias="INTAKE_LOG_LEVEL")

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache()
def get_settings() -> IntakeSettings:
    """Get cached settings instance."""
    return IntakeSettings()
