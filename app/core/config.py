# python
# app/core/config.py
"""Configuration settings for the chat completion gateway.

Uses Pydantic BaseSettings for environment variable management. A single
``settings`` instance is built at import time and handed explicitly to every
adapter, retriever and service constructor.
"""
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Chat Completion Gateway", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Gemini Provider =====
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    gemini_base_url: str = Field(
        default="generativelanguage.googleapis.com", description="Gemini API endpoint"
    )
    gemini_model: str = Field(default="gemini-2.0-flash", description="Default Gemini model")
    gemini_fallback_model: str = Field(
        default="gemini-1.5-flash", description="Gemini model used when the requested one is missing"
    )
    gemini_max_tokens: int = Field(default=2048, description="Maximum output tokens for Gemini")

    # ===== Ollama Provider =====
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    ollama_model: str = Field(default="llama3.2", description="Default Ollama model")
    ollama_fallback_model: str = Field(
        default="llama3", description="Ollama model used when the requested one is missing"
    )
    ollama_max_tokens: int | None = Field(default=None, description="num_predict sent to Ollama")
    ollama_system_prompt: str | None = Field(
        default="You are a helpful assistant. Answer clearly and concisely.",
        description="System turn prepended to every Ollama request",
    )

    # ===== Completion Behaviour =====
    ai_temperature: float = Field(default=0.7, description="Sampling temperature")
    ai_request_timeout: float = Field(default=30, description="Buffered completion timeout in seconds")
    ai_stream_idle_timeout: float = Field(
        default=60, description="Maximum silence between two streamed chunks in seconds"
    )
    model_list_timeout: float = Field(default=5, description="Model listing probe timeout in seconds")
    model_list_cache_ttl: float = Field(
        default=60, description="Seconds a model list is reused; 0 disables caching"
    )

    # ===== Retrieval (RAG) Service =====
    rag_service_url: str | None = Field(default=None, description="Preferred retrieval service URL")
    rag_fallback_urls: str = Field(
        default="http://rag-service:8001,http://localhost:8001,http://127.0.0.1:8001",
        description="Fallback retrieval service URLs (comma-separated, tried in order)",
    )
    rag_query_path: str = Field(default="/query", description="Retrieval query endpoint path")
    rag_timeout: float = Field(default=3, description="Per-candidate retrieval timeout in seconds")
    rag_query_limit: int = Field(default=8, description="Number of chunks requested from the service")
    rag_max_chunks: int = Field(default=5, description="Maximum chunks injected into a prompt")
    rag_max_context_chars: int = Field(
        default=4000, description="Maximum characters of retrieved context injected into a prompt"
    )

    # ===== Conversations =====
    conversation_title_placeholder: str = Field(default="New Chat", description="Title of a fresh conversation")
    conversation_title_max_length: int = Field(
        default=100, description="Length of a title derived from the first message"
    )
    serialize_conversation_requests: bool = Field(
        default=True, description="Process one completion per conversation at a time"
    )

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")

    @property
    def rag_candidate_urls(self) -> list[str]:
        """Retrieval service locations in priority order, override first."""
        candidates = [self.rag_service_url] if self.rag_service_url else []
        candidates.extend(url.strip() for url in self.rag_fallback_urls.split(","))

        ordered: list[str] = []
        for url in candidates:
            url = (url or "").strip().rstrip("/")
            if url and url not in ordered:
                ordered.append(url)
        return ordered

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_gemini(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_retrieval(self) -> bool:
        return bool(self.rag_candidate_urls)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            if lv in ["test"]:
                return "testing"
            return lv
        return v

    @field_validator(
        "ai_request_timeout",
        "ai_stream_idle_timeout",
        "model_list_timeout",
        "rag_timeout",
    )
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("rag_query_limit", "rag_max_chunks", "rag_max_context_chars", "conversation_title_max_length")
    @classmethod
    def validate_positive_limit(cls, v):
        if v < 1:
            raise ValueError("Limits must be at least 1")
        return v

    @field_validator("model_list_cache_ttl")
    @classmethod
    def validate_cache_ttl(cls, v):
        if v < 0:
            raise ValueError("Cache TTL cannot be negative")
        return v

    @field_validator("rag_query_path")
    @classmethod
    def validate_query_path(cls, v):
        return v if v.startswith("/") else f"/{v}"

    @model_validator(mode="after")
    def set_computed_fields(self):
        if not self.test_database_url and self.database_url and "neondb" in self.database_url:
            self.test_database_url = self.database_url.replace("neondb", "neondb_test")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings(config: Settings = settings):
        errors = []
        if not config.database_url:
            errors.append("DATABASE_URL is required")
        if config.is_production and not config.gemini_api_key:
            errors.append("GEMINI_API_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status(config: Settings = settings) -> dict:
        return {
            "gemini_enabled": config.has_gemini,
            "ollama_base_url": config.ollama_base_url,
            "retrieval_candidates": len(config.rag_candidate_urls),
            "serialized_conversations": config.serialize_conversation_requests,
            "environment": config.environment,
        }


def get_config_summary(config: Settings = settings) -> dict:
    return {
        "app_name": config.app_name,
        "version": config.version,
        "environment": config.environment,
        "debug": config.debug,
        "features": ConfigValidator.get_feature_status(config),
        "database_configured": bool(config.database_url),
        "models": {
            "gemini": [config.gemini_model, config.gemini_fallback_model],
            "ollama": [config.ollama_model, config.ollama_fallback_model],
        },
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
]
