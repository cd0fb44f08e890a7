"""
Configuration management for Shodhak

Uses pydantic-settings for environment variable parsing and validation.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["openai", "anthropic", "groq", "ollama"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: float = 120.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Shodhak"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = Field(default="*", description="Comma-separated allowed CORS origins")

    # LLM Providers (API Keys)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    groq_api_key: str = Field(default="", description="Groq API key")
    ollama_url: str = Field(default="http://localhost:11434/v1", description="Ollama OpenAI-compatible endpoint")

    # Default model settings
    llm_provider: Provider = "openai"
    llm_model: str = Field(default="", description="Overrides the provider's default chat model")
    reasoning_model: str = Field(default="", description="Model for compression and paper analysis")
    fast_model: str = Field(default="", description="Model for short single-paper summaries")
    max_tokens: int = 4096
    temperature: float = 0.7

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/shodhak.db",
        description="Database connection URL"
    )

    # Session lifecycle
    session_ttl_minutes: int = Field(default=60, description="Inactivity window before a session expires")
    session_sweep_interval_seconds: int = Field(default=300, description="Interval of the expiry sweep")

    # Agent loop and tiered memory
    max_iterations: int = Field(default=10, ge=1)
    compression_threshold: int = Field(default=25, description="History length that triggers compression")
    recent_buffer_size: int = Field(default=10, ge=1, description="Messages kept verbatim after compression")
    fallback_history_messages: int = Field(default=20, ge=1)
    tool_result_preview_chars: int = 500
    llm_timeout_seconds: float = 120.0
    tool_timeout_seconds: float = 60.0

    # Paper search
    openalex_base_url: str = "https://api.openalex.org"
    openalex_email: str = Field(default="", description="Contact email for the OpenAlex polite pool")
    search_default_results: int = 10
    search_max_results: int = 20

    @field_validator("compression_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 2:
            raise ValueError("compression_threshold must be at least 2")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or ["*"]

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(minutes=self.session_ttl_minutes)

    def get_llm_config(self, provider: str | None = None, model: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.llm_provider

        api_key_map = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "groq": self.groq_api_key,
            "ollama": "ollama",
        }

        model_map = {
            "openai": "gpt-4o-mini",
            "anthropic": "claude-sonnet-4-20250514",
            "groq": "qwen/qwen3-32b",
            "ollama": "llama3.2",
        }

        base_url_map = {
            "openai": None,
            "anthropic": None,
            "groq": "https://api.groq.com/openai/v1",
            "ollama": self.ollama_url,
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model or self.llm_model or model_map.get(provider, "gpt-4o-mini"),
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=self.llm_timeout_seconds,
        )

    def get_reasoning_llm_config(self) -> LLMConfig:
        """LLM configuration used for summarization, fact extraction and analysis."""
        return self.get_llm_config(model=self.reasoning_model or None)

    def get_fast_llm_config(self) -> LLMConfig:
        """LLM configuration used for quick single-paper summaries."""
        return self.get_llm_config(model=self.fast_model or None)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
