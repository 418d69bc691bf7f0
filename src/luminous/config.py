"""Configuration management for Luminous."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from luminous.errors import InvalidModelFormatError


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LUMINOUS_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Model
    model: str = Field(default="openai:gpt-4o", description="Model in provider:model format")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1)

    # Orchestration bounds
    model_timeout_seconds: float = Field(default=30, gt=0, description="Timeout for one model call")
    max_tool_rounds: int = Field(default=8, ge=1, description="Maximum capability rounds per turn")
    loop_timeout_seconds: float = Field(default=180, gt=0, description="Wall-clock bound for one turn")
    parallel_capabilities: bool = Field(default=True, description="Run invocations of one round concurrently")

    # Capability credentials
    serpapi_key: str | None = Field(default=None, description="SerpAPI key for web search")
    serpapi_base: str = Field(default="https://serpapi.com/search.json")
    shopify_key: str | None = Field(default=None, description="Shopify Admin API access token")
    shopify_store: str | None = Field(default=None, description="Shopify store domain")
    shopify_api_version: str = Field(default="2024-07")
    http_timeout_seconds: float = Field(default=20, gt=0)

    # Sandbox
    sandbox_timeout_seconds: float = Field(default=5, gt=0)
    sandbox_memory_mb: int = Field(default=512, ge=64)

    # Storage
    home: Path = Field(default=Path.home() / ".luminous", description="Storage root")
    session_key: str = Field(default="luminous", description="Durable storage key of the session")

    # Autonomous reflection
    reflection_enabled: bool = True
    reflection_interval_seconds: float = Field(default=120, gt=0)
    reflection_probability: float = Field(default=0.1, ge=0.0, le=1.0)

    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("model")
    @classmethod
    def _validate_model(cls, value: str) -> str:
        provider, separator, name = value.partition(":")
        if not separator or not provider or not name:
            raise InvalidModelFormatError(f"model must be provider:model, got {value!r}")
        return value

    @property
    def provider(self) -> str:
        return self.model.partition(":")[0]

    @property
    def model_name(self) -> str:
        return self.model.partition(":")[2]

    @property
    def resolved_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        return os.getenv("LLM_API_KEY") or os.getenv("API_KEY")

    def resolve_home(self) -> Path:
        home = self.home.expanduser()
        home.mkdir(parents=True, exist_ok=True)
        return home


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Values come from the environment and ``.env`` unless overridden here.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
