"""
Configuration management for goose-runtime.

Uses pydantic-settings for environment variable parsing and validation.
``AgentConfig`` is the immutable per-context view handed to the agent loop.
"""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GooseMode(str, Enum):
    """How eagerly the loop keeps going without tool calls."""

    CHAT = "chat"
    AGENT = "agent"
    AUTO = "auto"


class AgentConfig(BaseModel):
    """Immutable agent loop configuration."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=10, ge=1)
    max_turns_without_tools: int = Field(default=3, ge=1)
    enable_auto_compact: bool = True
    compact_threshold: float = 0.8
    goose_mode: GooseMode = GooseMode.AGENT
    enable_extensions: bool = True
    extension_timeout: float = 30
    require_confirmation: bool = False
    readonly_tools: tuple[str, ...] = ()

    @field_validator("compact_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("compact_threshold must be in (0.0, 1.0]")
        return v

    @field_validator("readonly_tools", mode="before")
    @classmethod
    def coerce_readonly_tools(cls, v):
        if isinstance(v, str):
            return tuple(t.strip() for t in v.split(",") if t.strip())
        return tuple(v)


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Literal["anthropic", "openai", "openrouter"] = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "goose-runtime"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8080

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Literal["anthropic", "openai", "openrouter"] = "anthropic"
    default_model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7
    context_limit: int = Field(default=128_000, description="Model context window in tokens")

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/goose.db",
        description="Database connection URL"
    )

    # Tools
    workspace_dir: str = Field(default="~/.goose-runtime/workspace", description="Sandbox root for built-in tools")
    shell_timeout_seconds: int = 30
    external_tools_url: str = Field(default="", description="Base URL of an HTTP tool server")

    # Agent loop defaults
    max_iterations: int = 10
    max_turns_without_tools: int = 3
    enable_auto_compact: bool = True
    compact_threshold: float = 0.8
    goose_mode: GooseMode = GooseMode.AGENT
    enable_extensions: bool = True
    extension_timeout: float = 30
    require_confirmation: bool = False
    readonly_tools: str = Field(default="", description="Comma-separated tool names exempt from confirmation")

    @field_validator("compact_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("compact_threshold must be in (0.0, 1.0]")
        return v

    @property
    def readonly_tools_list(self) -> list[str]:
        """Get list of read-only tools."""
        if not self.readonly_tools:
            return []
        return [t.strip() for t in self.readonly_tools.split(",") if t.strip()]

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model = model_map.get(provider, "")
        if self.default_model and provider == self.default_provider:
            model = self.default_model

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    def get_agent_config(self, **overrides) -> AgentConfig:
        """Build the immutable agent config, applying per-call overrides."""
        values = {
            "max_iterations": self.max_iterations,
            "max_turns_without_tools": self.max_turns_without_tools,
            "enable_auto_compact": self.enable_auto_compact,
            "compact_threshold": self.compact_threshold,
            "goose_mode": self.goose_mode,
            "enable_extensions": self.enable_extensions,
            "extension_timeout": self.extension_timeout,
            "require_confirmation": self.require_confirmation,
            "readonly_tools": self.readonly_tools_list,
        }
        values.update(overrides)
        return AgentConfig(**values)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
