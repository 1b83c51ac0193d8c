"""
Provider factory.

OpenRouter speaks the OpenAI wire format, so it shares the OpenAI client
with a different endpoint.
"""

import structlog

from ..config import LLMConfig, Settings
from ..errors import ConfigurationError
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

logger = structlog.get_logger()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

PROVIDERS: dict[str, tuple[type[BaseLLM], str | None]] = {
    "anthropic": (AnthropicLLM, None),
    "openai": (OpenAILLM, None),
    "openrouter": (OpenAILLM, OPENROUTER_BASE_URL),
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Build the client for ``config``, or for the default provider in ``settings``.

    Raises:
        ConfigurationError: If the provider is not supported
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    try:
        llm_class, default_base_url = PROVIDERS[config.provider]
    except KeyError:
        raise ConfigurationError(f"Unknown LLM provider: {config.provider}") from None

    if not config.api_key:
        logger.warning("No API key configured", provider=config.provider)

    return llm_class(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url or default_base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
