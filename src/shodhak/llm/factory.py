"""
LLM factory for creating provider instances.

Three roles share one provider: the chat model drives the agent loop, the
reasoning model writes summaries, comparisons and reviews, and the fast
model handles short single-paper summaries.
"""

from dataclasses import dataclass

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM

OPENAI_COMPATIBLE = ("openai", "groq", "ollama")


@dataclass
class LLMSet:
    chat: BaseLLM
    reasoning: BaseLLM
    fast: BaseLLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Anthropic uses its native SDK. OpenAI, Groq and Ollama all go through
    the OpenAI SDK with a provider-specific base URL.
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    if config.provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.timeout,
        )

    if config.provider in OPENAI_COMPATIBLE:
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            provider=config.provider,
            timeout=config.timeout,
        )

    raise ValueError(f"Unknown LLM provider: {config.provider}")


def create_llms(settings: Settings) -> LLMSet:
    """Build the chat, reasoning and fast models for the configured provider."""
    return LLMSet(
        chat=create_llm(settings.get_llm_config()),
        reasoning=create_llm(settings.get_reasoning_llm_config()),
        fast=create_llm(settings.get_fast_llm_config()),
    )
