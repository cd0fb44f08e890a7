"""
LLM providers behind one async generate() interface.

- Anthropic Claude (native SDK)
- OpenAI, Groq and Ollama (OpenAI-compatible endpoints)
"""

from .base import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM, strip_thinking
from .factory import LLMSet, create_llm, create_llms

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "LLMSet",
    "create_llm",
    "create_llms",
    "strip_thinking",
]
