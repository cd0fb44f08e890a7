"""
OpenAI-compatible chat completions provider.

Serves OpenAI itself plus Groq and Ollama, which expose the same API under a
different base URL. Reasoning models served by Groq (qwen3) wrap their chain
of thought in <think> tags; that text never reaches the caller.
"""

import re
from typing import Any

import openai
import structlog

from .base import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolDefinition

logger = structlog.get_logger()

# An unterminated block runs to the end of the text (output cut by max_tokens).
_THINK_RE = re.compile(r"<think>[\s\S]*?(?:</think>|$)")


def strip_thinking(text: str) -> str:
    """Remove <think>...</think> reasoning blocks from model output."""
    if "<think>" not in text:
        return text
    return _THINK_RE.sub("", text).strip()


def to_openai_message(msg: LLMMessage) -> dict[str, Any]:
    if msg.role == "tool":
        return {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}

    if msg.role == "assistant" and msg.tool_calls:
        return {
            "role": "assistant",
            "content": msg.content or None,
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in msg.tool_calls
            ],
        }

    return {"role": msg.role, "content": msg.content}


def to_openai_tool(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


class OpenAILLM(BaseLLM):
    """Chat completions against OpenAI, Groq or Ollama."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        provider: str = "openai",
        timeout: float = 120.0,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self._provider = provider
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    def _parse(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in message.tool_calls or []
        ]
        usage = response.usage

        return LLMResponse(
            content=strip_thinking(message.content or ""),
            tool_calls=tool_calls,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        tool_choice: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a chat completion."""
        payload = [to_openai_message(m) for m in messages]
        if system_prompt:
            payload.insert(0, {"role": "system", "content": system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": payload,
        }
        if tools:
            kwargs["tools"] = [to_openai_tool(t) for t in tools]
            if tool_choice:
                kwargs["tool_choice"] = tool_choice

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("Chat completion failed", provider=self._provider, model=self.model, error=str(e))
            raise

        return self._parse(response)
