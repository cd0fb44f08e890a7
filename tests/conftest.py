"""
Shared fixtures and fakes for the test suite.
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from shodhak.config import Settings
from shodhak.llm.base import BaseLLM, LLMMessage, LLMResponse, ToolDefinition
from shodhak.models import init_database
from shodhak.store import SessionStore


class ScriptedLLM(BaseLLM):
    """LLM double that replays queued responses and records every call.

    Queue items may be LLMResponse objects or exceptions to raise. Once the
    queue is empty, ``default`` is returned.
    """

    def __init__(self, responses: list[Any] | None = None, default: LLMResponse | None = None, delay: float = 0.0):
        super().__init__(api_key="test", model="test-model")
        self.responses = list(responses or [])
        self.default = default or LLMResponse(content="Done.")
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        tool_choice: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "tools": tools,
            "system_prompt": system_prompt,
            "tool_choice": tool_choice,
        })
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, BaseException):
            raise item
        return item


def make_settings(**overrides: Any) -> Settings:
    return Settings(_env_file=None, **overrides)


async def make_store(tmp_path) -> SessionStore:
    session_maker = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    return SessionStore(session_maker)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_store() -> AsyncMock:
    store = AsyncMock(spec=SessionStore)
    store.load_session.return_value = None
    store.get_user_active_sessions.return_value = []
    store.expire_stale_sessions.return_value = 0
    return store
