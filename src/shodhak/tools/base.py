"""
Base classes for tools.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from pydantic import BaseModel

from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from ..agent.context import AgentContext


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error}


def coerce_limit(value: Any, default: int, upper: int) -> int:
    """Coerce a model-supplied limit into 1..upper.

    Raises ValueError for anything that is not a finite number, so pydantic
    reports it as a validation error.
    """
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"limit must be an integer, got {value!r}")
    return max(1, min(number, upper))


class NoArgs(BaseModel):
    """Argument model for tools that take no parameters."""


def schema_for(model: type[BaseModel]) -> dict[str, Any]:
    """JSON Schema for an argument model, as advertised to the LLM."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema


class BaseTool(ABC):
    """Base class for all tools.

    Subclasses declare ``args_schema``; the registry validates raw model
    arguments against it before ``execute`` is called.
    """

    args_schema: type[BaseModel] = NoArgs

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    def parameters(self) -> dict[str, Any]:
        return schema_for(self.args_schema)

    @abstractmethod
    async def execute(self, args: Any, context: "AgentContext") -> ToolResult:
        """Execute the tool with validated arguments."""
        pass

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    This is an alternative to the class-based BaseTool for simpler tools.
    """

    name: str
    description: str
    handler: Callable[[Any, "AgentContext"], Coroutine[Any, Any, ToolResult]]
    args_schema: type[BaseModel] = NoArgs

    @property
    def parameters(self) -> dict[str, Any]:
        return schema_for(self.args_schema)

    async def execute(self, args: Any, context: "AgentContext") -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(args, context)

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )
