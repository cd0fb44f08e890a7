"""
Tool registry for managing available tools.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Union

import structlog
from pydantic import ValidationError

from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolResult

if TYPE_CHECKING:
    from ..agent.context import AgentContext

logger = structlog.get_logger()

DEFAULT_TOOL_TIMEOUT = 60.0


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "arguments"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


class ToolRegistry:
    """Registry mapping tool names to handlers."""

    def __init__(self, timeout: float = DEFAULT_TOOL_TIMEOUT):
        self.timeout = timeout
        self._tools: dict[str, Union[BaseTool, Tool]] = {}

    def register(self, tool: Union[BaseTool, Tool]) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Union[BaseTool, Tool, None]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: "AgentContext",
    ) -> ToolResult:
        """Validate arguments and run a tool. Never raises."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        try:
            args = tool.args_schema.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("Invalid tool arguments", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                error=f"Invalid arguments for {name}: {_format_validation_error(e)}",
            )
        except Exception as e:
            logger.warning("Invalid tool arguments", tool_name=name, error=str(e))
            return ToolResult(success=False, error=f"Invalid arguments for {name}: {e}")

        try:
            logger.info("Executing tool", tool_name=name, session_id=context.session_id)
            result = await asyncio.wait_for(tool.execute(args, context), timeout=self.timeout)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except asyncio.TimeoutError:
            logger.error("Tool timed out", tool_name=name, timeout=self.timeout)
            return ToolResult(success=False, error=f"Tool '{name}' timed out after {self.timeout:g}s")
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(success=False, error=str(e) or "Tool execution failed")
