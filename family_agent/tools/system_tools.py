"""Built-in diagnostic tools."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from family_agent.tools.base import Tool, ToolContext
from family_agent.tools.registry import ToolRegistry


class PingTool(Tool):
    """Health check returning server time."""

    name = "system.ping"
    description = "Health check tool that returns server time and status."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"echo": {"type": "string"}},
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any]:
        context.logger.debug("system.ping executed")
        data: dict[str, Any] = {"ok": True, "time": datetime.now(timezone.utc).isoformat()}
        if "echo" in kwargs:
            data["echo"] = kwargs["echo"]
        return data


class ListToolsTool(Tool):
    """Lists everything registered alongside it."""

    name = "system.listTools"
    description = "List all registered tools with their descriptions."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    async def run(self, context: ToolContext, **kwargs: Any) -> list[dict[str, str]]:
        return self._registry.list_tools()


def register_system_tools(registry: ToolRegistry) -> None:
    registry.register(PingTool())
    registry.register(ListToolsTool(registry))
