"""Registry for safe tool registration and execution."""

from __future__ import annotations

import time
from typing import Any

from pydantic import ValidationError, create_model

from family_agent.db import Database
from family_agent.models import ToolResult
from family_agent.tools.base import Tool, ToolContext


class ToolRegistry:
    """Explicit registry of named tools. ``invoke`` never raises."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f'Tool "{tool.name}" is already registered')
        self._tools[tool.name] = tool

    def has(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def list_tools(self) -> list[dict[str, str]]:
        return [{"name": tool.name, "description": tool.description} for tool in self._tools.values()]

    async def invoke(self, tool_name: str, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        started = time.perf_counter()
        log = context.logger
        log.info("Tool invocation started: tool=%s", tool_name)

        tool = self._tools.get(tool_name)
        if tool is None:
            log.warning("Tool not found: %s", tool_name)
            result = ToolResult(success=False, error=f'Tool "{tool_name}" not found', execution_ms=_elapsed_ms(started))
            self._audit(context, tool_name, arguments, result)
            return result

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except ValueError as exc:
            log.warning("Tool input validation failed: tool=%s error=%s", tool_name, exc)
            result = ToolResult(success=False, error=str(exc), execution_ms=_elapsed_ms(started))
            self._audit(context, tool_name, arguments, result)
            return result

        try:
            output = await tool.run(context, **validated)
        except Exception as exc:  # noqa: BLE001
            log.error("Tool invocation failed: tool=%s error=%s", tool_name, exc)
            result = ToolResult(success=False, error=str(exc) or type(exc).__name__, execution_ms=_elapsed_ms(started))
        else:
            if isinstance(output, ToolResult):
                result = ToolResult(
                    success=output.success,
                    data=output.data,
                    error=output.error,
                    execution_ms=_elapsed_ms(started),
                )
            else:
                result = ToolResult(success=True, data=output, execution_ms=_elapsed_ms(started))
            log.info(
                "Tool invocation completed: tool=%s success=%s execution_ms=%d",
                tool_name,
                result.success,
                result.execution_ms,
            )

        self._audit(context, tool_name, validated, result)
        return result

    def _audit(self, context: ToolContext, tool_name: str, arguments: dict[str, Any], result: ToolResult) -> None:
        if self._db is None:
            return
        try:
            self._db.log_tool_execution(
                request_id=context.request_id,
                user_id=context.user_id,
                family_id=context.family_id,
                tool_name=tool_name,
                tool_input=arguments,
                tool_output=result.data,
                succeeded=result.success,
                error_message=result.error,
                execution_ms=result.execution_ms,
            )
        except Exception as exc:  # noqa: BLE001
            context.logger.warning("Failed to write audit log for tool=%s: %s", tool_name, exc)


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    if schema.get("additionalProperties") is False:
        extra = sorted(set(payload) - set(props))
        if extra:
            raise ValueError(f"Input validation failed: unexpected fields {extra}")

    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        default = ... if name in required else None
        fields[name] = (typ if name in required else typ | None, default)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Input validation failed: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
