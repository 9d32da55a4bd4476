"""Registry and dispatcher for the fixed set of tools."""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from pydantic import ConfigDict, ValidationError, create_model

from norel.db import Database
from norel.models import ToolContext, ToolInvocation, ToolResult
from norel.tools.base import Tool

LOGGER = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"


def normalize_tool_name(name: str) -> str:
    """Lowercase and drop separators so ``Search-Web`` matches ``search_web``."""

    return re.sub(r"[^a-z0-9]", "", name.lower())


def resolve_aliases(tool: Tool, arguments: dict[str, Any]) -> dict[str, Any]:
    """Map alias keys onto the tool's schema properties; the first present alias wins."""

    resolved: dict[str, Any] = {}
    for prop in tool.parameters_schema.get("properties", {}):
        for key in tool.aliases.get(prop, (prop,)):
            if arguments.get(key) is not None:
                resolved[prop] = arguments[key]
                break
    return resolved


class ToolRegistry:
    """Explicit registry of tools; dispatch never raises."""

    def __init__(self, db: Database, max_result_chars: int = 10_000) -> None:
        self._db = db
        self._max_result_chars = max_result_chars
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[normalize_tool_name(tool.name)] = tool

    def tool_names(self) -> list[str]:
        return [tool.name for tool in self._tools.values()]

    def get(self, name: str) -> Tool | None:
        return self._tools.get(normalize_tool_name(name))

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def dispatch(self, invocation: ToolInvocation, context: ToolContext) -> ToolResult:
        tool = self.get(invocation.name)
        if tool is None:
            LOGGER.warning("[%s] Unknown tool requested: %s", context.chat_id, invocation.name)
            return ToolResult.of_text(f"Unknown tool: {invocation.name}")

        started = time.monotonic()
        LOGGER.info("[%s] Tool call: %s %r", context.chat_id, tool.name, invocation.arguments)
        arguments: dict[str, Any] = invocation.arguments
        succeeded = False
        try:
            arguments = _validate_json_schema(tool.parameters_schema, resolve_aliases(tool, invocation.arguments))
        except ValueError as exc:
            result = ToolResult.of_text(f"Error: invalid arguments for {tool.name}: {exc}")
        else:
            try:
                outcome = await tool.run(context, **arguments)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("[%s] Tool %s failed", context.chat_id, tool.name)
                result = ToolResult.of_text(f"Error: {tool.name} failed: {exc}")
            else:
                result = outcome if isinstance(outcome, ToolResult) else ToolResult.of_text(str(outcome))
                succeeded = not result.text.startswith("Error:")

        if len(result.text) > self._max_result_chars:
            LOGGER.info("[%s] Truncating %s result (%d chars)", context.chat_id, tool.name, len(result.text))
            result.text = result.text[: self._max_result_chars] + TRUNCATION_MARKER

        LOGGER.info("[%s] Tool finish: %s in %.0fms", context.chat_id, tool.name, (time.monotonic() - started) * 1000)
        try:
            self._db.log_tool_execution(context.chat_id, tool.name, arguments, result.text, succeeded=succeeded)
        except Exception:  # noqa: BLE001
            LOGGER.exception("[%s] Could not record execution of %s", context.chat_id, tool.name)
        return result


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model(
        "ToolInputModel",
        __config__=ConfigDict(coerce_numbers_to_str=True),
        **fields,
    )
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(_describe(exc)) from exc
    return value.model_dump(exclude_none=True)


def _describe(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())


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
