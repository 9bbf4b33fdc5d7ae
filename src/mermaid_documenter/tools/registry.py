"""Tool registry and dispatcher."""

from __future__ import annotations

import builtins
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from mermaid_documenter.core.types import ToolResult
from mermaid_documenter.errors import SandboxViolation, ToolError

ToolHandler = Callable[[Any], Any]


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata and runtime handle."""

    name: str
    short_description: str
    model: type[BaseModel]
    handler: ToolHandler
    detail: str = ""

    def schema(self) -> dict[str, Any]:
        return self.model.model_json_schema(by_alias=True)


class ToolRegistry:
    """Explicit registry of the tools a run may dispatch."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        *,
        name: str,
        short_description: str,
        model: type[BaseModel],
        detail: str | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Duplicate tool name: {name}")
            self._tools[name] = ToolDescriptor(
                name=name,
                short_description=short_description,
                model=model,
                handler=handler,
                detail=detail if detail is not None else (handler.__doc__ or "").strip(),
            )
            return handler

        return decorator

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> builtins.list[str]:
        return sorted(self._tools)

    def descriptors(self) -> builtins.list[ToolDescriptor]:
        return sorted(self._tools.values(), key=lambda item: item.name)

    def compact_rows(self) -> builtins.list[str]:
        return [f"{descriptor.name}: {descriptor.short_description}" for descriptor in self.descriptors()]

    def prompt_block(self) -> str:
        """Render every tool with its argument schema for the system prompt."""
        rows: builtins.list[str] = []
        for descriptor in self.descriptors():
            schema = descriptor.schema()
            properties = schema.get("properties", {})
            required = set(schema.get("required", []))
            params: builtins.list[str] = []
            for param_name, info in properties.items():
                param = f"{param_name} ({info.get('type', 'any')})"
                if description := info.get("description"):
                    param += f": {description}"
                if param_name in required:
                    param += " [required]"
                params.append(param)
            row = f"- {descriptor.name}: {descriptor.short_description}"
            if params:
                row += f" | Parameters: {', '.join(params)}"
            rows.append(row)
        return "\n".join(rows)

    def dispatch(self, name: str, args_json: str) -> ToolResult:
        """Execute a tool by name with JSON arguments. Never raises."""
        descriptor = self.get(name)
        if descriptor is None:
            return ToolResult.fail(f"tool not found: {name}")

        try:
            args = json.loads(args_json)
        except (TypeError, json.JSONDecodeError) as exc:
            return ToolResult.fail(f"invalid arguments: {exc!s}")
        if not isinstance(args, dict):
            return ToolResult.fail("invalid arguments: expected a JSON object")

        try:
            params = descriptor.model.model_validate(args)
        except ValidationError as exc:
            return ToolResult.fail(f"invalid arguments: {_describe_validation(exc)}")

        self._log_tool_call(name, args)
        start = time.monotonic()
        try:
            outcome = descriptor.handler(params)
        except SandboxViolation as exc:
            logger.warning("tool.call.rejected name={} reason={}", name, exc)
            return ToolResult.fail(f"path rejected: {exc!s}")
        except ToolError as exc:
            logger.warning("tool.call.failed name={} error={}", name, exc)
            return ToolResult.fail(str(exc))
        except OSError as exc:
            logger.warning("tool.call.failed name={} error={}", name, exc)
            return ToolResult.fail(f"io error: {exc!s}")
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            return ToolResult.fail(f"tool error: {exc!s}")
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)

        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.ok(outcome)

    def _log_tool_call(self, name: str, kwargs: dict[str, Any]) -> None:
        params: builtins.list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            value = _shorten_text(rendered, width=30, placeholder="...")
            if value.startswith('"') and not value.endswith('"'):
                value = value + '"'
            if value.startswith("{") and not value.endswith("}"):
                value = value + "}"
            if value.startswith("[") and not value.endswith("]"):
                value = value + "]"
            params.append(f"{key}={value}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))


def _describe_validation(exc: ValidationError) -> str:
    rows: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        if error["type"] == "missing":
            rows.append(f"missing field '{location}'")
        else:
            rows.append(f"field '{location}': {error['msg']}")
    return "; ".join(rows)
