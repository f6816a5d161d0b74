"""
Planwise Tool System - Decorator-based tool registration.
Drop a .py file in tools/, add @tool decorator, done. Auto-discovered.

Each tool declares a pydantic model for its arguments. Model-supplied
arguments are validated against it before the tool runs; anything
malformed or unexpected is rejected.
"""

import inspect
import json
from dataclasses import dataclass, field
from datetime import date, tzinfo
from typing import Any, Callable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from brain.errors import ToolExecutionError, ValidationError

# Global registry of all tools
TOOL_REGISTRY: dict[str, dict] = {}


@dataclass
class ToolContext:
    """Per-turn state handed to every tool: who is asking and where their data lives."""

    owner: str
    event_store: Any
    tz: tzinfo
    today: date


@dataclass
class ToolResult:
    """Data folded back to the model, plus the event a tool created (if any)."""

    data: dict = field(default_factory=dict)
    event: Any = None


def tool(
    description: str,
    args_model: type[BaseModel],
    action: str,
    fallback_reply: str,
):
    """
    Decorator to register a function as a Planwise tool.

    Usage:
        @tool(
            description="Get today's schedule",
            args_model=NoArgs,
            action="fetch your schedule",
            fallback_reply="Here's your schedule for today.",
        )
        async def get_today_schedule(context: ToolContext, args: NoArgs) -> ToolResult:
            ...

    action: phrase used in failure replies ("I tried to <action> but ...").
    fallback_reply: used when the follow-up model call fails.
    The parameters schema is generated from args_model (Field descriptions included).
    """
    def decorator(func: Callable) -> Callable:
        TOOL_REGISTRY[func.__name__] = {
            "function": func,
            "description": description,
            "parameters": _schema_from_model(args_model),
            "args_model": args_model,
            "action": action,
            "fallback_reply": fallback_reply,
            "is_async": inspect.iscoroutinefunction(func),
        }
        return func

    return decorator


def _schema_from_model(model: type[BaseModel]) -> dict:
    """OpenAI-compatible parameter schema from a pydantic model."""
    schema = model.model_json_schema()
    properties = {}
    for name, prop in schema.get("properties", {}).items():
        prop = {k: v for k, v in prop.items() if k != "title"}
        # Optional[str] comes out as anyOf [str, null]; models cope better with a flat type
        if "anyOf" in prop:
            types = [p.get("type") for p in prop.pop("anyOf") if p.get("type") != "null"]
            prop["type"] = types[0] if types else "string"
            prop.pop("default", None)
        properties[name] = prop
    return {
        "type": "object",
        "properties": properties,
        "required": schema.get("required", []),
    }


def get_openai_tool_definitions(registry: dict | None = None) -> list[dict]:
    """Convert registered tools to OpenAI function-calling format."""
    registry = TOOL_REGISTRY if registry is None else registry
    definitions = []
    for name, info in registry.items():
        definitions.append({
            "type": "function",
            "function": {
                "name": name,
                "description": info["description"],
                "parameters": info["parameters"],
            },
        })
    return definitions


def parse_arguments(name: str, raw, registry: dict | None = None) -> BaseModel:
    """
    Turn the model's JSON-string arguments into the tool's args model.
    Raises ValidationError for bad JSON, missing fields or unknown keys.
    """
    registry = TOOL_REGISTRY if registry is None else registry
    args_model = registry[name]["args_model"]

    if raw is None or raw == "":
        data = {}
    elif isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{name}: arguments are not valid JSON") from e
    if not isinstance(data, dict):
        raise ValidationError(f"{name}: arguments must be a JSON object")

    try:
        return args_model.model_validate(data)
    except PydanticValidationError as e:
        details = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(
            f"{name}: invalid arguments ({'; '.join(details)})",
            details=details,
        ) from e


async def execute_tool(
    name: str,
    raw_arguments,
    context: ToolContext,
    registry: dict | None = None,
) -> ToolResult:
    """
    Validate arguments and run a registered tool once.
    Any failure (bad arguments included) surfaces as ToolExecutionError.
    """
    registry = TOOL_REGISTRY if registry is None else registry
    if name not in registry:
        raise ToolExecutionError(name, f"Unknown tool: {name}")

    info = registry[name]
    func = info["function"]

    try:
        args = parse_arguments(name, raw_arguments, registry)
        if info["is_async"]:
            result = await func(context, args)
        else:
            result = func(context, args)
    except Exception as e:
        raise ToolExecutionError(name, str(e) or e.__class__.__name__) from e
    return result
