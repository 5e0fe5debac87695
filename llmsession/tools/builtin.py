"""
Small built-in tools available to the interactive CLI.

Each executor takes the full ``ToolCall`` and returns a string; argument
parsing errors surface as ``ValueError`` and are wrapped into
``ToolError`` by the registry.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from llmsession.llm.types import ToolCall
from llmsession.tools.base import ToolDefinition
from llmsession.tools.registry import ToolRegistry


def _arguments(tool_call: ToolCall) -> dict:
    args = json.loads(tool_call.arguments or "{}")
    if not isinstance(args, dict):
        raise ValueError("arguments must be a JSON object")
    return args


CURRENT_TIME = ToolDefinition(
    name="get_current_time",
    description="Return the current date and time in ISO-8601 format.",
    parameters={
        "type": "object",
        "properties": {
            "utc_offset_hours": {
                "type": "number",
                "description": "Offset from UTC in hours, e.g. -5 or 5.5. Defaults to 0.",
            },
        },
    },
)


async def get_current_time(tool_call: ToolCall) -> str:
    offset = float(_arguments(tool_call).get("utc_offset_hours", 0))
    if not -24 < offset < 24:
        raise ValueError(f"utc_offset_hours out of range: {offset}")
    tz = timezone(timedelta(hours=offset))
    return datetime.now(tz).isoformat(timespec="seconds")


WORD_COUNT = ToolDefinition(
    name="count_words",
    description="Count the words and characters in a piece of text.",
    parameters={
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "Text to count."},
        },
        "required": ["text"],
    },
)


async def count_words(tool_call: ToolCall) -> str:
    text = _arguments(tool_call).get("text")
    if not isinstance(text, str):
        raise ValueError("'text' must be a string")
    return json.dumps({"words": len(text.split()), "characters": len(text)})


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    registry.register(CURRENT_TIME, get_current_time)
    registry.register(WORD_COUNT, count_words)
    return registry
