from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

from llmsession.llm.types import ToolCall

# An executor receives the full ToolCall (arguments still serialized) and
# returns the tool result text.
ToolExecutor = Callable[[ToolCall], Union[str, Awaitable[str]]]


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


@dataclass
class ToolDefinition:
    name: str
    description: str = ""
    parameters: dict = field(default_factory=dict)

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }

    @classmethod
    def from_openai_schema(cls, schema: dict) -> ToolDefinition:
        func = schema.get("function", schema)
        return cls(
            name=func.get("name") or "",
            description=func.get("description") or "",
            parameters=func.get("parameters") or {},
        )
