from __future__ import annotations

import asyncio
import inspect
import logging

from llmsession.errors import RequestCancelledError, ToolError
from llmsession.llm.types import ToolCall
from llmsession.tools.base import ToolDefinition, ToolExecutor
from llmsession.tools.validation import ToolValidator

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Maps tool names to async executors and exports their schemas.

    Definitions are kept in registration order so request payloads stay
    byte-for-byte stable between calls.
    """

    def __init__(self, *, validate_arguments: bool = False):
        self._definitions: dict[str, ToolDefinition] = {}
        self._executors: dict[str, ToolExecutor] = {}
        self.validate_arguments = validate_arguments

    def register(self, definition: ToolDefinition, executor: ToolExecutor) -> None:
        if definition is None:
            raise ValueError("Tool definition cannot be None")
        if executor is None:
            raise ValueError("Tool executor cannot be None")
        if not definition.name:
            raise ValueError("Tool function name cannot be empty")
        if definition.name in self._definitions:
            raise ValueError(f"Tool already registered: {definition.name}")
        self._definitions[definition.name] = definition
        self._executors[definition.name] = executor

    def unregister(self, name: str) -> bool:
        if name not in self._definitions:
            return False
        del self._definitions[name]
        del self._executors[name]
        return True

    def clear(self) -> None:
        self._definitions.clear()
        self._executors.clear()

    def has(self, name: str) -> bool:
        return bool(name) and name in self._definitions

    def get(self, name: str) -> ToolDefinition | None:
        return self._definitions.get(name)

    def list_definitions(self) -> list[ToolDefinition]:
        return list(self._definitions.values())

    def to_openai_schema(self) -> list[dict]:
        return [d.to_openai_schema() for d in self.list_definitions()]

    def __len__(self) -> int:
        return len(self._definitions)

    async def execute(self, tool_call: ToolCall) -> str:
        """
        Run the executor registered for ``tool_call.function.name``.

        Lookup misses and executor failures raise ``ToolError``;
        cancellation passes through untouched.
        """
        name = tool_call.function.name
        executor = self._executors.get(name) if name else None
        if executor is None:
            raise ToolError(f"Tool '{name}' not found", name)

        if self.validate_arguments:
            valid, error_msg = ToolValidator.validate(self._definitions[name], tool_call.arguments)
            if not valid:
                raise ToolError(f"Invalid arguments for tool '{name}': {error_msg}", name)

        logger.info("Executing tool: %s (call %s)", name, tool_call.id)
        try:
            result = executor(tool_call)
            if inspect.isawaitable(result):
                result = await result
        except (RequestCancelledError, asyncio.CancelledError, ToolError):
            raise
        except Exception as e:
            raise ToolError(f"Tool execution failed: {e}", name) from e

        if not isinstance(result, str):
            raise ToolError(
                f"Tool '{name}' returned {type(result).__name__}, expected str", name
            )
        return result
