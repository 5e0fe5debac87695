"""Tests for ToolRegistry."""

import asyncio
import json

import pytest

from llmsession.errors import RequestCancelledError, ToolError
from llmsession.tools.base import ToolDefinition
from llmsession.tools.builtin import register_builtin_tools
from llmsession.tools.registry import ToolRegistry
from tests.mock_clients import tool_call
from tests.mock_tools import ECHO, FAILING, WEATHER, WeatherTool, echo, explode


class TestToolRegistry:
    """Test suite for ToolRegistry."""

    def test_register_and_get(self):
        reg = ToolRegistry()
        reg.register(ECHO, echo)
        assert reg.get("echo") is ECHO
        assert reg.has("echo")
        assert len(reg) == 1

    def test_get_returns_none_for_unknown(self):
        reg = ToolRegistry()
        assert reg.get("nonexistent") is None
        assert not reg.has("nonexistent")
        assert not reg.has("")

    def test_duplicate_registration_raises_valueerror(self):
        reg = ToolRegistry()
        reg.register(ECHO, echo)
        with pytest.raises(ValueError, match="already registered"):
            reg.register(ECHO, echo)

    def test_empty_name_rejected(self):
        reg = ToolRegistry()
        with pytest.raises(ValueError, match="name cannot be empty"):
            reg.register(ToolDefinition(name=""), echo)

    def test_missing_executor_rejected(self):
        reg = ToolRegistry()
        with pytest.raises(ValueError):
            reg.register(ECHO, None)

    def test_unregister(self):
        reg = ToolRegistry()
        reg.register(ECHO, echo)
        assert reg.unregister("echo") is True
        assert reg.unregister("echo") is False
        assert not reg.has("echo")

    def test_clear(self):
        reg = ToolRegistry()
        reg.register(ECHO, echo)
        reg.register(WEATHER, WeatherTool())
        reg.clear()
        assert len(reg) == 0
        assert reg.list_definitions() == []

    def test_list_keeps_registration_order(self):
        reg = ToolRegistry()
        reg.register(WEATHER, WeatherTool())
        reg.register(ECHO, echo)
        reg.register(FAILING, explode)
        names = [d.name for d in reg.list_definitions()]
        assert names == ["get_weather", "echo", "explode"]
        # Stable across calls.
        assert reg.to_openai_schema() == reg.to_openai_schema()

    def test_to_openai_schema(self):
        reg = ToolRegistry()
        reg.register(FAILING, explode)
        schema = reg.to_openai_schema()
        assert schema == [
            {
                "type": "function",
                "function": {
                    "name": "explode",
                    "description": "Always fails.",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ]

    def test_schema_roundtrip_through_definition(self):
        restored = ToolDefinition.from_openai_schema(WEATHER.to_openai_schema())
        assert restored.name == WEATHER.name
        assert restored.parameters == WEATHER.parameters


class TestExecute:
    async def test_async_executor(self):
        reg = ToolRegistry()
        weather = WeatherTool({"NYC": "sunny"})
        reg.register(WEATHER, weather)
        result = await reg.execute(tool_call("c1", "get_weather", {"location": "NYC"}))
        assert result == "sunny"
        assert weather.calls == [{"location": "NYC"}]

    async def test_sync_executor(self):
        reg = ToolRegistry()
        reg.register(ECHO, echo)
        assert await reg.execute(tool_call("c1", "echo", {"message": "hey"})) == "hey"

    async def test_unknown_tool(self):
        reg = ToolRegistry()
        with pytest.raises(ToolError) as exc_info:
            await reg.execute(tool_call("c1", "missing"))
        assert exc_info.value.tool_name == "missing"
        assert "not found" in exc_info.value.message

    async def test_executor_failure_wrapped(self):
        reg = ToolRegistry()
        reg.register(FAILING, explode)
        with pytest.raises(ToolError) as exc_info:
            await reg.execute(tool_call("c1", "explode"))
        err = exc_info.value
        assert err.tool_name == "explode"
        assert "boom" in err.message
        assert isinstance(err.__cause__, RuntimeError)

    async def test_non_string_result_rejected(self):
        reg = ToolRegistry()
        reg.register(ToolDefinition(name="number"), lambda tc: 42)
        with pytest.raises(ToolError, match="expected str"):
            await reg.execute(tool_call("c1", "number"))

    async def test_cancellation_passes_through(self):
        async def cancelled(tc):
            raise RequestCancelledError()

        reg = ToolRegistry()
        reg.register(ToolDefinition(name="slow"), cancelled)
        with pytest.raises(RequestCancelledError):
            await reg.execute(tool_call("c1", "slow"))

    async def test_task_cancellation_passes_through(self):
        async def hang(tc):
            await asyncio.sleep(10)
            return ""

        reg = ToolRegistry()
        reg.register(ToolDefinition(name="hang"), hang)
        task = asyncio.ensure_future(reg.execute(tool_call("c1", "hang")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_argument_validation(self):
        reg = ToolRegistry(validate_arguments=True)
        weather = WeatherTool()
        reg.register(WEATHER, weather)
        with pytest.raises(ToolError, match="Invalid arguments"):
            await reg.execute(tool_call("c1", "get_weather", {}))
        assert weather.calls == []

    async def test_validation_off_by_default(self):
        reg = ToolRegistry()
        weather = WeatherTool()
        reg.register(WEATHER, weather)
        assert await reg.execute(tool_call("c1", "get_weather", {})) == "sunny"


class TestBuiltinTools:
    async def test_registered(self):
        reg = register_builtin_tools(ToolRegistry())
        assert [d.name for d in reg.list_definitions()] == ["get_current_time", "count_words"]

    async def test_count_words(self):
        reg = register_builtin_tools(ToolRegistry(validate_arguments=True))
        result = await reg.execute(tool_call("c1", "count_words", {"text": "one two  three"}))
        assert json.loads(result) == {"words": 3, "characters": 14}

    async def test_current_time_offset(self):
        reg = register_builtin_tools(ToolRegistry())
        result = await reg.execute(tool_call("c1", "get_current_time", {"utc_offset_hours": 2}))
        assert result.endswith("+02:00")

    async def test_bad_offset_is_tool_error(self):
        reg = register_builtin_tools(ToolRegistry())
        with pytest.raises(ToolError):
            await reg.execute(tool_call("c1", "get_current_time", {"utc_offset_hours": 99}))
