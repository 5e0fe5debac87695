"""Tool registry: name -> executor lookup plus schema export."""

from llmsession.tools.base import ToolDefinition, ToolExecutor
from llmsession.tools.registry import ToolRegistry

__all__ = ["ToolDefinition", "ToolExecutor", "ToolRegistry"]
