"""LLM subsystem -- completion client, transport, and streaming tool-call assembly."""

from llmsession.llm.base import CompletionClient
from llmsession.llm.cancellation import CancellationToken
from llmsession.llm.openai_compat import OpenAICompatClient
from llmsession.llm.tool_call_assembler import ToolCallAssembler, merge_tool_call_chunks
from llmsession.llm.transport import HttpTransport
from llmsession.llm.types import (
    ChatMessage,
    Role,
    ToolCall,
    ToolCallChunk,
    ToolCallFunction,
)

__all__ = [
    "CancellationToken",
    "ChatMessage",
    "CompletionClient",
    "HttpTransport",
    "OpenAICompatClient",
    "Role",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallChunk",
    "ToolCallFunction",
    "merge_tool_call_chunks",
]
