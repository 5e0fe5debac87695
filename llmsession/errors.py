"""
Exception hierarchy for the chat client.

Every failure a caller of ``send_message`` / ``resume_session`` can see is
one of the ``LLMError`` subclasses below.  Programming errors (driving the
session state machine illegally, starting a second turn while one is in
flight) are ``RuntimeError`` subclasses instead so they are never mistaken
for a provider fault.
"""

from __future__ import annotations

from typing import Any


class LLMError(Exception):
    """Base class for all chat-client errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        text = self.message
        if self.__cause__ is not None:
            text += f" (caused by {type(self.__cause__).__name__}: {self.__cause__})"
        return text


class ConfigurationError(LLMError):
    """Missing or invalid configuration, detected at construction time."""


class ValidationError(LLMError):
    """A message list or tool response failed validation before any I/O."""

    def __init__(self, message: str, parameter_name: str | None = None) -> None:
        super().__init__(message)
        self.parameter_name = parameter_name


class NetworkError(LLMError):
    """Transport-level failure (connection, timeout, HTTP error status)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class ResponseError(LLMError):
    """
    The server reported an error, or the payload is structurally invalid.

    Attributes
    ----------
    response_content:
        The raw response text (or SSE line) that triggered the error.
    status_code:
        Provider error code or HTTP status, when known.
    provider_name:
        Upstream provider name reported by routing gateways.
    raw_error:
        Upstream raw error text, when the gateway forwards it.
    """

    def __init__(
        self,
        message: str,
        response_content: str | None = None,
        status_code: int | str | None = None,
        provider_name: str | None = None,
        raw_error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.response_content = response_content
        self.status_code = status_code
        self.provider_name = provider_name
        self.raw_error = raw_error

    @classmethod
    def from_error_payload(
        cls,
        error: Any,
        response_content: str | None = None,
        status_code: int | None = None,
    ) -> ResponseError:
        """Build from a decoded ``ErrorPayload`` (see ``llmsession.llm.types``)."""
        message = error.message or "Unknown error"
        provider_name = error.metadata.provider_name if error.metadata else None
        raw = error.metadata.raw if error.metadata else None
        if provider_name:
            message = f"[{provider_name}] {message}"
        code = error.code if error.code is not None else status_code
        return cls(
            message,
            response_content=response_content,
            status_code=code,
            provider_name=provider_name,
            raw_error=raw,
        )

    def details(self) -> str:
        lines = [str(self)]
        if self.status_code is not None:
            lines.append(f"Status Code: {self.status_code}")
        if self.provider_name:
            lines.append(f"Provider: {self.provider_name}")
        if self.response_content:
            lines.append(f"Response Content: {self.response_content}")
        if self.raw_error:
            lines.append(f"Raw Error: {self.raw_error}")
        return "\n".join(lines)


class ToolError(LLMError):
    """A tool could not be found or its executor failed."""

    def __init__(self, message: str, tool_name: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class RequestCancelledError(LLMError):
    """The caller's cancellation token fired.  Not a fault."""

    def __init__(self, message: str = "Request was cancelled") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Programming errors
# ---------------------------------------------------------------------------


class InvalidStateTransitionError(RuntimeError):
    """A message was moved along an edge the state machine does not allow."""


class SessionBusyError(RuntimeError):
    """The operation is not allowed while a turn is in flight."""
