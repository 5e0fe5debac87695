"""
HTTP transport for the completion client.

Dependencies: ``httpx`` (async HTTP client).

Two calls are exposed, mirroring what the completion client needs:

* ``post_json`` -- one POST, returns the full response body.
* ``post_json_stream`` -- one POST, invokes ``on_line`` once per
  newline-delimited line of the response body as it arrives.

Transport failures and HTTP error statuses become ``NetworkError``.  A
cancellation token aborts the in-flight request and raises
``RequestCancelledError`` instead.
"""

from __future__ import annotations

import codecs
import inspect
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Union

import httpx

from llmsession.errors import NetworkError
from llmsession.llm.cancellation import CancellationToken, guarded

logger = logging.getLogger(__name__)

LineHandler = Callable[[str], Union[None, Awaitable[None]]]


class HttpTransport:
    """
    Parameters
    ----------
    timeout:
        Request timeout in seconds.
    client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject one backed by
        ``httpx.MockTransport``).  When omitted a client is opened per request.
    """

    def __init__(
        self,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = client

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Single request
    # ------------------------------------------------------------------

    async def post_json(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
        cancel_token: CancellationToken | None = None,
    ) -> str:
        return await guarded(cancel_token, self._post(url, body, headers))

    async def _post(self, url: str, body: str, headers: dict[str, str]) -> str:
        logger.debug("POST %s (%d bytes)", url, len(body))
        try:
            async with self._open() as client:
                resp = await client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.HTTPError as exc:
            raise NetworkError(f"HTTP request to {url} failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.error("HTTP %d from %s", resp.status_code, url)
            raise NetworkError(
                f"HTTP Error: {resp.status_code}",
                status_code=resp.status_code,
                response_text=resp.text,
            )
        return resp.text

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def post_json_stream(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
        on_line: LineHandler,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        await guarded(cancel_token, self._stream(url, body, headers, on_line))

    async def _stream(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
        on_line: LineHandler,
    ) -> None:
        logger.debug("POST (stream) %s (%d bytes)", url, len(body))
        stream_headers = dict(headers)
        stream_headers.setdefault("Accept", "text/event-stream")
        try:
            async with self._open() as client:
                async with client.stream(
                    "POST", url, content=body.encode("utf-8"), headers=stream_headers
                ) as response:
                    if response.status_code >= 400:
                        raw = await response.aread()
                        logger.error("HTTP %d from %s", response.status_code, url)
                        raise NetworkError(
                            f"HTTP Error: {response.status_code}",
                            status_code=response.status_code,
                            response_text=raw.decode("utf-8", errors="replace"),
                        )

                    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                    buffer = ""
                    async for raw_bytes in response.aiter_bytes():
                        buffer += decoder.decode(raw_bytes)
                        while "\n" in buffer:
                            line, buffer = buffer.split("\n", 1)
                            await _deliver(on_line, line.rstrip("\r"))

                    buffer += decoder.decode(b"", final=True)
                    if buffer:
                        await _deliver(on_line, buffer.rstrip("\r"))
        except httpx.HTTPError as exc:
            raise NetworkError(f"Streaming request to {url} failed: {exc}") from exc


async def _deliver(on_line: LineHandler, line: str) -> None:
    result = on_line(line)
    if inspect.isawaitable(result):
        await result
