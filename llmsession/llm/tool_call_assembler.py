"""
Assembles streamed tool-call fragments into complete ToolCall objects.

Design goals:
  - Fragments are keyed by ``index`` (which parallel call they belong to),
    never by id, because the id itself may arrive split across fragments.
  - The id is overwritten by the latest non-empty value seen; the name is
    set whenever a fragment carries one.
  - Argument fragments are appended verbatim to a per-index buffer and never
    parsed here -- partial JSON is normal mid-stream.
  - ``build()`` can be called any number of times while fragments keep
    arriving; the result always equals a from-scratch merge of everything
    fed so far (``merge_tool_call_chunks``).

An assembler holds per-stream scratch state: create a fresh one for every
streaming request.
"""

from __future__ import annotations

from typing import Iterable

from llmsession.llm.types import ToolCall, ToolCallChunk, ToolCallFunction


class ToolCallAssembler:
    """Buffers tool-call fragments and emits merged ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, chunk: ToolCallChunk) -> None:
        """Merge a single fragment into the buffer for its index."""
        buf = self._buf.get(chunk.index)
        if buf is None:
            buf = {"id": "", "type": "function", "name": "", "args": []}
            self._buf[chunk.index] = buf

        if chunk.id:
            buf["id"] = chunk.id

        if chunk.type:
            buf["type"] = chunk.type

        func = chunk.function
        if func is not None:
            if func.name:
                buf["name"] = func.name
            if func.arguments:
                buf["args"].append(func.arguments)

    def feed_all(self, chunks: Iterable[ToolCallChunk]) -> ToolCallAssembler:
        for chunk in chunks:
            self.feed(chunk)
        return self

    def build(self) -> list[ToolCall]:
        """
        Finalize every buffered call, ordered by ascending index.

        Does not consume the buffers, so it is safe to call after every
        fragment.
        """
        calls: list[ToolCall] = []
        for idx in sorted(self._buf):
            buf = self._buf[idx]
            call_id = buf["id"] or f"call_{idx}"
            calls.append(
                ToolCall(
                    id=call_id,
                    type=buf["type"],
                    function=ToolCallFunction(
                        name=buf["name"],
                        arguments="".join(buf["args"]),
                    ),
                )
            )
        return calls

    def missing_ids(self) -> list[int]:
        """Indices that have not received an id yet."""
        return [idx for idx in sorted(self._buf) if not self._buf[idx]["id"]]

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)


def merge_tool_call_chunks(chunks: Iterable[ToolCallChunk]) -> list[ToolCall]:
    """Merge a complete list of fragments from scratch."""
    return ToolCallAssembler().feed_all(chunks).build()
