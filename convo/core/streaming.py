"""Streaming response accumulator.

Turns the server-sent event lines of a streamed completion into text
fragments. Fragments are handed to the caller as soon as they are parsed
while a running copy is kept. Only when the line source is exhausted is the
full text passed to ``on_complete``; errors and early closes drop it.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Awaitable, Callable

import structlog

logger = structlog.get_logger()

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def is_done_sentinel(line: str) -> bool:
    return line.startswith(DATA_PREFIX) and line[len(DATA_PREFIX):].strip() == DONE_SENTINEL


def parse_stream_delta(line: str) -> str | None:
    """Return the text fragment carried by one event line, if any.

    Non-data lines, the end sentinel and malformed payloads all yield None.
    """
    if not line.startswith(DATA_PREFIX):
        return None
    data_str = line[len(DATA_PREFIX):]
    if data_str.strip() == DONE_SENTINEL:
        return None
    try:
        data = json.loads(data_str)
        content = data["choices"][0]["delta"].get("content")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logger.debug("stream_line_skipped", line=line[:80])
        return None
    if isinstance(content, str) and content:
        return content
    return None


class ChatStream:
    """Single-pass async iterator over response fragments.

    Use as ``async with stream: async for fragment in stream: ...`` so an
    abandoned stream releases its connection. Leaving early never commits.
    """

    def __init__(
        self,
        lines: AsyncIterator[str],
        on_complete: Callable[[str], None],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._lines = lines
        self._on_complete = on_complete
        self._on_close = on_close
        self._parts: list[str] = []
        self._finished = False
        self._closed = False
        self.completed = False

    @property
    def text(self) -> str:
        """Text accumulated so far."""
        return "".join(self._parts)

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        try:
            while True:
                try:
                    line = await self._lines.__anext__()
                except StopAsyncIteration:
                    break
                if is_done_sentinel(line):
                    break
                fragment = parse_stream_delta(line)
                if fragment:
                    self._parts.append(fragment)
                    return fragment
        except BaseException:
            self._discard()
            await self._release()
            raise

        self._finished = True
        self.completed = True
        self._on_complete(self.text)
        await self._release()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Abandon the stream. Accumulated text is discarded if not complete."""
        if not self._finished:
            logger.debug("stream_abandoned", fragments=len(self._parts))
            self._discard()
        await self._release()

    async def __aenter__(self) -> ChatStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _discard(self) -> None:
        self._finished = True
        self._parts.clear()

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        close_lines = getattr(self._lines, "aclose", None)
        if close_lines is not None:
            await close_lines()
        if self._on_close is not None:
            await self._on_close()
