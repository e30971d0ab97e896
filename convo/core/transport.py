"""Transport: the HTTP boundary to the chat-completions endpoint.

The engine only talks to ``ChatTransport``; ``HttpxTransport`` is the stock
implementation. Status handling and body decoding belong to the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator

import httpx
import structlog

from convo.core.errors import TransportError

logger = structlog.get_logger()

COMPLETIONS_PATH = "/chat/completions"


@dataclass
class TransportResponse:
    """A fully buffered response."""

    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class StreamResponse(ABC):
    """An open response whose body is consumed line by line."""

    status_code: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @abstractmethod
    def lines(self) -> AsyncIterator[str]:
        """Yield body lines as they arrive. Single pass."""


class ChatTransport(ABC):
    """Issues chat-completions POSTs."""

    @abstractmethod
    async def post(self, payload: dict[str, Any]) -> TransportResponse:
        """Send ``payload`` and return the buffered response."""

    @abstractmethod
    def stream(self, payload: dict[str, Any]) -> AsyncContextManager[StreamResponse]:
        """Send ``payload`` and keep the response open for line streaming."""

    async def aclose(self) -> None:
        pass


class _HttpxStreamResponse(StreamResponse):
    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.status_code = response.status_code

    async def lines(self) -> AsyncIterator[str]:
        try:
            async for line in self._response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            raise TransportError(f"stream interrupted: {e}") from e


class HttpxTransport(ChatTransport):
    """``httpx.AsyncClient`` based transport with bearer-token auth."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning("api_key_missing", base_url=base_url)

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client.base_url = base_url
        self._client.headers.update(headers)

    async def post(self, payload: dict[str, Any]) -> TransportResponse:
        try:
            response = await self._client.post(COMPLETIONS_PATH, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"request failed: {e}") from e
        return TransportResponse(status_code=response.status_code, text=response.text)

    @asynccontextmanager
    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[StreamResponse]:
        request = self._client.build_request("POST", COMPLETIONS_PATH, json=payload)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"request failed: {e}") from e
        try:
            yield _HttpxStreamResponse(response)
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
