from __future__ import annotations

import json
from typing import Any, AsyncIterator, Protocol

import httpx

from jobstream.channel.types import ChannelEvent

DEFAULT_EVENT_NAME = "message"


class ChannelTransportError(RuntimeError):
    pass


class ChannelStream(Protocol):
    def events(self) -> AsyncIterator[ChannelEvent]: ...

    async def aclose(self) -> None: ...


class ChannelTransport(Protocol):
    async def open(self, credential: str | None) -> ChannelStream: ...

    async def aclose(self) -> None: ...


def decode_event_arguments(data: str) -> tuple[Any, ...]:
    if not data:
        return ()
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        return (data,)
    if isinstance(decoded, list):
        return tuple(decoded)
    return (decoded,)


class SseChannelStream:
    """One open Server-Sent Events response.

    ``event:`` names the event, ``data:`` lines are joined and decoded as JSON.
    A JSON array is the argument list; any other payload is a single argument.
    Comment lines (``:``) are keep-alives and are skipped. A trailing event with
    no terminating blank line is discarded, as browsers do.
    """

    def __init__(self, response: httpx.Response):
        self._response = response

    async def events(self) -> AsyncIterator[ChannelEvent]:
        name: str | None = None
        data_lines: list[str] = []
        try:
            async for line in self._response.aiter_lines():
                if line == "":
                    if name is not None or data_lines:
                        yield ChannelEvent(
                            name=name or DEFAULT_EVENT_NAME,
                            arguments=decode_event_arguments("\n".join(data_lines)),
                        )
                    name = None
                    data_lines = []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field == "event":
                    name = value
                elif field == "data":
                    data_lines.append(value)
        except httpx.HTTPError as exc:
            raise ChannelTransportError(f"Channel stream failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._response.aclose()


class SseChannelTransport:
    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        connect_timeout_seconds: float = 30.0,
    ):
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._connect_timeout_seconds = connect_timeout_seconds

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # The stream stays open indefinitely, so only the handshake is bounded.
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._connect_timeout_seconds, read=None),
            )
        return self._client

    async def open(self, credential: str | None) -> SseChannelStream:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        request = self.client.build_request("GET", self._url, headers=headers)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise ChannelTransportError(f"Failed to open channel at {self._url}: {exc}") from exc
        if response.status_code != httpx.codes.OK:
            await response.aclose()
            raise ChannelTransportError(f"Channel handshake rejected with HTTP {response.status_code}")
        return SseChannelStream(response)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
