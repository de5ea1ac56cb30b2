from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from jobstream.channel.backoff import BackoffPolicy
from jobstream.channel.transport import ChannelStream, ChannelTransport, ChannelTransportError, SseChannelTransport
from jobstream.channel.types import ChannelEvent, ChannelStatus, ConnectionState
from jobstream.core.config import Settings
from jobstream.core.credentials import CredentialProvider

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]
StatusListener = Callable[[ChannelStatus], Any]
Sleeper = Callable[[float], Awaitable[Any]]


class ChannelConnectionError(RuntimeError):
    pass


def _event_key(event_name: str | Enum) -> str:
    if isinstance(event_name, Enum):
        return str(event_name.value)
    return event_name


class ChannelManager:
    """Owns the single push connection of a client session.

    The initial ``connect()`` gives up after ``connect_attempts`` and reports a
    ``ChannelConnectionError`` through the status listeners. Once connected, a
    dropped stream is reopened forever along the backoff schedule. Every open
    attempt asks the credential provider for a token, so a refreshed credential
    is used on the next reconnect.
    """

    def __init__(
        self,
        transport: ChannelTransport,
        credential_provider: CredentialProvider,
        backoff: BackoffPolicy | None = None,
        *,
        connect_attempts: int = 5,
        sleep: Sleeper = asyncio.sleep,
        owns_transport: bool = False,
    ):
        if connect_attempts < 1:
            raise ValueError("connect_attempts must be >= 1")
        self._transport = transport
        self._credential_provider = credential_provider
        self._backoff = backoff or BackoffPolicy()
        self._connect_attempts = connect_attempts
        self._sleep = sleep
        self._owns_transport = owns_transport

        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._credential: str | None = None
        self._last_error: Exception | None = None
        self._handlers: dict[str, EventHandler] = {}
        self._status_listeners: list[StatusListener] = []
        self._stream: ChannelStream | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._closing = False

    @classmethod
    def from_settings(cls, settings: Settings, credential_provider: CredentialProvider) -> "ChannelManager":
        transport = SseChannelTransport(
            settings.notifications_url,
            connect_timeout_seconds=settings.request_timeout_seconds,
        )
        return cls(
            transport,
            credential_provider,
            BackoffPolicy(settings.reconnect_delays_ms),
            connect_attempts=settings.connect_attempts,
            owns_transport=True,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def credential(self) -> str | None:
        return self._credential

    @property
    def status(self) -> ChannelStatus:
        return ChannelStatus(state=self._state, attempt=self._attempt, error=self._last_error)

    def on_event(self, event_name: str | Enum, handler: EventHandler) -> None:
        key = _event_key(event_name)
        if key in self._handlers:
            logger.debug("Replacing handler for channel event %s", key)
        self._handlers[key] = handler

    def on_status(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    async def connect(self) -> bool:
        if self._pump_task is not None and not self._pump_task.done():
            return True
        self._closing = False
        self._last_error = None
        self._set_state(ConnectionState.CONNECTING)
        stream = await self._open(max_attempts=self._connect_attempts)
        if stream is None:
            if not self._closing:
                error = ChannelConnectionError(f"Channel unavailable after {self._connect_attempts} attempts")
                logger.error("%s", error)
                self._last_error = error
                self._set_state(ConnectionState.DISCONNECTED)
            return False
        self._pump_task = asyncio.create_task(self._pump(stream), name="jobstream-channel-pump")
        return True

    async def disconnect(self) -> None:
        self._closing = True
        task, self._pump_task = self._pump_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Channel pump ended with an error")
        await self._close_stream()
        if self._owns_transport:
            await self._transport.aclose()
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Channel disconnected")

    async def __aenter__(self) -> "ChannelManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.disconnect()

    async def _open(self, *, max_attempts: int | None) -> ChannelStream | None:
        attempt = 0
        while not self._closing:
            if max_attempts is not None and attempt >= max_attempts:
                return None
            self._attempt = attempt
            self._set_state(self._state)
            await self._sleep(self._backoff.delay_seconds(attempt))
            if self._closing:
                return None

            try:
                credential = self._credential_provider()
            except Exception as exc:
                logger.warning("Credential lookup for channel attempt %d failed: %s", attempt + 1, exc)
                self._last_error = exc
                attempt += 1
                continue
            try:
                stream = await self._transport.open(credential)
            except ChannelTransportError as exc:
                logger.warning("Channel open attempt %d failed: %s", attempt + 1, exc)
                self._last_error = exc
                attempt += 1
                continue

            self._credential = credential
            self._stream = stream
            self._attempt = 0
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Channel connected")
            return stream
        return None

    async def _pump(self, stream: ChannelStream) -> None:
        while True:
            error: Exception | None = None
            try:
                async for event in stream.events():
                    self._dispatch(event)
            except ChannelTransportError as exc:
                error = exc
            except Exception as exc:
                logger.exception("Channel stream failed")
                error = exc
            await self._close_stream()
            if self._closing:
                return

            logger.warning("Channel dropped (%s); reconnecting", error or "stream closed by server")
            self._last_error = error
            self._set_state(ConnectionState.RECONNECTING)
            reopened = await self._open(max_attempts=None)
            if reopened is None:
                return
            stream = reopened

    def _dispatch(self, event: ChannelEvent) -> None:
        handler = self._handlers.get(event.name)
        if handler is None:
            logger.debug("No handler for channel event %s", event.name)
            return
        try:
            handler(*event.arguments)
        except Exception:
            logger.exception("Handler for channel event %s failed", event.name)

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.aclose()

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        status = self.status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Channel status listener failed")
