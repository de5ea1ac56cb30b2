from __future__ import annotations

import asyncio
from typing import Any, Callable

from jobstream.channel.backoff import BackoffPolicy
from jobstream.channel.service import ChannelManager
from jobstream.channel.transport import ChannelTransportError
from jobstream.channel.types import ChannelEvent
from jobstream.jobs.service import CancellationError

_DROP = object()


class FakeStream:
    def __init__(self) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def push(self, name: str, *arguments: Any) -> None:
        self.queue.put_nowait(ChannelEvent(name=name, arguments=tuple(arguments)))

    def drop(self, error: Exception | None = None) -> None:
        self.queue.put_nowait((_DROP, error))

    async def events(self):  # type: ignore[no-untyped-def]
        while True:
            item = await self.queue.get()
            if isinstance(item, tuple) and item and item[0] is _DROP:
                if item[1] is not None:
                    raise item[1]
                return
            yield item

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self) -> None:
        self.plan: list[Exception | None] = []
        self.credentials: list[str | None] = []
        self.streams: list[FakeStream] = []
        self.closed = False

    def fail_next(self, count: int = 1) -> None:
        self.plan.extend(ChannelTransportError("connection refused") for _ in range(count))

    @property
    def current(self) -> FakeStream:
        return self.streams[-1]

    async def open(self, credential: str | None) -> FakeStream:
        self.credentials.append(credential)
        if self.plan:
            outcome = self.plan.pop(0)
            if outcome is not None:
                raise outcome
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    async def aclose(self) -> None:
        self.closed = True


class CountingCredentials:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return f"token-{self.calls}"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FakeGateway:
    def __init__(self, job_id: str = "job-1") -> None:
        self.job_id = job_id
        self.submit_calls: list[tuple[str, str]] = []
        self.cancel_calls: list[str] = []
        self.submit_error: Exception | None = None
        self.cancel_error: CancellationError | None = None
        self.submit_gate: asyncio.Event | None = None
        self.cancel_gate: asyncio.Event | None = None

    async def submit_job(self, input_text: str, idempotency_key: str) -> str:
        self.submit_calls.append((input_text, idempotency_key))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        return self.job_id

    async def cancel_job(self, job_id: str) -> None:
        self.cancel_calls.append(job_id)
        if self.cancel_gate is not None:
            await self.cancel_gate.wait()
        if self.cancel_error is not None:
            raise self.cancel_error


def make_channel(
    transport: FakeTransport,
    credentials: Callable[[], str | None] | None = None,
    *,
    sleep: RecordingSleep | None = None,
    connect_attempts: int = 5,
) -> ChannelManager:
    return ChannelManager(
        transport,
        credentials or CountingCredentials(),
        BackoffPolicy([0, 2000, 5000, 10000, 15000]),
        connect_attempts=connect_attempts,
        sleep=sleep or RecordingSleep(),
    )


async def wait_until(predicate: Callable[[], bool], *, rounds: int = 200) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached")
