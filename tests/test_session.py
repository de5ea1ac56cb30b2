from __future__ import annotations

import asyncio

from jobstream.channel.transport import ChannelTransportError
from jobstream.channel.types import ConnectionState
from jobstream.client.session import ProcessingSession
from jobstream.core.config import Settings
from jobstream.jobs.service import JobStateMachine
from jobstream.jobs.types import JobSnapshot, JobState
from tests.fakes import CountingCredentials, FakeGateway, FakeTransport, RecordingSleep, make_channel, wait_until


def make_session(transport: FakeTransport, gateway: FakeGateway, sleep: RecordingSleep | None = None) -> ProcessingSession:
    channel = make_channel(transport, CountingCredentials(), sleep=sleep)
    return ProcessingSession(channel, JobStateMachine(gateway), gateway)


def test_session_streams_job_to_completion() -> None:
    async def scenario() -> tuple[JobSnapshot, ProcessingSession]:
        transport = FakeTransport()
        session = make_session(transport, FakeGateway())
        async with session:
            await session.submit("hello")
            stream = transport.current
            stream.push("MessageLength", 10)
            for _ in range(5):
                stream.push("ReceiveNotification", "x")
            await wait_until(lambda: session.snapshot.progress == 50)
            stream.push("ProcessingCompleted")
            snapshot = await asyncio.wait_for(session.wait_for_terminal(), timeout=1)
        return snapshot, session

    snapshot, session = asyncio.run(scenario())
    assert snapshot.state == JobState.COMPLETED
    assert snapshot.progress == 100
    assert snapshot.assembled_text == "xxxxx"
    assert session.channel.state == ConnectionState.DISCONNECTED


def test_reconnect_mid_processing_loses_and_duplicates_nothing() -> None:
    async def scenario() -> tuple[JobSnapshot, FakeTransport, RecordingSleep]:
        transport = FakeTransport()
        sleep = RecordingSleep()
        session = make_session(transport, FakeGateway(), sleep)
        async with session:
            await session.submit("hello")
            transport.current.push("MessageLength", 4)
            transport.current.push("ReceiveNotification", "a")
            transport.current.push("ReceiveNotification", "b")
            await wait_until(lambda: session.snapshot.received_count == 2)

            sleep.delays.clear()
            transport.fail_next(2)
            transport.current.drop(ChannelTransportError("network changed"))
            await wait_until(lambda: len(transport.streams) == 2 and session.channel.state == ConnectionState.CONNECTED)
            assert session.snapshot.state == JobState.PROCESSING

            transport.current.push("ReceiveNotification", "c")
            transport.current.push("ReceiveNotification", "d")
            transport.current.push("ProcessingCompleted")
            snapshot = await asyncio.wait_for(session.wait_for_terminal(), timeout=1)
        return snapshot, transport, sleep

    snapshot, transport, sleep = asyncio.run(scenario())
    assert sleep.delays == [0.0, 2.0, 5.0]
    assert transport.credentials == ["token-1", "token-2", "token-3", "token-4"]
    assert snapshot.assembled_text == "abcd"
    assert snapshot.received_count == 4
    assert snapshot.state == JobState.COMPLETED


def test_session_cancel_round_trip() -> None:
    async def scenario() -> tuple[JobSnapshot, FakeGateway]:
        transport = FakeTransport()
        gateway = FakeGateway()
        session = make_session(transport, gateway)
        async with session:
            await session.submit("hello")
            transport.current.push("ReceiveNotification", "a")
            await wait_until(lambda: session.snapshot.assembled_text == "a")
            assert await session.cancel() is True
            transport.current.push("ProcessingCancelled")
            snapshot = await asyncio.wait_for(session.wait_for_terminal(), timeout=1)
            assert session.reset().state == JobState.IDLE
        return snapshot, gateway

    snapshot, gateway = asyncio.run(scenario())
    assert gateway.cancel_calls == ["job-1"]
    assert snapshot.state == JobState.CANCELLED
    assert snapshot.assembled_text == ""


def test_from_settings_wires_http_components() -> None:
    async def scenario() -> ProcessingSession:
        session = ProcessingSession.from_settings(
            Settings(api_base_url="http://processor.test", access_token="abc"),
        )
        await session.close()
        return session

    session = asyncio.run(scenario())
    assert session.snapshot.state == JobState.IDLE
    assert session.channel.state == ConnectionState.DISCONNECTED
