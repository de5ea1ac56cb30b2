from __future__ import annotations

import asyncio
import logging

from jobstream.api.client import ProcessorApiClient
from jobstream.channel.service import ChannelManager
from jobstream.channel.types import ChannelStatus
from jobstream.core.config import Settings, get_settings
from jobstream.core.credentials import CredentialProvider, credential_provider_from_settings
from jobstream.jobs.service import JobGateway, JobStateMachine
from jobstream.jobs.types import JobSnapshot

logger = logging.getLogger(__name__)


class ProcessingSession:
    """One channel, one gateway and one job state machine for a client session.

    Use it as an async context manager: the channel is opened on entry and
    closed on every exit path, together with the gateway when the session
    created it.
    """

    def __init__(
        self,
        channel: ChannelManager,
        machine: JobStateMachine,
        gateway: JobGateway | None = None,
        *,
        owns_gateway: bool = False,
    ):
        self._channel = channel
        self._machine = machine
        self._gateway = gateway
        self._owns_gateway = owns_gateway
        self._terminal = asyncio.Event()

        machine.bind(channel)
        machine.on_change(self._on_job_change)
        channel.on_status(self._on_channel_status)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        credential_provider: CredentialProvider | None = None,
    ) -> "ProcessingSession":
        settings = settings or get_settings()
        provider = credential_provider or credential_provider_from_settings(settings)
        gateway = ProcessorApiClient.from_settings(settings, provider)
        channel = ChannelManager.from_settings(settings, provider)
        machine = JobStateMachine(gateway, inband_status_markers=settings.inband_status_markers)
        return cls(channel, machine, gateway, owns_gateway=True)

    @property
    def channel(self) -> ChannelManager:
        return self._channel

    @property
    def machine(self) -> JobStateMachine:
        return self._machine

    @property
    def snapshot(self) -> JobSnapshot:
        return self._machine.snapshot

    async def open(self) -> bool:
        return await self._channel.connect()

    async def close(self) -> None:
        try:
            await self._channel.disconnect()
        finally:
            if self._owns_gateway and isinstance(self._gateway, ProcessorApiClient):
                await self._gateway.aclose()

    async def __aenter__(self) -> "ProcessingSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def submit(self, input_text: str) -> JobSnapshot:
        self._terminal.clear()
        return await self._machine.submit(input_text)

    async def cancel(self) -> bool:
        return await self._machine.cancel()

    def reset(self) -> JobSnapshot:
        return self._machine.reset()

    async def wait_for_terminal(self) -> JobSnapshot:
        await self._terminal.wait()
        return self._machine.snapshot

    def _on_job_change(self, snapshot: JobSnapshot) -> None:
        if snapshot.is_terminal:
            self._terminal.set()
        else:
            self._terminal.clear()

    def _on_channel_status(self, status: ChannelStatus) -> None:
        logger.debug("Channel %s (attempt %d)", status.state.value, status.attempt)
