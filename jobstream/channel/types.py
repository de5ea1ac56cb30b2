from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ChannelEventName(str, Enum):
    MESSAGE_LENGTH = "MessageLength"
    RECEIVE_NOTIFICATION = "ReceiveNotification"
    PROCESSING_COMPLETED = "ProcessingCompleted"
    PROCESSING_CANCELLED = "ProcessingCancelled"


@dataclass(frozen=True)
class ChannelEvent:
    name: str
    arguments: tuple[Any, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ChannelStatus:
    state: ConnectionState
    attempt: int
    error: Exception | None = None
