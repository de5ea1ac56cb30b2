from jobstream.channel.backoff import BackoffPolicy
from jobstream.channel.service import ChannelConnectionError, ChannelManager
from jobstream.channel.transport import ChannelTransportError, SseChannelTransport
from jobstream.channel.types import ChannelEvent, ChannelEventName, ChannelStatus, ConnectionState

__all__ = [
    "BackoffPolicy",
    "ChannelManager",
    "ChannelConnectionError",
    "ChannelTransportError",
    "SseChannelTransport",
    "ChannelEvent",
    "ChannelEventName",
    "ChannelStatus",
    "ConnectionState",
]
