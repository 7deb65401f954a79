"""Realtime push channel.

Architecture:
- events.py: Channel states, transport events and the backoff curve
- channel.py: Event-driven channel manager (reconnect, heartbeat, visibility)
"""
from .channel import (
    HEARTBEAT,
    HEARTBEAT_RESPONSE,
    IDENTIFY,
    IDENTIFICATION_SUCCESSFUL,
    Connection,
    Connector,
    RealtimeChannelManager,
    websockets_connector,
)
from .events import (
    ChannelState,
    Closed,
    ConnectRequested,
    Errored,
    MessageReceived,
    Opened,
    ReconnectDue,
    VisibilityChanged,
    compute_backoff_delay,
)

__all__ = [
    # Channel
    "RealtimeChannelManager",
    "Connection",
    "Connector",
    "websockets_connector",
    "HEARTBEAT",
    "HEARTBEAT_RESPONSE",
    "IDENTIFY",
    "IDENTIFICATION_SUCCESSFUL",
    # Events
    "ChannelState",
    "ConnectRequested",
    "Opened",
    "Closed",
    "Errored",
    "MessageReceived",
    "VisibilityChanged",
    "ReconnectDue",
    "compute_backoff_delay",
]
