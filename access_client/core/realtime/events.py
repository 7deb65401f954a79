"""Channel states, transport events and the reconnect backoff curve."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ChannelState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"


# Every transport event carries the generation of the connection attempt that
# produced it; events from a superseded attempt are dropped by the manager.
@dataclass(frozen=True)
class ConnectRequested:
    pass


@dataclass(frozen=True)
class Opened:
    generation: int
    connection: Any


@dataclass(frozen=True)
class Closed:
    generation: int
    reason: str


@dataclass(frozen=True)
class Errored:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class MessageReceived:
    generation: int
    frame: Any


@dataclass(frozen=True)
class VisibilityChanged:
    visible: bool


@dataclass(frozen=True)
class ReconnectDue:
    generation: int


def compute_backoff_delay(attempts: int, base: float, growth: float, cap: float) -> float:
    """Delay before reconnect attempt number ``attempts`` (zero-based).

    Returns ``min(base * growth ** attempts, cap)``. Non-decreasing in
    ``attempts`` for ``growth >= 1`` and never above ``cap``.

    Raises:
        ValueError: On negative attempts, non-positive base or cap, or growth below 1
    """
    if attempts < 0:
        raise ValueError("attempts must not be negative")
    if base <= 0 or cap <= 0:
        raise ValueError("base and cap must be positive")
    if growth < 1:
        raise ValueError("growth must be >= 1")
    try:
        delay = base * growth ** attempts
    except OverflowError:
        return cap
    return min(delay, cap)


def describe(error: Optional[BaseException]) -> str:
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__
