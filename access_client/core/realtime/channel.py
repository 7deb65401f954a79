"""Resilient realtime channel manager.

One reader task owns the transport and turns its activity into events; one
worker task consumes those events in order and is the only code that mutates
channel state. Reconnect timers and visibility changes feed the same queue,
so no two handlers ever interleave.

State machine::

    Closed -> Connecting -> Open -> Reconnecting -> Connecting -> ...

``close()`` is the only terminal transition.
"""
from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from websockets.asyncio.client import connect as ws_connect

from access_client.core.exceptions import ChannelError

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
    describe,
)

logger = logging.getLogger(__name__)

HEARTBEAT = "heartbeat"
HEARTBEAT_RESPONSE = "heartbeat_response"
IDENTIFY = "identify"
IDENTIFICATION_SUCCESSFUL = "identification_successful"


class Connection(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[Any]: ...


Connector = Callable[[str], Awaitable[Connection]]
MessageListener = Callable[[Dict[str, Any]], None]


async def websockets_connector(url: str) -> Connection:
    """Open a WebSocket with the ``websockets`` library; the manager bounds the wait."""
    return await ws_connect(url, open_timeout=None)


class RealtimeChannelManager:
    """Keeps one push connection alive for the lifetime of its owner.

    Usage:
        channel = RealtimeChannelManager(url, user_id="42")
        channel.add_listener(lambda msg: print(msg))
        channel.connect()
        ...
        channel.set_visibility(False)   # host suspended
        channel.set_visibility(True)    # host resumed, reconnects at once if needed
        await channel.close()
    """

    def __init__(
        self,
        url: str,
        user_id: Any,
        *,
        connector: Optional[Connector] = None,
        connect_timeout: float = 10.0,
        base_delay: float = 1.0,
        growth: float = 2.0,
        max_delay: float = 30.0,
        max_reconnect_attempts: Optional[int] = None,
    ):
        # Fail fast on a bad backoff configuration
        compute_backoff_delay(0, base_delay, growth, max_delay)
        self.url = url
        self.user_id = user_id
        self.connector = connector or websockets_connector
        self.connect_timeout = connect_timeout
        self.base_delay = base_delay
        self.growth = growth
        self.max_delay = max_delay
        self.max_reconnect_attempts = max_reconnect_attempts

        self._state = ChannelState.CLOSED
        self._reconnect_attempts = 0
        self._last_error: Optional[str] = None
        self._visible = True
        self._active = False
        self._closed = False
        self._generation = 0
        self._connection: Optional[Connection] = None
        self._reader: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._events: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._listeners: List[MessageListener] = []
        self._closing: Set[asyncio.Task] = set()

    # ─────────────────────────────────────────────────────────────────────────
    # Public surface
    # ─────────────────────────────────────────────────────────────────────────
    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: MessageListener) -> None:
        """Subscribe to decoded server messages, delivered in arrival order."""
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def connect(self) -> None:
        """Start (or resume) keeping the channel open. Must be called on the event loop."""
        if self._closed:
            raise ChannelError("Channel manager has been closed")
        self._post(ConnectRequested())

    def set_visibility(self, visible: bool) -> None:
        """Report whether the host is in the foreground."""
        if self._closed:
            return
        if self._worker is None:
            self._visible = visible
            return
        self._post(VisibilityChanged(visible))

    async def close(self) -> None:
        """Tear the channel down for good."""
        if self._closed:
            return
        self._closed = True
        self._active = False
        self._generation += 1
        self._cancel_timer()
        self._state = ChannelState.CLOSED

        reader, self._reader = self._reader, None
        connection, self._connection = self._connection, None
        if reader is not None:
            reader.cancel()
        if connection is not None:
            await self._close_connection(connection)
        if reader is not None:
            await asyncio.gather(reader, return_exceptions=True)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

        worker, self._worker = self._worker, None
        if worker is not None and worker is not asyncio.current_task():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        logger.info("Realtime channel closed")

    # ─────────────────────────────────────────────────────────────────────────
    # Event loop plumbing
    # ─────────────────────────────────────────────────────────────────────────
    def _post(self, event: Any) -> None:
        if self._closed:
            return
        if self._worker is None:
            self._events = asyncio.Queue()
            self._worker = asyncio.get_running_loop().create_task(self._process())
        self._events.put_nowait(event)

    async def _process(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Realtime event {type(event).__name__} failed: {exc}", exc_info=True)

    async def _handle(self, event: Any) -> None:
        if self._closed:
            return
        if isinstance(event, ConnectRequested):
            self._active = True
            if self._state is ChannelState.CLOSED:
                self._reconnect_attempts = 0
            if self._state not in (ChannelState.OPEN, ChannelState.CONNECTING):
                self._open()
        elif isinstance(event, VisibilityChanged):
            self._on_visibility(event.visible)
        elif isinstance(event, ReconnectDue):
            if event.generation == self._generation and self._state is ChannelState.RECONNECTING:
                self._timer = None
                if self._visible:
                    self._open()
        elif getattr(event, "generation", None) != self._generation:
            if isinstance(event, Opened):
                await self._close_connection(event.connection)
            logger.debug(f"Ignoring stale {type(event).__name__}")
        elif isinstance(event, Opened):
            await self._on_opened(event.connection)
        elif isinstance(event, MessageReceived):
            await self._on_message(event.frame)
        elif isinstance(event, Errored):
            self._on_lost(describe(event.error))
        elif isinstance(event, Closed):
            self._on_lost(event.reason)

    # ─────────────────────────────────────────────────────────────────────────
    # Transitions
    # ─────────────────────────────────────────────────────────────────────────
    def _open(self) -> None:
        self._cancel_timer()
        self._generation += 1
        self._state = ChannelState.CONNECTING
        if self._reader is not None:
            self._reader.cancel()
        self._reader = asyncio.get_running_loop().create_task(self._read(self._generation))
        logger.info(f"Connecting realtime channel {self.url} (attempt {self._reconnect_attempts + 1})")

    async def _read(self, generation: int) -> None:
        try:
            connection = await asyncio.wait_for(self.connector(self.url), self.connect_timeout)
        except asyncio.TimeoutError:
            self._post(Closed(generation, f"connect timed out after {self.connect_timeout:g}s"))
            return
        except Exception as exc:
            self._post(Errored(generation, exc))
            return

        self._post(Opened(generation, connection))
        try:
            async for frame in connection:
                self._post(MessageReceived(generation, frame))
        except Exception as exc:
            self._post(Errored(generation, exc))
            return
        self._post(Closed(generation, "connection closed"))

    async def _on_opened(self, connection: Connection) -> None:
        self._connection = connection
        self._state = ChannelState.OPEN
        self._reconnect_attempts = 0
        self._last_error = None
        logger.info("Realtime channel open")
        try:
            await connection.send(json.dumps({"type": IDENTIFY, "userId": self.user_id}))
        except Exception as exc:
            self._on_lost(f"identify failed: {describe(exc)}")

    async def _on_message(self, frame: Any) -> None:
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8", errors="replace")
        try:
            message = json.loads(frame)
        except (TypeError, ValueError):
            logger.warning(f"Dropping malformed realtime frame: {str(frame)[:80]!r}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object realtime frame: {str(frame)[:80]!r}")
            return

        kind = message.get("type")
        if kind == HEARTBEAT:
            logger.debug("Heartbeat received, acknowledging")
            if self._connection is not None:
                try:
                    await self._connection.send(json.dumps({"type": HEARTBEAT_RESPONSE}))
                except Exception as exc:
                    self._on_lost(f"heartbeat reply failed: {describe(exc)}")
            return
        if kind == IDENTIFICATION_SUCCESSFUL:
            logger.info(f"Realtime identification confirmed: {message.get('message', '')}")

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as exc:
                logger.warning(f"Realtime listener failed: {exc}", exc_info=True)

    def _on_lost(self, reason: str) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            task = asyncio.get_running_loop().create_task(self._close_connection(connection))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        self._last_error = reason
        self._generation += 1
        logger.warning(f"Realtime channel lost: {reason}")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._active:
            self._state = ChannelState.CLOSED
            return
        limit = self.max_reconnect_attempts
        if limit and self._reconnect_attempts >= limit:
            self._state = ChannelState.CLOSED
            logger.error(f"Realtime channel gave up after {self._reconnect_attempts} reconnect attempts")
            return

        self._state = ChannelState.RECONNECTING
        if not self._visible:
            logger.info("Host hidden; deferring realtime reconnect until visible")
            return

        delay = compute_backoff_delay(self._reconnect_attempts, self.base_delay, self.growth, self.max_delay)
        self._reconnect_attempts += 1
        self._timer = asyncio.get_running_loop().call_later(delay, self._post, ReconnectDue(self._generation))
        logger.warning(f"Reconnecting realtime channel in {delay:g}s (attempt {self._reconnect_attempts})")

    def _on_visibility(self, visible: bool) -> None:
        was_visible, self._visible = self._visible, visible
        if not visible:
            if self._state is ChannelState.RECONNECTING and self._timer is not None:
                logger.info("Host hidden; holding realtime reconnect until visible")
                self._cancel_timer()
            return
        if was_visible or not self._active:
            return
        if self._state in (ChannelState.OPEN, ChannelState.CONNECTING):
            return
        logger.info("Host visible again; reconnecting realtime channel now")
        self._open()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _close_connection(self, connection: Connection) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.debug(f"Ignoring error while closing realtime connection: {exc}")
