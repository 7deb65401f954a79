"""Pytest shared fixtures for the access layer tests."""
import asyncio
import inspect
import json
import pathlib
import sys
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import Mock

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import jwt
import pytest

from access_client.config.settings import AppConfig
from access_client.core.session import AccessSession, CredentialStore, MemoryStore

PRIMARY_URL = "http://primary.test"
SECONDARY_URL = "http://secondary.test"
JWT_SIGNING_KEY = "access-client-test-signing-key-0123456789"


# ─────────────────────────────────────────────────────────────────────────────
# Tokens & config
# ─────────────────────────────────────────────────────────────────────────────
def _mint_token(subject: str = "42", expires_in: int = 300, **claims) -> str:
    payload = {"sub": subject, "exp": int(time.time()) + expires_in}
    payload.update(claims)
    return jwt.encode(payload, JWT_SIGNING_KEY, algorithm="HS256")


@pytest.fixture
def mint_token():
    """Factory for signed JWT access tokens with a controllable expiry."""
    return _mint_token


def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=True,
        primary_backend_url=PRIMARY_URL,
        secondary_backend_url=SECONDARY_URL,
        request_timeout=5.0,
        proactive_refresh_interval=240.0,
        realtime_connect_timeout=0.5,
        reconnect_base_delay=0.01,
        reconnect_growth=2.0,
        reconnect_max_delay=0.05,
    )
    base.update(overrides)
    return AppConfig(**base)


@pytest.fixture
def config():
    return make_config()


# ─────────────────────────────────────────────────────────────────────────────
# Fake HTTP backends
# ─────────────────────────────────────────────────────────────────────────────
Handler = Callable[[httpx.Request], Any]


class FakeBackend:
    """Routes requests by method and absolute URL (without query) to handlers.

    Handlers may be plain or async callables returning an ``httpx.Response``.
    Every request is recorded in arrival order.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def route(self, method: str, url: str, handler: Optional[Handler] = None, *,
              status: int = 200, json: Any = None, headers: Optional[Dict[str, str]] = None) -> None:
        if handler is None:
            def handler(request, _status=status, _json=json, _headers=headers):
                return httpx.Response(_status, json=_json, headers=_headers)
        self.routes[(method.upper(), url)] = handler

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and _route_key(r)[1] == url]

    def bearer_of(self, request: httpx.Request) -> Optional[str]:
        value = request.headers.get("Authorization", "")
        return value[len("Bearer "):] if value.startswith("Bearer ") else None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        # Auth flows mutate and re-send the same Request object, so record a snapshot
        self.requests.append(httpx.Request(
            request.method, request.url, headers=request.headers.copy(), content=request.content,
        ))
        handler = self.routes.get(_route_key(request))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _route_key(request: httpx.Request) -> Tuple[str, str]:
    url = request.url
    return request.method, f"{url.scheme}://{url.host}{url.path}"


@pytest.fixture
def backend():
    return FakeBackend()


# ─────────────────────────────────────────────────────────────────────────────
# Fake realtime transport
# ─────────────────────────────────────────────────────────────────────────────
_END = object()


class FakeConnection:
    """In-memory stand-in for a WebSocket connection."""

    def __init__(self):
        self.sent: List[str] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    def sent_json(self) -> List[Any]:
        return [json.loads(s) for s in self.sent]

    def push(self, frame: Any) -> None:
        if isinstance(frame, (dict, list)):
            frame = json.dumps(frame)
        self._frames.put_nowait(frame)

    def drop(self, error: Optional[BaseException] = None) -> None:
        """Simulate the server side going away (cleanly, or with an error)."""
        self._frames.put_nowait(error if error is not None else _END)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("connection is closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._frames.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    """Connector whose outcomes are scripted: a FakeConnection, an exception, or "hang"."""

    HANG = "hang"

    def __init__(self):
        self.urls: List[str] = []
        self.connections: List[FakeConnection] = []
        self._script: List[Any] = []
        self.default: Any = None

    def script(self, *outcomes: Any) -> None:
        self._script.extend(outcomes)

    @property
    def attempts(self) -> int:
        return len(self.urls)

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self._script:
            outcome = self._script.pop(0)
        elif self.default is not None:
            outcome = self.default
        else:
            outcome = FakeConnection()
        if outcome == self.HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        self.connections.append(outcome)
        return outcome


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds, failing after a timeout."""
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within timeout")
            await asyncio.sleep(0.005)
    return _wait_until


# ─────────────────────────────────────────────────────────────────────────────
# Session wiring
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def redirect():
    return Mock(name="redirect")


@pytest.fixture
def make_session(backend, connector, redirect):
    """Factory for an AccessSession wired to the fake backend and connector."""
    def _make(config: Optional[AppConfig] = None, kv=None) -> AccessSession:
        return AccessSession(
            config or make_config(),
            kv=kv if kv is not None else MemoryStore(),
            redirect=redirect,
            transport=backend.transport,
            connector=connector,
        )
    return _make


@pytest.fixture
def store():
    return CredentialStore(MemoryStore(), httpx.Cookies())
