"""Owned wiring of the whole access layer.

``AccessSession`` builds one credential store, one refresh coordinator and
one interceptor, and shares them between the primary and secondary backend
clients. It also owns the proactive scheduler and any realtime channels, so
``aclose()`` is a single teardown point.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, List, Optional, Set

import httpx

from access_client.config.settings import AppConfig, load_settings
from access_client.core.realtime.channel import Connector, RealtimeChannelManager
from access_client.core.urls import build_url, websocket_url

from .auth import SessionAuthenticator
from .client import ApiClient, BearerRefreshAuth
from .coordinator import RefreshCoordinator
from .credentials import (
    CredentialStore,
    IdentityClass,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    cookie_file_for,
    open_cookie_jar,
)
from .scheduler import ProactiveRefreshScheduler
from .session_end import RedirectCallback, SessionEndHandler
from .strategies import RefreshStrategyResolver

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"


class AccessSession:
    """Entry point for applications.

    Usage:
        async with AccessSession.from_settings() as session:
            result = await session.auth.login("admin@example.com", "secret")
            branches = await session.primary.get_json("/api/branches")
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        kv: Optional[KeyValueStore] = None,
        redirect: Optional[RedirectCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connector: Optional[Connector] = None,
    ):
        self.config = config
        self.connector = connector

        if kv is None:
            kv = JsonFileStore(config.credentials_file) if config.credentials_file else MemoryStore()
        # Server-set cookies (the admin refresh token among them) persist beside the credentials file
        self.cookie_jar = open_cookie_jar(cookie_file_for(kv.path) if isinstance(kv, JsonFileStore) else None)
        self.store = CredentialStore(kv, httpx.Cookies(self.cookie_jar))
        self.session_end = SessionEndHandler(self.store, config.login_url, redirect)

        secondary = config.secondary_backend_url
        self.resolver = RefreshStrategyResolver({
            IdentityClass.ADMIN: build_url(secondary, config.admin_refresh_path),
            IdentityClass.STAFF: build_url(secondary, config.staff_refresh_path),
            IdentityClass.USER: build_url(secondary, config.user_refresh_path),
        })

        # Renewal and login calls go out without the interceptor
        self._http = httpx.AsyncClient(cookies=self.cookie_jar, timeout=config.request_timeout, transport=transport)
        self.coordinator = RefreshCoordinator(self.store, self.resolver, self._http, self.session_end)

        interceptor = BearerRefreshAuth(self.store, self.coordinator, self.session_end)
        self.primary = ApiClient(
            config.primary_backend_url,
            auth=interceptor,
            cookies=self.cookie_jar,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.secondary = ApiClient(
            secondary,
            auth=interceptor,
            cookies=self.cookie_jar,
            timeout=config.request_timeout,
            transport=transport,
        )

        self.scheduler = ProactiveRefreshScheduler(self.store, self.coordinator, config.proactive_refresh_interval)
        self.auth = SessionAuthenticator(config, self.store, self._http, self.primary, self.session_end, self.scheduler)

        self._channels: List[RealtimeChannelManager] = []
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self.session_end.add_listener(self._on_session_end)

    @classmethod
    def from_settings(cls, config: Optional[AppConfig] = None, **kwargs) -> "AccessSession":
        return cls(config or load_settings(), **kwargs)

    async def __aenter__(self) -> "AccessSession":
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def open(self) -> None:
        """Resume a persisted session: start proactive renewal if credentials exist."""
        if not self.store.read().is_empty:
            self.scheduler.start()

    def build_url(self, path: str, backend: str = PRIMARY) -> str:
        if backend == PRIMARY:
            return build_url(self.config.primary_backend_url, path)
        if backend == SECONDARY:
            return build_url(self.config.secondary_backend_url, path)
        raise ValueError(f"Unknown backend {backend!r}; expected '{PRIMARY}' or '{SECONDARY}'")

    def realtime_channel(self, user_id: Any, *, role: Optional[str] = None) -> RealtimeChannelManager:
        """Create a realtime channel owned (and closed) by this session."""
        url = websocket_url(self.config.primary_backend_url, self.config.realtime_path, userId=user_id, role=role)
        channel = RealtimeChannelManager(
            url,
            user_id,
            connector=self.connector,
            connect_timeout=self.config.realtime_connect_timeout,
            base_delay=self.config.reconnect_base_delay,
            growth=self.config.reconnect_growth,
            max_delay=self.config.reconnect_max_delay,
            max_reconnect_attempts=self.config.max_reconnect_attempts,
        )
        self._channels.append(channel)
        return channel

    def _on_session_end(self, reason: str) -> None:
        self.scheduler.stop()
        channels, self._channels = self._channels, []
        for channel in channels:
            task = asyncio.get_running_loop().create_task(channel.close())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.scheduler.stop()
        self.coordinator.dispose()

        channels, self._channels = self._channels, []
        for channel in channels:
            await channel.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self.primary.aclose()
        await self.secondary.aclose()
        await self._http.aclose()
        self.store.save_cookies()
        logger.debug("Access session closed")
