"""Proactive token renewal on a fixed interval, independent of request traffic."""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

from access_client.core.exceptions import AccessClientError

from .coordinator import RefreshCoordinator
from .credentials import CredentialStore, IdentityClass

logger = logging.getLogger(__name__)


class ProactiveRefreshScheduler:
    """Calls the coordinator every ``interval`` seconds.

    The interval must be shorter than the access token lifetime so renewal
    happens well before expiry. Failures are logged only: the 401-triggered
    refresh on the next request remains the safety net.
    """

    def __init__(self, store: CredentialStore, coordinator: RefreshCoordinator, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.store = store
        self.coordinator = coordinator
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking; a second call while running is a no-op."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Proactive token refresh every {self.interval:g}s")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Proactive token refresh stopped")
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> bool:
        """Run one scheduled renewal. Returns True if a token was renewed."""
        credential = self.store.read()
        # Admin refresh tokens live in an HttpOnly cookie, so their absence here is expected
        if not credential.refresh_token and credential.identity_class is not IdentityClass.ADMIN:
            logger.debug("Skipping scheduled refresh: no refresh token available")
            return False

        expiry = self.store.access_token_expiry()
        if expiry is not None:
            logger.debug(f"Scheduled refresh; current token expires at {expiry.isoformat()}")
        try:
            await self.coordinator.refresh()
        except AccessClientError as exc:
            logger.warning(f"Scheduled token refresh failed: {exc}")
            return False
        return True
