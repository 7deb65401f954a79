"""Single-flight token refresh coordinator.

Any number of callers may ask for a refresh at the same time. The first one
starts the renewal; everyone else joins as a pending waiter. When the renewal
settles, every waiter is released in join order with the same outcome.

State machine::

    Idle --refresh()--> Refreshing --settled--> Idle
"""
from __future__ import annotations
import asyncio
import logging
from typing import List, Optional

import httpx

from access_client.core.exceptions import AccessClientError, RefreshError, SessionExpiredError

from .credentials import Credential, CredentialStore, mask_token
from .session_end import SessionEndHandler
from .strategies import RefreshAttemptResult, RefreshCandidate, RefreshStrategyResolver

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """Guarantees at most one in-flight renewal across all callers.

    Usage:
        coordinator = RefreshCoordinator(store, resolver, http, session_end)
        new_token = await coordinator.refresh()
    """

    def __init__(
        self,
        store: CredentialStore,
        resolver: RefreshStrategyResolver,
        http: httpx.AsyncClient,
        session_end: SessionEndHandler,
    ):
        self.store = store
        self.resolver = resolver
        self.http = http
        self.session_end = session_end
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None
        self._disposed = False

    @property
    def refreshing(self) -> bool:
        return self._task is not None

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    async def refresh(self) -> str:
        """Return a freshly renewed access token.

        Raises:
            SessionExpiredError: Refresh token rejected, every candidate
                failed, or the session already ended
        """
        if self._disposed:
            raise AccessClientError("Refresh coordinator has been disposed")
        if self.session_end.ended:
            raise SessionExpiredError("Session has ended; login required")

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)

        if self._task is None:
            self._task = loop.create_task(self._run())
        else:
            logger.debug(f"Joining in-flight token refresh ({len(self._waiters)} waiting)")
        return await waiter

    async def _run(self) -> None:
        token: Optional[str] = None
        error: Optional[BaseException] = None
        try:
            token = await self._refresh_once()
        except asyncio.CancelledError:
            error = AccessClientError("Token refresh cancelled")
            raise
        except Exception as exc:
            error = exc
        finally:
            # Back to Idle before releasing waiters so a waiter may start the next refresh
            self._task = None
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if waiter.done():
                    continue
                if error is not None:
                    waiter.set_exception(error)
                else:
                    waiter.set_result(token)

    async def _refresh_once(self) -> str:
        credential = self.store.read()
        candidates = self.resolver.resolve(credential.identity_class, credential.refresh_token)
        if not candidates:
            self._end_session("no usable refresh credential", [])

        failures: List[RefreshError] = []
        for candidate in candidates:
            result = await self._attempt(candidate, credential)
            if result.success:
                return self._persist(candidate, credential, result)

            identity = candidate.identity_class.value
            failures.append(RefreshError(
                f"{identity} renewal failed",
                identity_class=identity,
                status_code=result.status_code,
                terminal=result.terminal,
            ))
            if result.terminal:
                self._end_session(f"{identity} refresh token rejected", failures)
            logger.warning(
                f"Token refresh via {identity} endpoint failed "
                f"(status {result.status_code}); trying next candidate"
            )

        self._end_session("all renewal candidates failed", failures)

    async def _attempt(self, candidate: RefreshCandidate, credential: Credential) -> RefreshAttemptResult:
        """Issue exactly one renewal call for a candidate."""
        try:
            resp = await self.http.post(
                candidate.url,
                json=candidate.build_body(credential.refresh_token),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning(f"Token refresh via {candidate.identity_class.value} endpoint errored: {exc}")
            return RefreshAttemptResult(success=False)

        try:
            payload = resp.json() if resp.content else None
        except ValueError:
            payload = None
        return candidate.normalize(resp.status_code, payload)

    def _persist(self, candidate: RefreshCandidate, credential: Credential, result: RefreshAttemptResult) -> str:
        updates = {"access_token": result.access_token}
        if credential.identity_class is None:
            updates["identity_class"] = candidate.identity_class
        if result.refresh_token:
            updates["refresh_token"] = result.refresh_token
        self.store.write(**updates)
        # Pull a refresh token the server rotated via Set-Cookie into the cache
        self.store.read()

        logger.info(
            f"Access token refreshed via {candidate.identity_class.value} endpoint: "
            f"{mask_token(result.access_token)}"
        )
        return result.access_token

    def _end_session(self, reason: str, failures: List[RefreshError]) -> None:
        self.session_end.trigger(reason)
        raise SessionExpiredError(reason, failures)

    def dispose(self) -> None:
        """Cancel any in-flight renewal and reject its waiters."""
        self._disposed = True
        if self._task is not None:
            self._task.cancel()
            self._task = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(AccessClientError("Refresh coordinator has been disposed"))
