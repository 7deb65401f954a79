"""Session-end handling: purge credentials and send the user to login, once."""
from __future__ import annotations
import logging
from typing import Callable, List, Optional

from .credentials import CredentialStore

logger = logging.getLogger(__name__)

RedirectCallback = Callable[[str], None]
SessionEndListener = Callable[[str], None]


def log_redirect(login_url: str) -> None:
    """Default redirect: there is no browser to navigate, so record the target."""
    logger.warning(f"Session ended, re-authentication required at {login_url}")


class SessionEndHandler:
    """Idempotent terminal-failure handler.

    ``trigger()`` runs at most once no matter how many in-flight requests fail
    together. The guard stays latched until ``rearm()`` is called after a
    successful login.
    """

    def __init__(self, store: CredentialStore, login_url: str, redirect: Optional[RedirectCallback] = None):
        self.store = store
        self.login_url = login_url
        self.redirect = redirect or log_redirect
        self._ended = False
        self._listeners: List[SessionEndListener] = []

    @property
    def ended(self) -> bool:
        return self._ended

    def add_listener(self, listener: SessionEndListener) -> None:
        """Register a callback invoked with the reason when the session ends."""
        self._listeners.append(listener)

    def trigger(self, reason: str) -> bool:
        """End the session. Returns False if it had already ended."""
        if self._ended:
            logger.debug(f"Session end already handled, ignoring: {reason}")
            return False
        self._ended = True

        logger.error(f"Session ended: {reason}")
        self.store.clear()
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception as exc:
                logger.warning(f"Session end listener failed: {exc}", exc_info=True)
        self.redirect(self.login_url)
        return True

    def rearm(self) -> None:
        """Allow a new session to end again (called after a successful login)."""
        self._ended = False
