"""Login, logout and session probing.

Login tries the admin endpoint first and falls back to the end-user endpoint
when the admin one answers 401; the endpoint that accepts the credentials
decides the identity class recorded for the session.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from access_client.config.settings import AppConfig
from access_client.core.exceptions import AccessClientError
from access_client.core.urls import build_url

from .client import ApiClient
from .credentials import CredentialStore, IdentityClass, mask_token
from .scheduler import ProactiveRefreshScheduler
from .session_end import SessionEndHandler

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    success: bool
    message: Optional[str] = None
    identity_class: Optional[IdentityClass] = None
    user: Dict[str, Any] = field(default_factory=dict)


class SessionAuthenticator:
    """Session lifecycle operations on top of the credential store."""

    def __init__(
        self,
        config: AppConfig,
        store: CredentialStore,
        http: httpx.AsyncClient,
        primary: ApiClient,
        session_end: SessionEndHandler,
        scheduler: ProactiveRefreshScheduler,
    ):
        self.config = config
        self.store = store
        self.http = http
        self.primary = primary
        self.session_end = session_end
        self.scheduler = scheduler

    def _secondary_url(self, path: str) -> str:
        return build_url(self.config.secondary_backend_url, path)

    async def _post_credentials(self, path: str, email: str, password: str) -> httpx.Response:
        return await self.http.post(
            self._secondary_url(path),
            json={"email": email, "password": password},
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate, detect the identity class and persist the session.

        Never raises for bad credentials or transport errors; the outcome is
        reported through the returned LoginResult.
        """
        logger.info(f"Attempting login for {email}")
        detected: Optional[IdentityClass] = None
        try:
            resp = await self._post_credentials(self.config.admin_login_path, email, password)
            if resp.is_success:
                detected = IdentityClass.ADMIN
            elif resp.status_code == 401:
                logger.info("Admin login rejected, trying user login")
                resp = await self._post_credentials(self.config.user_login_path, email, password)
                if resp.is_success:
                    detected = IdentityClass.USER
        except httpx.HTTPError as exc:
            logger.error(f"Login request failed: {exc}")
            return LoginResult(success=False, message="Login request failed")

        try:
            data = resp.json()
        except ValueError:
            return LoginResult(success=False, message="Unexpected response format from server")
        if not isinstance(data, dict):
            data = {}

        if not (resp.is_success and data.get("success")):
            return LoginResult(success=False, message=data.get("message") or "Invalid email or password")

        token = data.get("token") or data.get("accessToken")
        updates: Dict[str, Any] = {"identity_class": detected}
        if token:
            updates["access_token"] = token
        if data.get("refreshToken"):
            updates["refresh_token"] = data["refreshToken"]
        self.store.write(**updates)
        self.session_end.rearm()
        self.scheduler.start()

        logger.info(f"Login successful as {detected.value if detected else 'unknown'}: {mask_token(token)}")
        return LoginResult(success=True, identity_class=detected, user=data.get("user") or {})

    async def logout(self) -> None:
        """Tell the backend, then drop all local session state regardless of the outcome."""
        credential = self.store.read()
        if credential.identity_class is IdentityClass.ADMIN:
            path = self.config.admin_logout_path
        else:
            path = self.config.user_logout_path

        headers = {"Accept": "application/json"}
        if credential.identity_class is IdentityClass.ADMIN and credential.access_token:
            headers["Authorization"] = f"Bearer {credential.access_token}"
        try:
            resp = await self.http.delete(self._secondary_url(path), headers=headers)
            logger.info(f"Logout response status: {resp.status_code}")
        except httpx.HTTPError as exc:
            logger.warning(f"Logout request error: {exc}")

        self.session_end.trigger("logged out")

    async def current_user(self) -> Optional[Dict[str, Any]]:
        """Return the signed-in user, or None when the session is not authenticated."""
        try:
            user = await self.primary.get_json(self.config.current_user_path)
        except AccessClientError as exc:
            logger.info(f"User not authenticated: {exc}")
            return None
        return user if isinstance(user, dict) else None
