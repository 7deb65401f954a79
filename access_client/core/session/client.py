"""Authenticated JSON request layer.

``BearerRefreshAuth`` is the request interceptor: it attaches the current
access token, and when a response comes back ``401`` it asks the refresh
coordinator for a new token and re-sends the same request exactly once.
``ApiClient`` is a thin JSON wrapper bound to one backend origin; the two
backends share one interceptor, so a renewal triggered by either benefits
both.
"""
from __future__ import annotations
import logging
from http.cookiejar import CookieJar
from typing import Any, Dict, Optional

import httpx

from access_client.core.exceptions import ApiError, SessionExpiredError, UnexpectedResponseError
from access_client.core.urls import build_url

from .coordinator import RefreshCoordinator
from .credentials import CredentialStore, mask_token
from .session_end import SessionEndHandler

logger = logging.getLogger(__name__)


class BearerRefreshAuth(httpx.Auth):
    """httpx auth flow implementing attach-bearer, refresh-on-401, retry-once.

    Each request runs its own flow instance, so the retry flag is per request:
    a request that is still unauthorized after one renewal is handed back to
    the caller and the session is ended.
    """

    # Buffer the body so the retried request can be re-sent verbatim
    requires_request_body = True

    def __init__(self, store: CredentialStore, coordinator: RefreshCoordinator, session_end: SessionEndHandler):
        self.store = store
        self.coordinator = coordinator
        self.session_end = session_end

    def _attach(self, request: httpx.Request, token: Optional[str]) -> None:
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
            logger.debug(f"Attached bearer {mask_token(token)} to {request.method} {request.url}")
        else:
            request.headers.pop("Authorization", None)

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("BearerRefreshAuth only supports httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request):
        sent_token = self.store.read().access_token
        self._attach(request, sent_token)
        response = yield request

        if response.status_code != 401:
            return

        current = self.store.read().access_token
        if current and current != sent_token:
            # Another request already renewed the token while this one was in flight
            token = current
        else:
            try:
                token = await self.coordinator.refresh()
            except SessionExpiredError:
                self.session_end.trigger("token refresh failed")
                raise

        logger.debug(f"Retrying {request.method} {request.url} with refreshed token")
        self._attach(request, token)
        response = yield request

        if response.status_code == 401:
            logger.error(f"{request.method} {request.url} still unauthorized after token refresh")
            self.session_end.trigger("request unauthorized after token refresh")


class ApiClient:
    """JSON client for one backend origin.

    Usage:
        api = ApiClient("http://localhost:3000", auth=auth, cookies=jar)
        branches = await api.get_json("/api/branches")
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: Optional[httpx.Auth] = None,
        cookies: Optional[CookieJar] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            auth=auth,
            cookies=cookies,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def url(self, path: str) -> str:
        return build_url(self.base_url, path)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send a JSON request and decode the JSON response.

        Args:
            method: HTTP method
            path: Path relative to the backend origin, or an absolute URL
            json: Request payload (sent with ``Content-Type: application/json``)
            params: Query parameters
            headers: Extra request headers

        Returns:
            Decoded JSON body, or None for an empty response

        Raises:
            ApiError: Non-2xx response
            UnexpectedResponseError: 2xx response that is not JSON
            SessionExpiredError: Authorization could not be recovered
            httpx.HTTPError: Transport failure
        """
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        resp = await self._client.request(method, self.url(path), json=json, params=params, headers=request_headers)
        return self._decode(resp)

    def _decode(self, resp: httpx.Response) -> Any:
        endpoint = str(resp.request.url)
        content_type = resp.headers.get("content-type", "")
        text = resp.text

        if not resp.is_success:
            body: Any = text
            message = text or resp.reason_phrase
            if "json" in content_type:
                try:
                    body = resp.json()
                except ValueError:
                    pass
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error") or message
            raise ApiError(resp.status_code, str(message), endpoint, body)

        if resp.status_code == 204 or not text.strip():
            return None
        if "text/html" in content_type or text.lstrip().startswith("<"):
            logger.error(f"Server returned HTML instead of JSON for {endpoint}")
            raise UnexpectedResponseError(resp.status_code, "Server returned HTML instead of JSON", endpoint, text[:200])
        try:
            return resp.json()
        except ValueError:
            raise UnexpectedResponseError(resp.status_code, "Unexpected response format from server", endpoint, text[:200]) from None

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request_json("GET", path, params=params, **kwargs)

    async def post_json(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request_json("POST", path, json=json, **kwargs)

    async def put_json(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request_json("PUT", path, json=json, **kwargs)

    async def patch_json(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request_json("PATCH", path, json=json, **kwargs)

    async def delete_json(self, path: str, **kwargs) -> Any:
        return await self.request_json("DELETE", path, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
