"""Typed exceptions for the access layer."""
from __future__ import annotations
from typing import Any, List, Optional


class AccessClientError(Exception):
    """Base exception for all access layer operations."""
    pass


class ApiError(AccessClientError):
    """Non-2xx response from a backend, surfaced to the caller as-is.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: URL that failed
        body: Decoded response body (JSON or text), if any
    """

    def __init__(self, status_code: int, message: str, endpoint: str, body: Any = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.body = body
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class UnexpectedResponseError(ApiError):
    """Successful status but the payload is not JSON (e.g. an HTML page from a proxy)."""
    pass


class RefreshError(AccessClientError):
    """A single renewal candidate failed.

    Attributes:
        identity_class: Identity class of the candidate that failed
        status_code: HTTP status, or None for transport errors
        terminal: True when the refresh token itself was rejected
    """

    def __init__(self, message: str, *, identity_class: Optional[str] = None,
                 status_code: Optional[int] = None, terminal: bool = False):
        self.identity_class = identity_class
        self.status_code = status_code
        self.terminal = terminal
        super().__init__(message)


class SessionExpiredError(AccessClientError):
    """The session is over: refresh token invalid or every renewal candidate failed.

    Attributes:
        failures: Per-candidate RefreshError records, in attempt order
    """

    def __init__(self, message: str, failures: Optional[List[RefreshError]] = None):
        self.failures = list(failures or [])
        super().__init__(message)


class ChannelError(AccessClientError):
    """Realtime transport failure (recovered internally by reconnecting)."""
    pass
