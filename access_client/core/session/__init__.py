"""Session layer: credentials, token renewal and authenticated requests.

Architecture:
- credentials.py: Credential store over a key/value cache and the cookie jar
- strategies.py: Renewal endpoint candidates per identity class
- coordinator.py: Single-flight token renewal
- session_end.py: Idempotent terminal-failure handling
- client.py: Bearer/refresh/retry-once interceptor and JSON client
- scheduler.py: Proactive renewal on a fixed interval
- auth.py: Login, logout and current-user probe
- access.py: AccessSession, the owned wiring of all of the above

Usage:
    from access_client.core.session import AccessSession

    async with AccessSession.from_settings() as session:
        await session.auth.login("master@example.com", "secret")
        appointments = await session.primary.get_json("/api/appointments")
"""
from access_client.core.exceptions import (
    AccessClientError,
    ApiError,
    ChannelError,
    RefreshError,
    SessionExpiredError,
    UnexpectedResponseError,
)

from .access import PRIMARY, SECONDARY, AccessSession
from .auth import LoginResult, SessionAuthenticator
from .client import ApiClient, BearerRefreshAuth
from .coordinator import RefreshCoordinator
from .credentials import (
    Credential,
    CredentialStore,
    IdentityClass,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    cookie_file_for,
    mask_token,
    open_cookie_jar,
)
from .scheduler import ProactiveRefreshScheduler
from .session_end import SessionEndHandler, log_redirect
from .strategies import (
    PRIORITY_ORDER,
    RefreshAttemptResult,
    RefreshCandidate,
    RefreshStrategyResolver,
    normalize_admin_response,
    normalize_token_response,
)

__all__ = [
    # Wiring
    "AccessSession",
    "PRIMARY",
    "SECONDARY",
    # Credentials
    "Credential",
    "CredentialStore",
    "IdentityClass",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "mask_token",
    "cookie_file_for",
    "open_cookie_jar",
    # Renewal
    "PRIORITY_ORDER",
    "RefreshAttemptResult",
    "RefreshCandidate",
    "RefreshStrategyResolver",
    "normalize_admin_response",
    "normalize_token_response",
    "RefreshCoordinator",
    "ProactiveRefreshScheduler",
    "SessionEndHandler",
    "log_redirect",
    # Requests
    "ApiClient",
    "BearerRefreshAuth",
    # Login
    "LoginResult",
    "SessionAuthenticator",
    # Exceptions
    "AccessClientError",
    "ApiError",
    "UnexpectedResponseError",
    "RefreshError",
    "SessionExpiredError",
    "ChannelError",
]
