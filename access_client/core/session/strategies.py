"""Refresh strategy resolution and renewal response normalization.

Each identity class has exactly one renewal endpoint with its own request and
response shape:

- admin: empty JSON body, the refresh token travels in an HttpOnly cookie;
  the new token comes back as ``accessToken`` or ``token``.
- staff / user: ``{"refreshToken": ...}`` body; the new token comes back
  either flat or nested under ``data``.

When the identity class is unknown every candidate is tried in the fixed
priority order admin, staff, user.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .credentials import IdentityClass

PRIORITY_ORDER = (IdentityClass.ADMIN, IdentityClass.STAFF, IdentityClass.USER)


@dataclass(frozen=True)
class RefreshAttemptResult:
    success: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    terminal: bool = False
    status_code: Optional[int] = None


def _first_string(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_admin_response(status_code: int, payload: Any) -> RefreshAttemptResult:
    """Map the admin renewal response to a canonical result."""
    if status_code == 401:
        return RefreshAttemptResult(success=False, terminal=True, status_code=status_code)
    if not 200 <= status_code < 300 or not isinstance(payload, dict):
        return RefreshAttemptResult(success=False, status_code=status_code)

    token = _first_string(payload, "accessToken", "token")
    if not token:
        return RefreshAttemptResult(success=False, status_code=status_code)
    return RefreshAttemptResult(success=True, access_token=token, status_code=status_code)


def normalize_token_response(status_code: int, payload: Any) -> RefreshAttemptResult:
    """Map a staff/user renewal response (flat or ``data``-wrapped) to a canonical result."""
    if status_code == 401:
        return RefreshAttemptResult(success=False, terminal=True, status_code=status_code)
    if not 200 <= status_code < 300 or not isinstance(payload, dict):
        return RefreshAttemptResult(success=False, status_code=status_code)

    nested = payload.get("data")
    sources = [nested, payload] if isinstance(nested, dict) else [payload]
    for source in sources:
        token = _first_string(source, "accessToken")
        if token:
            return RefreshAttemptResult(
                success=True,
                access_token=token,
                refresh_token=_first_string(source, "refreshToken"),
                status_code=status_code,
            )
    return RefreshAttemptResult(success=False, status_code=status_code)


Normalizer = Callable[[int, Any], RefreshAttemptResult]


@dataclass(frozen=True)
class RefreshCandidate:
    identity_class: IdentityClass
    url: str
    requires_refresh_token_in_body: bool
    normalize: Normalizer

    def build_body(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        if self.requires_refresh_token_in_body:
            return {"refreshToken": refresh_token}
        return {}


class RefreshStrategyResolver:
    """Decides which renewal endpoints to try, and in what order.

    Args:
        endpoints: Absolute renewal URL per identity class
    """

    def __init__(self, endpoints: Dict[IdentityClass, str]):
        missing = [ic.value for ic in PRIORITY_ORDER if ic not in endpoints]
        if missing:
            raise ValueError(f"Missing renewal endpoint for: {', '.join(missing)}")
        self._candidates = {
            IdentityClass.ADMIN: RefreshCandidate(
                IdentityClass.ADMIN, endpoints[IdentityClass.ADMIN], False, normalize_admin_response
            ),
            IdentityClass.STAFF: RefreshCandidate(
                IdentityClass.STAFF, endpoints[IdentityClass.STAFF], True, normalize_token_response
            ),
            IdentityClass.USER: RefreshCandidate(
                IdentityClass.USER, endpoints[IdentityClass.USER], True, normalize_token_response
            ),
        }

    def candidate(self, identity_class: IdentityClass) -> RefreshCandidate:
        return self._candidates[identity_class]

    def resolve(self, identity_class: Optional[IdentityClass], refresh_token: Optional[str]) -> List[RefreshCandidate]:
        """Ordered candidate list for the given identity class.

        Candidates whose body requirement cannot be met (no refresh token for
        a non-admin identity) are skipped rather than attempted.
        """
        order = (identity_class,) if identity_class else PRIORITY_ORDER
        return [
            self._candidates[ic]
            for ic in order
            if refresh_token or not self._candidates[ic].requires_refresh_token_in_body
        ]
