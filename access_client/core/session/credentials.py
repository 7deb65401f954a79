"""Credential store: access token, refresh token and identity class.

Two physical surfaces hold the credential material:

- a fast client-writable key/value cache (the ``localStorage`` analog), and
- the cookie jar shared with the HTTP backends. The server controls some of
  these cookies through ``Set-Cookie``; those flagged ``HttpOnly`` travel with
  requests but are never readable here.

``read()`` reconciles the two: a readable ``refreshToken`` cookie that the
cache does not know about (page reload after a server-side rotation) is
copied into the cache.
"""
from __future__ import annotations
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from http.cookiejar import Cookie, CookieJar, FileCookieJar, LoadError, LWPCookieJar
from pathlib import Path
from typing import Dict, Optional, Protocol

import httpx
import jwt
from jwt.exceptions import DecodeError

logger = logging.getLogger(__name__)

# Cache keys
ACCESS_TOKEN_KEY = "auth_token"
REFRESH_TOKEN_KEY = "refresh_token"
IDENTITY_CLASS_KEY = "user_type"

# Cookie names
ACCESS_TOKEN_COOKIE = "token"
REFRESH_TOKEN_COOKIE = "refreshToken"

COOKIE_FILE_SUFFIX = ".cookies"

_UNSET = object()


class IdentityClass(str, Enum):
    """Which renewal strategy applies to the current session."""
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["IdentityClass"]:
        """Map a stored tag to an identity class; unknown tags become None."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Credential:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    identity_class: Optional[IdentityClass] = None

    @property
    def is_empty(self) -> bool:
        return not (self.access_token or self.refresh_token or self.identity_class)


def mask_token(token: Optional[str]) -> str:
    """Render a token safely for logs."""
    if not token:
        return "NO TOKEN"
    return f"{token[:12]}..." if len(token) > 12 else "***"


# ─────────────────────────────────────────────────────────────────────────────
# Key/value surfaces
# ─────────────────────────────────────────────────────────────────────────────
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process key/value store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(MemoryStore):
    """Key/value store persisted to a JSON file so it survives a restart.

    Every mutation rewrites the file via write-then-rename, so a crash never
    leaves a truncated document behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, sort_keys=True)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._data:
            super().delete(key)
            self._flush()


# ─────────────────────────────────────────────────────────────────────────────
# Credential store
# ─────────────────────────────────────────────────────────────────────────────
def cookie_file_for(credentials_path: str | Path) -> Path:
    path = Path(credentials_path)
    return path.with_name(path.name + COOKIE_FILE_SUFFIX)


def open_cookie_jar(cookie_file: Optional[str | Path] = None) -> CookieJar:
    """Cookie jar shared by every HTTP client of a session.

    With a file it is an ``LWPCookieJar`` loaded from disk, so server-set
    cookies (HttpOnly and session cookies included) survive a restart.
    """
    if cookie_file is None:
        return CookieJar()
    jar = LWPCookieJar(str(cookie_file))
    if Path(cookie_file).exists():
        try:
            jar.load(ignore_discard=True, ignore_expires=True)
        except (LoadError, OSError) as exc:
            logger.warning(f"Ignoring unreadable cookie file {cookie_file}: {exc}")
    return jar


def _is_http_only(cookie) -> bool:
    # Attribute names are kept exactly as the server spelled them
    return any(name.lower() == "httponly" for name in cookie._rest)


def _client_cookie(name: str, value: str) -> Cookie:
    # httpx.Cookies.set() flags every cookie HttpOnly; client-written ones must stay readable
    return Cookie(
        version=0, name=name, value=value, port=None, port_specified=False,
        domain="", domain_specified=False, domain_initial_dot=False,
        path="/", path_specified=True, secure=False, expires=None, discard=True,
        comment=None, comment_url=None, rest={}, rfc2109=False,
    )


class CredentialStore:
    """Sole owner of credential state.

    All methods are synchronous and never await, so on a single event loop a
    ``write()`` is observed either completely or not at all.

    Usage:
        cookies = httpx.Cookies()
        store = CredentialStore(MemoryStore(), cookies)
        store.write(access_token="T1", identity_class=IdentityClass.STAFF)
        store.read().access_token  # "T1"
    """

    def __init__(self, kv: Optional[KeyValueStore] = None, cookies: Optional[httpx.Cookies] = None):
        self.kv: KeyValueStore = kv if kv is not None else MemoryStore()
        self.cookies = cookies if cookies is not None else httpx.Cookies()

    def _read_cookie(self, name: str) -> Optional[str]:
        """Return the readable (non-HttpOnly) cookie value, preferring server-set cookies."""
        client_set: Optional[str] = None
        server_set: Optional[str] = None
        for cookie in self.cookies.jar:
            if cookie.name != name or _is_http_only(cookie) or not cookie.value:
                continue
            if cookie.domain:
                server_set = cookie.value
            else:
                client_set = cookie.value
        return server_set or client_set

    def _set_cookie(self, name: str, value: Optional[str]) -> None:
        # HttpOnly cookies belong to the server; only replace the readable ones
        for cookie in [c for c in self.cookies.jar if c.name == name and not _is_http_only(c)]:
            self.cookies.jar.clear(cookie.domain, cookie.path, cookie.name)
        if value:
            self.cookies.jar.set_cookie(_client_cookie(name, value))

    def read(self) -> Credential:
        """Merge both surfaces into one credential.

        Side effect: a readable refresh token cookie that differs from the
        cached value replaces it in the cache.
        """
        access_token = self.kv.get(ACCESS_TOKEN_KEY) or self._read_cookie(ACCESS_TOKEN_COOKIE)
        refresh_token = self.kv.get(REFRESH_TOKEN_KEY)

        cookie_refresh = self._read_cookie(REFRESH_TOKEN_COOKIE)
        if cookie_refresh and cookie_refresh != refresh_token:
            logger.debug("Reconciled refresh token from cookie into cache")
            self.kv.set(REFRESH_TOKEN_KEY, cookie_refresh)
            refresh_token = cookie_refresh

        return Credential(
            access_token=access_token or None,
            refresh_token=refresh_token or None,
            identity_class=IdentityClass.parse(self.kv.get(IDENTITY_CLASS_KEY)),
        )

    def write(self, *, access_token=_UNSET, refresh_token=_UNSET, identity_class=_UNSET) -> None:
        """Update the given slots on both surfaces; omitted slots are left alone.

        Passing None for a slot removes it.
        """
        if access_token is not _UNSET:
            self._write_slot(ACCESS_TOKEN_KEY, access_token)
            self._set_cookie(ACCESS_TOKEN_COOKIE, access_token)
        if refresh_token is not _UNSET:
            self._write_slot(REFRESH_TOKEN_KEY, refresh_token)
            self._set_cookie(REFRESH_TOKEN_COOKIE, refresh_token)
        if identity_class is not _UNSET:
            tag = IdentityClass(identity_class).value if identity_class else None
            self._write_slot(IDENTITY_CLASS_KEY, tag)
        self.save_cookies()

    def _write_slot(self, key: str, value: Optional[str]) -> None:
        if value:
            self.kv.set(key, value)
        else:
            self.kv.delete(key)

    def clear(self) -> None:
        """Remove every piece of credential material, HttpOnly cookies included."""
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, IDENTITY_CLASS_KEY):
            self.kv.delete(key)
        self.cookies.delete(ACCESS_TOKEN_COOKIE)
        self.cookies.delete(REFRESH_TOKEN_COOKIE)
        self.save_cookies()
        logger.info("Credential store cleared")

    def save_cookies(self) -> None:
        """Write a file-backed cookie jar to disk; in-memory jars are left alone."""
        jar = self.cookies.jar
        if not isinstance(jar, FileCookieJar) or not jar.filename:
            return
        try:
            Path(jar.filename).parent.mkdir(parents=True, exist_ok=True)
            jar.save(ignore_discard=True, ignore_expires=True)
            os.chmod(jar.filename, 0o600)
        except OSError as exc:
            logger.warning(f"Could not save cookie file {jar.filename}: {exc}")

    def access_token_expiry(self) -> Optional[datetime]:
        """Expiry of the current access token from its ``exp`` claim.

        The signature is not verified: the client only needs a scheduling hint.
        Opaque (non-JWT) tokens return None.
        """
        token = self.read().access_token
        if not token:
            return None
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except DecodeError:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)
