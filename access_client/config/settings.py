"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from access_client.core.urls import build_url

logger = logging.getLogger(__name__)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load a value from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info(f"[settings] Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            logger.warning(f"[settings] Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Access layer configuration container."""
    # Mode
    demo_mode: bool

    # Backends
    primary_backend_url: str
    secondary_backend_url: str
    request_timeout: float = 10.0

    # Renewal endpoints (served by the secondary backend)
    admin_refresh_path: str = "/admin/refresh"
    staff_refresh_path: str = "/master/refresh"
    user_refresh_path: str = "/user/refresh"

    # Login / logout / session probe
    admin_login_path: str = "/admin"
    user_login_path: str = "/user/auth"
    admin_logout_path: str = "/admin/logout"
    user_logout_path: str = "/user/logout"
    current_user_path: str = "/api/user"
    login_path: str = "/login"

    # Proactive refresh
    proactive_refresh_interval: float = 240.0

    # Realtime channel
    realtime_path: str = "/ws/notifications"
    realtime_connect_timeout: float = 10.0
    reconnect_base_delay: float = 1.0
    reconnect_growth: float = 2.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: Optional[int] = None

    # Credential persistence (empty = in-memory only)
    credentials_file: str = ""

    @property
    def login_url(self) -> str:
        """Absolute URL of the login surface users are sent to when a session ends."""
        return build_url(self.primary_backend_url, self.login_path)


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _get_float(var_name: str, default: float) -> float:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{var_name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{var_name} must be positive, got {raw!r}")
    return value


def _get_optional_int(var_name: str) -> Optional[int]:
    """Parse an optional non-negative integer; empty or 0 means unlimited."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{var_name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{var_name} must not be negative, got {raw!r}")
    return value or None


def _path(var_name: str, default: str) -> str:
    value = os.environ.get(var_name, default).strip() or default
    return value if value.startswith("/") else f"/{value}"


def load_settings() -> AppConfig:
    """Load access layer settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # ─────────────────────────────────────────────────────────────────────────
    # Backends: the secondary backend defaults to the primary one
    # ─────────────────────────────────────────────────────────────────────────
    primary_backend_url = _get_or_generate(
        "ACCESS_PRIMARY_BACKEND_URL",
        demo_default="http://localhost:3000",
        demo_mode=demo_mode,
    ).rstrip("/")
    secondary_backend_url = (
        os.environ.get("ACCESS_SECONDARY_BACKEND_URL", "").strip() or primary_backend_url
    ).rstrip("/")

    credentials_file = _load_secret_from_file("access_credentials_file", "ACCESS_CREDENTIALS_FILE") or ""

    config = AppConfig(
        demo_mode=demo_mode,
        primary_backend_url=primary_backend_url,
        secondary_backend_url=secondary_backend_url,
        request_timeout=_get_float("ACCESS_REQUEST_TIMEOUT", 10.0),
        admin_refresh_path=_path("ACCESS_ADMIN_REFRESH_PATH", "/admin/refresh"),
        staff_refresh_path=_path("ACCESS_STAFF_REFRESH_PATH", "/master/refresh"),
        user_refresh_path=_path("ACCESS_USER_REFRESH_PATH", "/user/refresh"),
        admin_login_path=_path("ACCESS_ADMIN_LOGIN_PATH", "/admin"),
        user_login_path=_path("ACCESS_USER_LOGIN_PATH", "/user/auth"),
        admin_logout_path=_path("ACCESS_ADMIN_LOGOUT_PATH", "/admin/logout"),
        user_logout_path=_path("ACCESS_USER_LOGOUT_PATH", "/user/logout"),
        current_user_path=_path("ACCESS_CURRENT_USER_PATH", "/api/user"),
        login_path=_path("ACCESS_LOGIN_PATH", "/login"),
        proactive_refresh_interval=_get_float("ACCESS_PROACTIVE_REFRESH_INTERVAL", 240.0),
        realtime_path=_path("ACCESS_REALTIME_PATH", "/ws/notifications"),
        realtime_connect_timeout=_get_float("ACCESS_REALTIME_CONNECT_TIMEOUT", 10.0),
        reconnect_base_delay=_get_float("ACCESS_RECONNECT_BASE_DELAY", 1.0),
        reconnect_growth=_get_float("ACCESS_RECONNECT_GROWTH", 2.0),
        reconnect_max_delay=_get_float("ACCESS_RECONNECT_MAX_DELAY", 30.0),
        max_reconnect_attempts=_get_optional_int("ACCESS_MAX_RECONNECT_ATTEMPTS"),
        credentials_file=credentials_file,
    )

    if config.reconnect_growth < 1:
        raise ValueError("ACCESS_RECONNECT_GROWTH must be >= 1")

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info(
        f"[settings] Mode={mode_label}; primary={primary_backend_url}; "
        f"secondary={secondary_backend_url}; refresh_every={config.proactive_refresh_interval}s"
    )
    if demo_mode:
        logger.warning("[settings] Demo defaults in use. Do not deploy with these values.")

    return config
