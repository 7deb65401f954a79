"""URL helpers for the two configured backend origins."""
from __future__ import annotations
from typing import Any
from urllib.parse import urlencode


def build_url(base_url: str, endpoint: str) -> str:
    """Create the absolute URL for an API endpoint.

    Absolute endpoints (``http://``/``https://``) are returned untouched.
    An empty base URL yields the endpoint itself (same-origin relative path).

    Args:
        base_url: Backend origin, with or without trailing slash
        endpoint: Relative path, with or without leading slash

    Returns:
        URL with exactly one slash between origin and path
    """
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    if not base_url:
        return endpoint

    cleaned_base = base_url[:-1] if base_url.endswith("/") else base_url
    cleaned_endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    return f"{cleaned_base}{cleaned_endpoint}"


def websocket_url(base_url: str, path: str, **query: Any) -> str:
    """Derive the realtime channel URL from an HTTP backend origin.

    ``http`` becomes ``ws`` and ``https`` becomes ``wss``; query parameters
    whose value is None are dropped.
    """
    url = build_url(base_url, path)
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]

    params = {k: v for k, v in query.items() if v is not None}
    if params:
        url = f"{url}?{urlencode(params)}"
    return url
