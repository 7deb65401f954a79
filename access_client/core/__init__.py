"""Core access layer logic.

Module Structure:
    - exceptions.py : Typed exception hierarchy shared by all subpackages
    - urls.py       : Absolute URL and WebSocket URL helpers
    - session/      : Credentials, token renewal, request interceptor, login
    - realtime/     : Resilient push channel with backoff and heartbeats

Usage Pattern:
    Subpackages are NOT auto-imported. Import explicitly when needed:
        from access_client.core.session import AccessSession, RefreshCoordinator
        from access_client.core.realtime import RealtimeChannelManager
"""
