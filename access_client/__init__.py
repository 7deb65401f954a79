"""Access client package.

To open a session against the configured backends:
    from access_client.core.session import AccessSession

To load configuration only:
    from access_client.config import load_settings
"""
# Note: subpackages are not imported here so that config can be loaded
# without pulling in httpx or websockets
