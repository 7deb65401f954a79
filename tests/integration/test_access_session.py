"""End-to-end tests of a wired AccessSession against fake backends.

These exercise the whole stack together: login, bearer attachment, renewal on
401, persistence across restarts, realtime channels owned by the session and
teardown when the session ends.
"""
import json

import httpx
import pytest

from access_client.core.exceptions import SessionExpiredError
from access_client.core.realtime import ChannelState
from access_client.core.session import JsonFileStore, PRIMARY, SECONDARY
from access_client.core.session.credentials import IdentityClass

PRIMARY_URL = "http://primary.test"
SECONDARY_URL = "http://secondary.test"


def _accepts_only(token):
    def handler(request):
        if request.headers.get("Authorization") == f"Bearer {token}":
            return httpx.Response(200, json=[{"id": 1, "name": "Main"}])
        return httpx.Response(401, json={"message": "Token expired"})
    return handler


@pytest.mark.asyncio
async def test_login_then_renew_on_expired_token(make_session, backend):
    backend.route("POST", f"{SECONDARY_URL}/admin", status=401)
    backend.route("POST", f"{SECONDARY_URL}/user/auth", json={
        "success": True, "token": "T1", "refreshToken": "R1", "user": {"id": 7},
    })
    backend.route("POST", f"{SECONDARY_URL}/user/refresh", json={"accessToken": "T2", "refreshToken": "R2"})
    backend.route("GET", f"{PRIMARY_URL}/api/branches", _accepts_only("T2"))

    async with make_session() as session:
        result = await session.auth.login("master@example.com", "pw")
        assert result.identity_class is IdentityClass.USER

        branches = await session.primary.get_json("/api/branches")

        assert branches == [{"id": 1, "name": "Main"}]
        credential = session.store.read()
        assert credential.access_token == "T2"
        assert credential.refresh_token == "R2"

    refresh = backend.calls("POST", f"{SECONDARY_URL}/user/refresh")
    assert len(refresh) == 1
    assert json.loads(refresh[0].content) == {"refreshToken": "R1"}
    attempts = backend.calls("GET", f"{PRIMARY_URL}/api/branches")
    assert [backend.bearer_of(r) for r in attempts] == ["T1", "T2"]


@pytest.mark.asyncio
async def test_rejected_refresh_ends_session(make_session, backend, redirect):
    backend.route("POST", f"{SECONDARY_URL}/user/refresh", status=401, json={"message": "invalid refresh token"})
    backend.route("GET", f"{PRIMARY_URL}/api/branches", _accepts_only("never"))

    async with make_session() as session:
        session.store.write(access_token="T1", refresh_token="R1", identity_class=IdentityClass.USER)
        session.scheduler.start()

        with pytest.raises(SessionExpiredError):
            await session.primary.get_json("/api/branches")

        assert session.store.read().is_empty
        assert not session.scheduler.running

    redirect.assert_called_once_with(f"{PRIMARY_URL}/login")


@pytest.mark.asyncio
async def test_credentials_survive_restart(make_session, backend, tmp_path):
    path = tmp_path / "credentials.json"
    backend.route("POST", f"{SECONDARY_URL}/admin", json={"success": True, "token": "ADMIN-T"})
    backend.route("GET", f"{PRIMARY_URL}/api/branches", _accepts_only("ADMIN-T"))

    async with make_session(kv=JsonFileStore(path)) as session:
        await session.auth.login("owner@example.com", "pw")

    async with make_session(kv=JsonFileStore(path)) as session:
        assert session.scheduler.running
        assert session.store.read().identity_class is IdentityClass.ADMIN
        assert await session.primary.get_json("/api/branches") == [{"id": 1, "name": "Main"}]


def _admin_refresh_requires_cookie(cookie_value, new_token):
    def handler(request):
        if f"refreshToken={cookie_value}" in request.headers.get("Cookie", ""):
            return httpx.Response(200, json={"accessToken": new_token})
        return httpx.Response(401, json={"message": "Refresh token missing"})
    return handler


@pytest.mark.asyncio
async def test_admin_session_renews_after_restart(make_session, backend, tmp_path):
    path = tmp_path / "credentials.json"
    backend.route("POST", f"{SECONDARY_URL}/admin", json={"success": True, "token": "ADMIN-T"},
                  headers={"Set-Cookie": "refreshToken=RADMIN; Path=/; HttpOnly"})
    backend.route("POST", f"{SECONDARY_URL}/admin/refresh", _admin_refresh_requires_cookie("RADMIN", "ADMIN-T2"))

    async with make_session(kv=JsonFileStore(path)) as session:
        await session.auth.login("owner@example.com", "pw")
        # The admin refresh token is HttpOnly: it travels with requests but is never readable
        assert session.store.read().refresh_token is None

    async with make_session(kv=JsonFileStore(path)) as session:
        assert await session.coordinator.refresh() == "ADMIN-T2"
        assert not session.session_end.ended
        assert session.store.read().access_token == "ADMIN-T2"

    assert (tmp_path / "credentials.json.cookies").exists()


@pytest.mark.asyncio
async def test_rotated_admin_cookie_survives_restart(make_session, backend, tmp_path):
    path = tmp_path / "credentials.json"
    rotations = iter(["RADMIN-2"])

    def rotating_refresh(request):
        cookie = request.headers.get("Cookie", "")
        if "refreshToken=RADMIN" not in cookie:
            return httpx.Response(401, json={"message": "Refresh token missing"})
        return httpx.Response(200, json={"accessToken": "ADMIN-T2"},
                              headers={"Set-Cookie": f"refreshToken={next(rotations)}; Path=/; HttpOnly"})

    backend.route("POST", f"{SECONDARY_URL}/admin", json={"success": True, "token": "ADMIN-T"},
                  headers={"Set-Cookie": "refreshToken=RADMIN-1; Path=/; HttpOnly"})
    backend.route("POST", f"{SECONDARY_URL}/admin/refresh", rotating_refresh)

    async with make_session(kv=JsonFileStore(path)) as session:
        await session.auth.login("owner@example.com", "pw")
        await session.coordinator.refresh()

    async with make_session(kv=JsonFileStore(path)) as session:
        cookies = [c.value for c in session.cookie_jar if c.name == "refreshToken"]

    assert cookies == ["RADMIN-2"]


@pytest.mark.asyncio
async def test_realtime_channel_closed_on_session_end(make_session, connector, wait_until):
    async with make_session() as session:
        session.store.write(access_token="T1", refresh_token="R1", identity_class=IdentityClass.STAFF)
        channel = session.realtime_channel(42, role="staff")
        channel.connect()
        await wait_until(lambda: channel.state is ChannelState.OPEN)

        assert connector.urls == ["ws://primary.test/ws/notifications?userId=42&role=staff"]

        session.session_end.trigger("refresh token expired")
        await wait_until(lambda: channel.closed and connector.connections[0].closed)

        assert channel.state is ChannelState.CLOSED


@pytest.mark.asyncio
async def test_aclose_closes_open_channels(make_session, connector, wait_until):
    session = make_session()
    channel = session.realtime_channel("42")
    channel.connect()
    await wait_until(lambda: channel.state is ChannelState.OPEN)

    await session.aclose()

    assert channel.closed
    assert connector.connections[0].closed


@pytest.mark.asyncio
async def test_build_url_per_backend(make_session):
    async with make_session() as session:
        assert session.build_url("/api/branches") == f"{PRIMARY_URL}/api/branches"
        assert session.build_url("api/branches", PRIMARY) == f"{PRIMARY_URL}/api/branches"
        assert session.build_url("/admin/refresh", SECONDARY) == f"{SECONDARY_URL}/admin/refresh"

        with pytest.raises(ValueError, match="Unknown backend"):
            session.build_url("/x", "tertiary")
