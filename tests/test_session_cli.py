import json
import sys

import httpx
import pytest

import scripts.session_cli as session_cli
from access_client.core.session import AccessSession

PRIMARY_URL = "http://primary.test"
SECONDARY_URL = "http://secondary.test"


@pytest.fixture(autouse=True)
def restore_sys_argv():
    """Make sure every test sees a clean CLI invocation."""
    original = sys.argv[:]
    yield
    sys.argv = original


@pytest.fixture
def cli_env(monkeypatch, backend, tmp_path):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("ACCESS_PRIMARY_BACKEND_URL", PRIMARY_URL)
    monkeypatch.setenv("ACCESS_SECONDARY_BACKEND_URL", SECONDARY_URL)
    monkeypatch.delenv("ACCESS_CREDENTIALS_FILE", raising=False)

    def from_settings(config=None, **kwargs):
        return AccessSession(config, transport=backend.transport, **kwargs)

    monkeypatch.setattr(session_cli.AccessSession, "from_settings", staticmethod(from_settings))
    return tmp_path / "credentials.json"


def run_cli(*args):
    sys.argv = ["session_cli.py", *args]
    with pytest.raises(SystemExit) as excinfo:
        session_cli.main()
    return excinfo.value.code


def test_login_then_whoami_share_persisted_session(cli_env, backend, capsys):
    backend.route("POST", f"{SECONDARY_URL}/admin", status=401)
    backend.route("POST", f"{SECONDARY_URL}/user/auth", json={
        "success": True, "token": "USER-T", "refreshToken": "USER-R", "user": {"id": 3},
    })

    def me(request):
        if request.headers.get("Authorization") == "Bearer USER-T":
            return httpx.Response(200, json={"id": 3, "email": "master@example.com"})
        return httpx.Response(401)

    backend.route("GET", f"{PRIMARY_URL}/api/user", me)

    assert run_cli("--credentials-file", str(cli_env), "login", "--email", "m@example.com", "--password", "pw") == 0
    assert "Logged in as user" in capsys.readouterr().out
    assert json.loads(cli_env.read_text())["auth_token"] == "USER-T"

    assert run_cli("--credentials-file", str(cli_env), "whoami") == 0
    assert json.loads(capsys.readouterr().out) == {"id": 3, "email": "master@example.com"}


def test_login_failure_exits_non_zero(cli_env, backend, capsys):
    backend.route("POST", f"{SECONDARY_URL}/admin", status=401)
    backend.route("POST", f"{SECONDARY_URL}/user/auth", status=401, json={"success": False, "message": "Nope"})

    assert run_cli("--credentials-file", str(cli_env), "login", "--email", "m@example.com", "--password", "x") == 1
    assert "Nope" in capsys.readouterr().err


def test_get_prints_json(cli_env, backend, capsys):
    backend.route("GET", f"{SECONDARY_URL}/api/branches", json=[{"id": 1, "name": "Main"}])

    assert run_cli("--credentials-file", str(cli_env), "get", "/api/branches", "--backend", "secondary") == 0
    assert json.loads(capsys.readouterr().out) == [{"id": 1, "name": "Main"}]


def test_get_api_error(cli_env, backend, capsys):
    backend.route("GET", f"{PRIMARY_URL}/api/branches", status=500, json={"message": "database down"})

    assert run_cli("--credentials-file", str(cli_env), "get", "/api/branches") == 1
    assert "database down" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    sys.argv = ["session_cli.py"]
    session_cli.main()
    assert "usage" in capsys.readouterr().out.lower()


def test_admin_login_then_refresh_across_invocations(cli_env, backend, capsys):
    backend.route("POST", f"{SECONDARY_URL}/admin", json={"success": True, "token": "ADMIN-T"},
                  headers={"Set-Cookie": "refreshToken=RADMIN; Path=/; HttpOnly"})

    def admin_refresh(request):
        if "refreshToken=RADMIN" in request.headers.get("Cookie", ""):
            return httpx.Response(200, json={"accessToken": "ADMIN-T2-0123456789"})
        return httpx.Response(401, json={"message": "Refresh token missing"})

    backend.route("POST", f"{SECONDARY_URL}/admin/refresh", admin_refresh)

    assert run_cli("--credentials-file", str(cli_env), "login", "--email", "o@example.com", "--password", "pw") == 0
    capsys.readouterr()

    assert run_cli("--credentials-file", str(cli_env), "refresh") == 0
    assert "Access token refreshed" in capsys.readouterr().out
    assert json.loads(cli_env.read_text())["auth_token"] == "ADMIN-T2-0123456789"
