from unittest.mock import Mock

from access_client.core.session.credentials import IdentityClass
from access_client.core.session.session_end import SessionEndHandler


def test_trigger_runs_once(store):
    redirect = Mock()
    listener = Mock()
    handler = SessionEndHandler(store, "http://primary.test/login", redirect)
    handler.add_listener(listener)
    store.write(access_token="T1", refresh_token="R1", identity_class=IdentityClass.STAFF)

    assert handler.trigger("refresh token expired") is True
    assert handler.trigger("again") is False
    assert handler.trigger("and again") is False

    assert store.read().is_empty
    redirect.assert_called_once_with("http://primary.test/login")
    listener.assert_called_once_with("refresh token expired")


def test_rearm_allows_next_session_to_end(store):
    redirect = Mock()
    handler = SessionEndHandler(store, "/login", redirect)

    handler.trigger("first")
    handler.rearm()
    assert not handler.ended
    handler.trigger("second")

    assert redirect.call_count == 2


def test_failing_listener_does_not_block_redirect(store, caplog):
    redirect = Mock()
    handler = SessionEndHandler(store, "/login", redirect)
    handler.add_listener(Mock(side_effect=RuntimeError("listener bug")))

    handler.trigger("expired")

    redirect.assert_called_once()
    assert "Session end listener failed" in caplog.text


def test_default_redirect_logs(store, caplog):
    handler = SessionEndHandler(store, "http://primary.test/login")

    handler.trigger("expired")

    assert "http://primary.test/login" in caplog.text
