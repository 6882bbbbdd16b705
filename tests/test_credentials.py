"""Tests for Last.fm credential resolution and bootstrap retry."""

from unittest.mock import MagicMock
from urllib.parse import parse_qsl

import keyring.errors
import pytest
import requests

import credentials
from credentials import (
    PASSWORD_ENTRY, SECRET_ENTRY, SESSION_ENTRY, CredsExhaustedError,
    CredsProtocolError, EnvError, KeyringError, KeyringSecretStore,
    MissingApiSecretError, MissingPasswordError, RetryableCredsError,
    SecretNotFound, SecretStoreError, resolve, retry_creds,
)


class MemoryStore:
    """In-memory stand-in for the OS keyring."""

    def __init__(self, entries=None, fail: bool = False):
        self.entries = dict(entries or {})
        self.fail = fail
        self.writes: list[tuple[str, str]] = []

    def get(self, entry: str) -> str:
        if self.fail:
            raise SecretStoreError("locked")
        if entry not in self.entries:
            raise SecretNotFound(entry)
        return self.entries[entry]

    def set(self, entry: str, value: str) -> None:
        self.writes.append((entry, value))
        self.entries[entry] = value


ENV = {"AMPLE_API_KEY": "key", "AMPLE_USERNAME": "user"}


def ok_response(key: str = "sess-key") -> MagicMock:
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {"session": {"name": "user", "key": key, "subscriber": 0}}
    return resp


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore({PASSWORD_ENTRY: "pw", SECRET_ENTRY: "secret"})


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


class TestResolve:
    """Test a single resolution attempt."""

    def test_cached_session_skips_network(self, store, session) -> None:
        store.entries[SESSION_ENTRY] = "cached"
        creds = resolve(session, store, ENV)
        assert creds.session_token == "cached"
        assert creds.api_key == "key"
        assert creds.api_secret == "secret"
        session.post.assert_not_called()
        assert store.writes == []

    def test_bootstrap_fetches_and_persists(self, store, session) -> None:
        session.post.return_value = ok_response("new-key")

        creds = resolve(session, store, ENV)

        assert creds.session_token == "new-key"
        assert store.writes == [(SESSION_ENTRY, "new-key")]
        params = dict(parse_qsl(session.post.call_args.kwargs["data"].decode("utf-8")))
        assert params["method"] == "auth.getMobileSession"
        assert params["username"] == "user"
        assert params["password"] == "pw"
        assert "api_sig" in params

    @pytest.mark.parametrize("missing", ["AMPLE_API_KEY", "AMPLE_USERNAME"])
    def test_missing_env(self, store, session, missing) -> None:
        env = {k: v for k, v in ENV.items() if k != missing}
        with pytest.raises(EnvError) as exc:
            resolve(session, store, env)
        assert exc.value.var == missing

    def test_missing_password(self, session) -> None:
        with pytest.raises(MissingPasswordError, match="--password"):
            resolve(session, MemoryStore({SECRET_ENTRY: "s"}), ENV)

    def test_missing_secret(self, session) -> None:
        with pytest.raises(MissingApiSecretError, match="--secret"):
            resolve(session, MemoryStore({PASSWORD_ENTRY: "p"}), ENV)

    def test_env_fallback_for_password_and_secret(self, session) -> None:
        empty = MemoryStore({SESSION_ENTRY: "cached"})
        env = {**ENV, "AMPLE_FM_PASSWORD": "envpw", "AMPLE_FM_SECRET": "envsecret"}
        creds = resolve(session, empty, env)
        assert creds.password == "envpw"
        assert creds.api_secret == "envsecret"

    def test_keyring_failure_is_fatal(self, session) -> None:
        with pytest.raises(KeyringError):
            resolve(session, MemoryStore(fail=True), ENV)

    def test_connection_error_is_retryable(self, store, session) -> None:
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(RetryableCredsError):
            resolve(session, store, ENV)

    def test_service_unavailable_is_retryable(self, store, session) -> None:
        resp = MagicMock(status_code=503, text="unavailable")
        resp.json.side_effect = ValueError("no json")
        session.post.return_value = resp
        with pytest.raises(RetryableCredsError):
            resolve(session, store, ENV)

    def test_auth_failure_is_fatal(self, store, session) -> None:
        resp = MagicMock(status_code=403, text="")
        resp.json.return_value = {"error": 4, "message": "Authentication Failed"}
        session.post.return_value = resp
        with pytest.raises(CredsProtocolError):
            resolve(session, store, ENV)

    def test_malformed_session_body(self, store, session) -> None:
        resp = MagicMock(status_code=200, text="{}")
        resp.json.return_value = {"unexpected": True}
        session.post.return_value = resp
        with pytest.raises(CredsProtocolError):
            resolve(session, store, ENV)
        assert store.writes == []


class TestRetryCreds:
    """Test bounded retry around resolve."""

    def test_succeeds_after_transient_failures(self, store, session) -> None:
        session.post.side_effect = [
            requests.ConnectionError("1"),
            requests.Timeout("2"),
            requests.ConnectionError("3"),
            ok_response(),
        ]
        sleep = MagicMock()

        creds = retry_creds(session, store, 5, environ=ENV, sleep=sleep)

        assert creds.session_token == "sess-key"
        assert sleep.call_count == 3
        sleep.assert_called_with(1.0)

    def test_exhausted(self, store, session) -> None:
        session.post.side_effect = [requests.ConnectionError("1"), requests.ConnectionError("2")]
        sleep = MagicMock()

        with pytest.raises(CredsExhaustedError, match="after 2 attempts"):
            retry_creds(session, store, 2, environ=ENV, sleep=sleep)
        assert sleep.call_count == 1

    def test_fatal_error_not_retried(self, session) -> None:
        sleep = MagicMock()
        with pytest.raises(MissingPasswordError):
            retry_creds(session, MemoryStore(), 5, environ=ENV, sleep=sleep)
        sleep.assert_not_called()


class TestKeyringSecretStore:
    """Test the keyring adapter."""

    def test_get_missing(self, monkeypatch) -> None:
        monkeypatch.setattr(credentials.keyring, "get_password", lambda service, entry: None)
        with pytest.raises(SecretNotFound):
            KeyringSecretStore().get(PASSWORD_ENTRY)

    def test_get_scoped_to_app(self, monkeypatch) -> None:
        calls = []

        def fake_get(service, entry):
            calls.append((service, entry))
            return "pw"

        monkeypatch.setattr(credentials.keyring, "get_password", fake_get)
        assert KeyringSecretStore().get(PASSWORD_ENTRY) == "pw"
        assert calls == [("ample", PASSWORD_ENTRY)]

    def test_backend_error(self, monkeypatch) -> None:
        def boom(*args):
            raise keyring.errors.KeyringLocked("locked")

        monkeypatch.setattr(credentials.keyring, "set_password", boom)
        with pytest.raises(SecretStoreError):
            KeyringSecretStore().set(SESSION_ENTRY, "x")
