"""
Last.fm credential resolution.

- API key and username come from the environment.
- Password and API secret come from the OS keyring, falling back to
  AMPLE_FM_PASSWORD / AMPLE_FM_SECRET.
- The session key is cached in the keyring after the first successful
  auth.getMobileSession call, so later runs skip the network round-trip.
"""

from __future__ import annotations
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Mapping

import keyring
import keyring.errors
import requests

from lastfm_client import (
    LastFMError, LastFMHttpError, LastFMNetworkError, LastFMRateLimitError,
    LastFMUnknownError, TRANSIENT_CODES, TRANSIENT_HTTP, post_signed,
)

log = logging.getLogger("creds")

APP_NAME = "ample"
PASSWORD_ENTRY = "amplePassword"
SECRET_ENTRY = "ampleSecret"
SESSION_ENTRY = "ampleSession"

API_KEY_VAR = "AMPLE_API_KEY"
USERNAME_VAR = "AMPLE_USERNAME"
PASSWORD_VAR = "AMPLE_FM_PASSWORD"
SECRET_VAR = "AMPLE_FM_SECRET"

RETRY_DELAY = 1.0


class CredsError(Exception): ...

class EnvError(CredsError):
    def __init__(self, var: str):
        super().__init__(f"Error obtaining environment variable {var}: not set")
        self.var = var

class KeyringError(CredsError): ...

class MissingPasswordError(CredsError):
    def __init__(self):
        super().__init__("Password has not been set! Call with --password flag to set password!")

class MissingApiSecretError(CredsError):
    def __init__(self):
        super().__init__("LastFM secret has not been set! Call with --secret flag to set secret!")

class RetryableCredsError(CredsError): ...
class CredsProtocolError(CredsError): ...

class CredsExhaustedError(CredsError):
    def __init__(self, attempts: int):
        super().__init__(f"Failed to connect to LastFM after {attempts} attempts")
        self.attempts = attempts


class SecretNotFound(Exception): ...
class SecretStoreError(Exception): ...


class KeyringSecretStore:
    """Named entries in the OS credential manager, scoped to the app name."""

    def __init__(self, app_name: str = APP_NAME):
        self.app_name = app_name

    def get(self, entry: str) -> str:
        try:
            value = keyring.get_password(self.app_name, entry)
        except keyring.errors.KeyringError as e:
            raise SecretStoreError(str(e)) from e
        if value is None:
            raise SecretNotFound(entry)
        return value

    def set(self, entry: str, value: str) -> None:
        try:
            keyring.set_password(self.app_name, entry, value)
        except keyring.errors.KeyringError as e:
            raise SecretStoreError(str(e)) from e


@dataclass(frozen=True)
class Credentials:
    api_key: str
    api_secret: str
    session_token: str
    username: str | None = None
    password: str | None = None

    def __repr__(self) -> str:
        return f"Credentials(api_key={self.api_key!r}, username={self.username!r})"


def _env(environ: Mapping[str, str], var: str) -> str:
    value = environ.get(var)
    if not value:
        raise EnvError(var)
    return value


def _secret(store, environ: Mapping[str, str], entry: str, fallback_var: str, missing: type[CredsError]) -> str:
    try:
        return store.get(entry)
    except SecretNotFound:
        log.info("%s not in credential manager, falling back to %s", entry, fallback_var)
    except SecretStoreError as e:
        raise KeyringError(f"Error obtaining {entry} from keyring: {e}") from e
    value = environ.get(fallback_var)
    if not value:
        raise missing()
    return value


def _classify(err: LastFMError) -> CredsError:
    if isinstance(err, (LastFMNetworkError, LastFMRateLimitError)):
        return RetryableCredsError(str(err))
    if isinstance(err, LastFMHttpError) and err.status in TRANSIENT_HTTP:
        return RetryableCredsError(str(err))
    if isinstance(err, LastFMUnknownError) and err.code in TRANSIENT_CODES:
        return RetryableCredsError(str(err))
    return CredsProtocolError(str(err))


def fetch_session_key(session: requests.Session, api_key: str, api_secret: str,
                      username: str, password: str) -> str:
    params = {
        "method": "auth.getMobileSession",
        "api_key": api_key,
        "password": password,
        "username": username,
    }
    try:
        data = post_signed(session, params, api_secret)
    except LastFMError as e:
        raise _classify(e) from e

    try:
        key = data["session"]["key"]
    except (KeyError, TypeError) as e:
        raise CredsProtocolError(f"auth.getMobileSession response missing session key: {data!r}") from e
    if not isinstance(key, str) or not key:
        raise CredsProtocolError("auth.getMobileSession returned an empty session key")
    return key


def resolve(session: requests.Session, store, environ: Mapping[str, str] = os.environ) -> Credentials:
    """Single attempt at building Credentials; see retry_creds for the loop."""
    api_key = _env(environ, API_KEY_VAR)
    username = _env(environ, USERNAME_VAR)

    password = _secret(store, environ, PASSWORD_ENTRY, PASSWORD_VAR, MissingPasswordError)
    secret = _secret(store, environ, SECRET_ENTRY, SECRET_VAR, MissingApiSecretError)

    try:
        token = store.get(SESSION_ENTRY)
        log.debug("Using cached Last.fm session key")
    except SecretNotFound:
        log.info("No cached Last.fm session key, requesting one for %s", username)
        token = fetch_session_key(session, api_key, secret, username, password)
        try:
            store.set(SESSION_ENTRY, token)
        except SecretStoreError as e:
            raise KeyringError(f"Could not store session key: {e}") from e
    except SecretStoreError as e:
        raise KeyringError(f"Error obtaining session key from keyring: {e}") from e

    return Credentials(api_key=api_key, api_secret=secret, session_token=token,
                       username=username, password=password)


def retry_creds(session: requests.Session, store, attempts: int,
                environ: Mapping[str, str] = os.environ,
                sleep: Callable[[float], None] = time.sleep) -> Credentials:
    for attempt in range(1, attempts + 1):
        try:
            return resolve(session, store, environ)
        except RetryableCredsError as e:
            log.debug("Credential attempt %s/%s failed: %s", attempt, attempts, e)
            if attempt < attempts:
                sleep(RETRY_DELAY)
    raise CredsExhaustedError(attempts)


def store_secret(store, entry: str, value: str) -> None:
    """Provision a keyring entry (used by the --password / --secret flags)."""
    try:
        store.set(entry, value)
    except SecretStoreError as e:
        raise KeyringError(f"Could not store {entry}: {e}") from e
