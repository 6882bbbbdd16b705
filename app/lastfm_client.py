from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

import requests

from signing import API_ROOT, build_form, build_uri, sign

if TYPE_CHECKING:
    from credentials import Credentials

log = logging.getLogger("lastfm")

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}

# Last.fm API error codes
STATUS_AUTH_FAILED = 4
STATUS_INVALID_SK = 9
STATUS_OFFLINE = 11
STATUS_TOKEN_UNAUTHORIZED = 14
STATUS_TOKEN_EXPIRED = 15
STATUS_TEMPORARILY_UNAVAILABLE = 16
STATUS_RATE_LIMIT_EXCEEDED = 29

AUTH_CODES = (STATUS_AUTH_FAILED, STATUS_INVALID_SK, STATUS_TOKEN_UNAUTHORIZED, STATUS_TOKEN_EXPIRED)
TRANSIENT_CODES = (STATUS_OFFLINE, STATUS_TEMPORARILY_UNAVAILABLE, STATUS_RATE_LIMIT_EXCEEDED)
TRANSIENT_HTTP = (500, 502, 503, 504)

# Custom error classes so callers can branch
class LastFMError(Exception): ...
class LastFMNetworkError(LastFMError): ...
class LastFMProtocolError(LastFMError): ...
class LastFMAuthError(LastFMError): ...
class LastFMRateLimitError(LastFMError): ...

class LastFMUnknownError(LastFMError):
    def __init__(self, code: int | None, message: str):
        super().__init__(f"Last.fm API error {code}: {message}")
        self.code = code

class LastFMHttpError(LastFMError):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body


def _raise_api_error(data: Mapping[str, Any]) -> None:
    code = data.get("error")
    msg = str(data.get("message", ""))
    if code in AUTH_CODES:
        raise LastFMAuthError(msg)
    if code == STATUS_RATE_LIMIT_EXCEEDED:
        raise LastFMRateLimitError(msg)
    raise LastFMUnknownError(code, msg)


def parse_response(resp: requests.Response) -> dict[str, Any]:
    """Decode a Last.fm JSON response, raising for HTTP and API errors.

    A 4xx/5xx status is an error even when the body carries a well-formed
    API error; the API code, if any, picks the more specific exception.
    """
    try:
        data = resp.json()
    except ValueError:
        data = None

    if resp.status_code >= 400:
        if isinstance(data, dict) and "error" in data and resp.status_code not in TRANSIENT_HTTP:
            _raise_api_error(data)
        raise LastFMHttpError(resp.status_code, resp.text)

    if not isinstance(data, dict):
        raise LastFMProtocolError(f"Expected JSON object, got: {resp.text[:200]!r}")
    if "error" in data:
        _raise_api_error(data)
    return data


def post_signed(session: requests.Session, params: Mapping[str, str], secret: str,
                timeout: float = 10) -> dict[str, Any]:
    """Sign params, POST them as a form body and return the decoded JSON."""
    sig = sign(params, secret)
    body = build_form(params, sig)
    log.debug("POST %s method=%s", API_ROOT, params.get("method"))
    try:
        resp = session.post(API_ROOT, data=body.encode("utf-8"), headers=FORM_HEADERS, timeout=timeout)
    except requests.RequestException as e:
        raise LastFMNetworkError(str(e)) from e
    return parse_response(resp)


@dataclass(frozen=True)
class ImageInfo:
    size: str
    url: str

@dataclass(frozen=True)
class AlbumInfo:
    artist: str | None
    title: str | None
    images: tuple[ImageInfo, ...]

    def image_url(self, size: str = "large") -> str | None:
        for img in self.images:
            if img.size == size and img.url:
                return img.url
        return None

@dataclass(frozen=True)
class TrackInfo:
    name: str
    artist: str
    album: AlbumInfo | None


def _parse_track_info(data: Mapping[str, Any]) -> TrackInfo:
    try:
        track = data["track"]
        artist = track["artist"]
        album = track.get("album")
        parsed_album = None
        if album:
            # track.getInfo calls the list "image" and the url "#text"
            raw_images = album.get("images") or album.get("image") or []
            parsed_album = AlbumInfo(
                artist=album.get("artist"),
                title=album.get("title"),
                images=tuple(
                    ImageInfo(size=i.get("size", ""), url=i.get("url") or i.get("#text") or "")
                    for i in raw_images
                ),
            )
        return TrackInfo(
            name=track["name"],
            artist=artist["name"] if isinstance(artist, dict) else str(artist),
            album=parsed_album,
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise LastFMProtocolError(f"Unexpected track.getInfo shape: {e!r}") from e


class LastFMClient:
    """Signed now-playing and scrobble calls plus unsigned track lookups."""

    def __init__(self, creds: Credentials, session: requests.Session | None = None, timeout: float = 10):
        self.creds = creds
        self.session = session or requests.Session()
        self.timeout = timeout

    def _auth_params(self, method: str, artist: str, track: str, album: str | None) -> dict[str, str]:
        params = {
            "method": method,
            "artist": artist,
            "track": track,
            "api_key": self.creds.api_key,
            "sk": self.creds.session_token,
        }
        if album:
            params["album"] = album
        return params

    def now_playing(self, artist: str, track: str, album: str | None = None) -> None:
        """Push a Now Playing update. Advisory only; callers drop failures."""
        params = self._auth_params("track.updateNowPlaying", artist, track, album)
        post_signed(self.session, params, self.creds.api_secret, self.timeout)

    def scrobble(self, artist: str, track: str, timestamp: datetime | int, album: str | None = None) -> None:
        """Submit a scrobble with the playback start time (unix seconds)."""
        if isinstance(timestamp, datetime):
            timestamp = int(timestamp.timestamp())
        params = self._auth_params("track.scrobble", artist, track, album)
        params["timestamp"] = str(timestamp)
        post_signed(self.session, params, self.creds.api_secret, self.timeout)

    def get_track_info(self, artist: str, track: str) -> TrackInfo:
        params = {
            "method": "track.getInfo",
            "api_key": self.creds.api_key,
            "artist": artist,
            "track": track,
        }
        try:
            resp = self.session.get(build_uri(params), timeout=self.timeout)
        except requests.RequestException as e:
            raise LastFMNetworkError(str(e)) from e
        return _parse_track_info(parse_response(resp))
