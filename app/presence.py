"""
Status display sink.

- Renders the current sample as a "listening to" presence.
- Sends it as JSON to STATUS_WEBHOOK_URL (rich-presence bridges, dashboards).
- Best-effort: failures are logged and never reach the polling loop.
"""

from __future__ import annotations
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime

import requests

from state import PlaybackSample

log = logging.getLogger("presence")

@dataclass(frozen=True)
class Presence:
    title: str
    subtitle: str
    start: int  # unix seconds
    end: int
    artwork_url: str | None = None


def render_presence(sample: PlaybackSample, now: datetime, artwork_url: str = "") -> Presence:
    info = sample.identity
    now_s = now.timestamp()
    position = max(0, sample.position_us) / 1_000_000
    remaining = max(0, sample.track_length_us - sample.position_us) / 1_000_000
    return Presence(
        title=info.song_name,
        subtitle=f"{info.artist_name} - {info.album_name}",
        start=int(now_s - position),
        end=int(now_s + remaining),
        artwork_url=artwork_url or None,
    )

class WebhookStatusSink:
    def __init__(self, webhook_url: str | None, timeout: int = 5):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.timeout = timeout
        self._last: Presence | None = None
        self._cleared = False

    def _post(self, payload: dict) -> None:
        try:
            requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("Error while setting activity: %s", e)

    def update(self, presence: Presence) -> None:
        if presence == self._last:
            return
        self._last = presence
        self._cleared = False
        if not self.webhook_url:
            return
        self._post({"cleared": False, **asdict(presence)})

    def clear(self) -> None:
        if self._cleared:
            return
        self._cleared = True
        self._last = None
        if not self.webhook_url:
            return
        log.debug("Media is paused. Clearing activity")
        self._post({"cleared": True})

def from_env() -> WebhookStatusSink:
    return WebhookStatusSink(webhook_url=os.getenv("STATUS_WEBHOOK_URL"))
