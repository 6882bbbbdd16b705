"""
Background delivery of Last.fm actions.

- One daemon thread drains an unbounded FIFO queue, so the polling loop never
  waits on the network.
- Failures are logged and the action dropped; nothing is retried.
"""

from __future__ import annotations
import logging
import queue
import threading
from typing import Callable

from lastfm_client import LastFMClient, LastFMError
from state import Action, FetchArtwork, NowPlaying, Scrobble, TrackIdentity

log = logging.getLogger("dispatch")

ArtworkCallback = Callable[[TrackIdentity, str], None]

_STOP = object()

class DispatchWorker:
    def __init__(self, client: LastFMClient, on_artwork: ArtworkCallback | None = None):
        self.client = client
        self.on_artwork = on_artwork
        self._q: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="lastfm-dispatch", daemon=True)
        self._thread.start()

    def submit(self, action: Action) -> None:
        self._q.put_nowait(action)

    def stop(self, timeout: float | None = None) -> None:
        if self._thread is None:
            return
        self._q.put_nowait(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def pending(self) -> int:
        return self._q.qsize()

    def _run(self) -> None:
        while True:
            action = self._q.get()
            try:
                if action is _STOP:
                    return
                self.handle(action)
            except Exception:
                log.exception("Unexpected error while handling %r", action)
            finally:
                self._q.task_done()

    def handle(self, action: Action) -> None:
        """Execute one action, logging (not raising) Last.fm failures."""
        if not isinstance(action, (NowPlaying, FetchArtwork, Scrobble)):
            log.warning("Unknown action dropped: %r", action)
            return

        info = action.identity
        try:
            if isinstance(action, NowPlaying):
                self.client.now_playing(info.artist_name, info.song_name, info.album_name)
                log.info("LastFM Now Playing: %s - %s", info.song_name, info.artist_name)
            elif isinstance(action, FetchArtwork):
                self._fetch_artwork(info)
            else:
                self.client.scrobble(info.artist_name, info.song_name, action.started_at, info.album_name)
                log.info("Song, %s by %s has been scrobbled!", info.song_name, info.artist_name)
        except LastFMError as e:
            log.error("%s failed for %s - %s: %s", type(action).__name__, info.artist_name, info.song_name, e)

    def _fetch_artwork(self, info: TrackIdentity) -> None:
        track = self.client.get_track_info(info.artist_name, info.song_name)
        log.debug("Got track info from LastFM: %r", track)
        if track.album is None:
            return
        url = track.album.image_url("large")
        if url and self.on_artwork is not None:
            self.on_artwork(info, url)
