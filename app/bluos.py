import logging
import xml.etree.ElementTree as ET

import requests

from state import MediaStatus, MediaType, PlaybackSample, TrackIdentity

log = logging.getLogger("bluos")

_STATES = {
    "play": MediaStatus.PLAYING,
    "stream": MediaStatus.PLAYING,
    "pause": MediaStatus.PAUSED,
    "stop": MediaStatus.STOPPED,
    "connecting": MediaStatus.CHANGING,
}

class PollError(Exception): ...

class BluOSPoller:
    """
    Polls a BluOS player's /Status (XML) and turns it into a PlaybackSample.
    Uses recursive lookup + tag fallbacks: name/title1, artist, album, secs, totlen, state.
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5, player_name: str = "BluOS"):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout
        self.player_name = player_name

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_int(self, s):
        if s is None: return None
        try:
            return int(float(s))
        except (ValueError, OverflowError):
            return None

    def poll(self) -> PlaybackSample | None:
        """None when nothing is loaded; PollError when the device can't be read."""
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PollError(f"BluOS status fetch failed: {e}") from e

        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as e:
            raise PollError(f"BluOS status is not valid XML: {e}") from e

        return self.parse(root)

    def parse(self, root: ET.Element) -> PlaybackSample | None:
        # title appears as <name> and also as <title1>
        title  = self._findtext_any(root, "name", "title1", "title", "song")
        if not title:
            return None
        artist = self._findtext_any(root, "artist", "title2") or ""
        album  = self._findtext_any(root, "album", "title3") or ""

        secs     = self._to_int(self._findtext_any(root, "secs", "elapsed", "position", "time")) or 0
        duration = self._to_int(self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")) or 0

        state = (self._findtext_any(root, "state", "status", "mode") or "").lower()
        player = self._findtext_any(root, "service") or self.player_name

        return PlaybackSample(
            identity=TrackIdentity(player_name=player, artist_name=artist, song_name=title, album_name=album),
            status=_STATES.get(state, MediaStatus.OPENED),
            media_type=MediaType.MUSIC,
            track_length_us=duration * 1_000_000,
            position_us=secs * 1_000_000,
        )
