from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

SCROBBLE_MIN_LENGTH = 30  # seconds; Last.fm ignores anything this short or shorter

class MediaStatus(Enum):
    CLOSED = "closed"
    OPENED = "opened"
    CHANGING = "changing"
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"

class MediaType(Enum):
    UNKNOWN = "unknown"
    MUSIC = "music"
    VIDEO = "video"
    IMAGE = "image"

# -------------------------
# Stateless identity for a track
# -------------------------
@dataclass(frozen=True)
class TrackIdentity:
    player_name: str
    artist_name: str
    song_name: str
    album_name: str

@dataclass(frozen=True)
class PlaybackSample:
    identity: TrackIdentity
    status: MediaStatus
    media_type: MediaType = MediaType.UNKNOWN
    track_length_us: int = 0
    position_us: int = 0

# -------------------------
# Actions for the dispatch worker
# -------------------------
@dataclass(frozen=True)
class NowPlaying:
    identity: TrackIdentity

@dataclass(frozen=True)
class FetchArtwork:
    identity: TrackIdentity

@dataclass(frozen=True)
class Scrobble:
    identity: TrackIdentity
    started_at: datetime

Action = NowPlaying | FetchArtwork | Scrobble

@dataclass(frozen=True)
class ScrobbleState:
    """What the decision loop knows about the current track occupancy."""
    current: TrackIdentity | None = None
    started_at: datetime | None = None
    scrobbled: bool = False
    artwork_url: str = ""

@dataclass(frozen=True)
class Decision:
    state: ScrobbleState
    actions: list = field(default_factory=list)
    clear: bool = False


def should_scrobble(state: ScrobbleState, sample: PlaybackSample) -> bool:
    """Last.fm rule: track longer than 30s and more than half of it heard.

    Whole seconds, truncated, the same way the player reports them.
    """
    if state.scrobbled:
        return False
    song_len = sample.track_length_us // 1_000_000
    elapsed = sample.position_us // 1_000_000
    return song_len > SCROBBLE_MIN_LENGTH and elapsed > song_len // 2


def decide(state: ScrobbleState, sample: PlaybackSample, now: datetime,
           primary_player: str | None = None) -> Decision:
    """Advance the scrobble state by one sample.

    Pure: the caller owns the returned state and delivers the actions.
    A non-playing sample (or one from a player we are not following)
    leaves the state untouched and asks for the status display to clear.
    """
    if sample.status is not MediaStatus.PLAYING:
        return Decision(state, [], clear=True)
    if primary_player and sample.identity.player_name != primary_player:
        return Decision(state, [], clear=True)

    identity = sample.identity
    if state.current != identity:
        # Reset scrobble state on track change
        new_state = ScrobbleState(current=identity, started_at=now, scrobbled=False, artwork_url="")
        return Decision(new_state, [NowPlaying(identity), FetchArtwork(identity)])

    if should_scrobble(state, sample):
        started_at = state.started_at or now
        return Decision(replace(state, scrobbled=True), [Scrobble(identity, started_at)])

    return Decision(state, [])


def with_artwork(state: ScrobbleState, identity: TrackIdentity, url: str) -> ScrobbleState:
    """Apply an artwork lookup result, once per occupancy; stale results are dropped."""
    if not url or state.current != identity or state.artwork_url:
        return state
    return replace(state, artwork_url=url)
