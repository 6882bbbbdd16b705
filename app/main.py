import argparse
import getpass
import logging
import logging.handlers
import os
import queue
import sys
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import requests
from dotenv import load_dotenv

from bluos import BluOSPoller, PollError
from credentials import (
    CredsError, KeyringError, KeyringSecretStore, PASSWORD_ENTRY, SECRET_ENTRY,
    retry_creds, store_secret,
)
from dispatch import DispatchWorker
from lastfm_client import LastFMClient
from presence import Presence, from_env as status_sink_from_env, render_presence
from state import ScrobbleState, decide, with_artwork

load_dotenv()

# -------------------------
# Configuration via ENV VARS
# -------------------------
BLUOS_HOST = os.getenv("BLUOS_HOST", "127.0.0.1")
BLUOS_PORT = int(os.getenv("BLUOS_PORT", "11000"))
POLL_INTERVAL = max(1, int(os.getenv("POLL_INTERVAL", "5")))
DEBUG = os.getenv("AMPLE_DEBUG", "false").lower() == "true"
LOG_DIR = Path(os.getenv("AMPLE_LOG_DIR", str(Path.home() / ".config" / "ample" / "logs")))
PRIMARY_PLAYER = os.getenv("AMPLE_PRIMARY_PLAYER") or None
CREDS_ATTEMPTS = max(1, int(os.getenv("AMPLE_CREDS_ATTEMPTS", "10")))

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

log = logging.getLogger("ample")

def setup_logging() -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            LOG_DIR / "ample.log", maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8",
        ))
    except OSError as e:
        print(f"Could not open log directory {LOG_DIR}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,  # ensure our config is used even if libs pre-configure logging
    )

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ample", description="Scrobble locally playing media to Last.fm.")
    parser.add_argument("-p", "--password", action="store_true", help="store the Last.fm password in the OS keyring")
    parser.add_argument("-s", "--secret", action="store_true", help="store the Last.fm API secret in the OS keyring")
    return parser.parse_args(argv)

def provision(store: KeyringSecretStore, args: argparse.Namespace) -> int:
    for wanted, entry, prompt in ((args.password, PASSWORD_ENTRY, "Password: "),
                                  (args.secret, SECRET_ENTRY, "API Secret: ")):
        if not wanted:
            continue
        try:
            store_secret(store, entry, getpass.getpass(prompt).strip())
        except KeyringError as e:
            log.error("%s", e)
            return 1
        log.info("%s has been set!", prompt.rstrip(": "))
    return 0

def get_lastfm(store: KeyringSecretStore) -> LastFMClient | None:
    """LastFM is optional: any credential failure just disables scrobbling."""
    session = requests.Session()
    try:
        creds = retry_creds(session, store, CREDS_ATTEMPTS)
    except CredsError as e:
        log.error("LastFM support not enabled: %s", e)
        return None
    log.info("Got LastFM credentials")
    return LastFMClient(creds, session=session)

def drain_artwork(state: ScrobbleState, artwork: queue.Queue) -> ScrobbleState:
    while True:
        try:
            identity, url = artwork.get_nowait()
        except queue.Empty:
            return state
        state = with_artwork(state, identity, url)

def tick(state: ScrobbleState, poller, sink, worker, artwork: queue.Queue, now: datetime,
         primary_player: str | None = None) -> tuple[ScrobbleState, Presence | None]:
    """One poll: advance the state, feed the display, hand actions to the worker.

    Returns the new state and the presence now on display (None when the
    display was cleared or left alone).
    """
    # Cover art arrives asynchronously from the dispatch thread
    state = drain_artwork(state, artwork)

    try:
        sample = poller.poll()
    except PollError as e:
        log.warning("%s", e)
        return state, None

    if sample is None:
        log.debug("No media is paused or playing!")
        return state, None

    decision = decide(state, sample, now, primary_player=primary_player)
    if decision.state.current != state.current:
        info = sample.identity
        log.info("Currently Playing: %s by %s on %s (%s)",
                 info.song_name, info.artist_name, info.album_name, info.player_name)
    state = decision.state

    shown = None
    if decision.clear:
        sink.clear()
    else:
        shown = render_presence(sample, now, state.artwork_url)
        sink.update(shown)

    if worker is not None:
        for action in decision.actions:
            worker.submit(action)

    return state, shown

def wait_for_artwork(state: ScrobbleState, sink, artwork: queue.Queue, shown: Presence | None,
                     timeout: float, clock=time.monotonic) -> ScrobbleState:
    """Sleep until the next tick, pushing cover art to the display as soon as it lands."""
    deadline = clock() + timeout
    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            return state
        try:
            identity, url = artwork.get(timeout=remaining)
        except queue.Empty:
            return state
        updated = with_artwork(state, identity, url)
        if updated is not state and shown is not None:
            shown = replace(shown, artwork_url=updated.artwork_url)
            sink.update(shown)
            log.info("Status img updated to: %s", updated.artwork_url)
        state = updated

def main(argv=None) -> int:
    setup_logging()
    args = parse_args(argv)
    store = KeyringSecretStore()

    if args.password or args.secret:
        return provision(store, args)

    poller = BluOSPoller(BLUOS_HOST, BLUOS_PORT)
    sink = status_sink_from_env()

    artwork: queue.Queue = queue.Queue()
    worker = None
    client = get_lastfm(store)
    if client is not None:
        worker = DispatchWorker(client, on_artwork=lambda identity, url: artwork.put((identity, url)))
        worker.start()

    state = ScrobbleState()
    log.info("Starting ample. Poll interval: %ss, BluOS device: %s:%s", POLL_INTERVAL, BLUOS_HOST, BLUOS_PORT)

    try:
        while True:
            state, shown = tick(state, poller, sink, worker, artwork,
                                datetime.now(timezone.utc), primary_player=PRIMARY_PLAYER)
            state = wait_for_artwork(state, sink, artwork, shown, POLL_INTERVAL)
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        if worker is not None:
            worker.stop(timeout=5)
        sink.clear()
    return 0

def run() -> None:
    sys.exit(main())

if __name__ == "__main__":
    run()
