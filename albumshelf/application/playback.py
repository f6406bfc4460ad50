import time
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from albumshelf.application.activation import ActivationPolicy, DeviceActivator
from albumshelf.crosscutting.logging import CorrelationContext, log_error
from albumshelf.domain.entities import PlaybackState, Track
from albumshelf.domain.errors import ActivationFailed, DeviceNotReady
from albumshelf.domain.normalization import ids_match, to_track_uri
from albumshelf.domain.ports import (
    ACCOUNT_ERROR, AUTHENTICATION_ERROR, NOT_READY, PLAYBACK_ERROR, READY, STATE_CHANGED,
    PlaybackSession, PlayerApi,
)
from albumshelf.infrastructure.providers.schemas import translate_player_state


logger = logging.getLogger(__name__)

# Statuses that mean the device is not (yet) the active output
ACTIVATION_FAILURE_STATUSES = (403, 404)

StateListener = Callable[[PlaybackState], None]


def _is_success(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 300


class PlaybackController:
    """State machine over one playback session.

    Owns the PlaybackState snapshot; every transition replaces it and
    notifies subscribers. Play requests are not queued: a request that
    arrives while another is in flight is dropped.
    """

    def __init__(self, session: PlaybackSession,
                 activator: Optional[DeviceActivator] = None,
                 policy: Optional[ActivationPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 translate: Callable[[Dict[str, Any]], Dict[str, Any]] = translate_player_state):
        self._session = session
        self.policy = policy or (activator.policy if activator else ActivationPolicy())
        self._activator = activator or DeviceActivator(self.policy, sleep=sleep)
        self._sleep = sleep
        self._translate = translate
        self._state = PlaybackState()
        self._listeners: List[StateListener] = []
        self._busy = threading.Lock()
        self._state_lock = threading.RLock()

        self._handlers = {
            READY: self._on_ready,
            NOT_READY: self._on_not_ready,
            AUTHENTICATION_ERROR: self._on_authentication_error,
            ACCOUNT_ERROR: self._on_account_error,
            PLAYBACK_ERROR: self._on_playback_error,
            STATE_CHANGED: self._on_state_changed,
        }
        for event, handler in self._handlers.items():
            session.add_listener(event, handler)

    # Reactive state

    @property
    def state(self) -> PlaybackState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            snapshot = self._state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log_error(logger, "Playback state listener failed", e)

    # Session events

    def _on_ready(self, device_id: str) -> None:
        logger.info(f"Playback device ready: {device_id}")
        self._update(is_ready=True, device_id=device_id)

    def _on_not_ready(self, device_id: Optional[str] = None) -> None:
        logger.info(f"Playback device went offline: {device_id}")
        self._update(is_ready=False)

    def _on_authentication_error(self, message: str = "") -> None:
        logger.error(f"Playback authentication error: {message}")
        self._update(is_ready=False)

    def _on_account_error(self, message: str = "") -> None:
        logger.error(f"Playback account error: {message}")
        self._update(is_ready=False)

    def _on_playback_error(self, message: str = "") -> None:
        logger.error(f"Playback error: {message}")

    def _on_state_changed(self, raw: Optional[Dict[str, Any]]) -> None:
        if raw is None:
            return
        try:
            fields = self._translate(raw)
        except Exception as e:
            log_error(logger, "Ignoring unrecognized playback state", e)
            return

        previous = self._state.current_track
        self._update(**fields)
        current = self._state.current_track
        if current and (previous is None or previous.id != current.id):
            tracks = self._state.current_album_track_list
            logger.debug(f"Track changed to {current.id} "
                         f"(context tracks: {len(tracks) if tracks is not None else 0})")

    # Preconditions

    @property
    def is_available(self) -> bool:
        """True when play requests can be issued."""
        state = self._state
        return bool(self._session.is_connected and state.is_ready and state.device_id
                    and self._session.api is not None)

    def _require_ready(self, operation: str) -> None:
        if self.is_available:
            return
        state = self._state
        raise DeviceNotReady(f"Player not ready for {operation}: connected={self._session.is_connected}, "
                             f"ready={state.is_ready}, device={state.device_id}")

    def _activate(self, api: PlayerApi, device_id: str) -> bool:
        """Run the activation protocol; playback proceeds even when it fails."""
        try:
            self._activator.activate(api, device_id)
            return True
        except ActivationFailed as e:
            logger.warning(f"Device activation had issues, continuing: {e}")
            return False

    # Playback requests

    def play_track(self, track_id: str, context: Optional[Sequence[Track]] = None) -> bool:
        """Play a single track, optionally setting the navigation context."""
        if not self._busy.acquire(blocking=False):
            logger.info("Play request dropped: another request is in flight")
            return False
        try:
            return self._play_track(track_id, context)
        except DeviceNotReady as e:
            logger.warning(str(e))
            return False
        finally:
            self._busy.release()

    def _play_track(self, track_id: str, context: Optional[Sequence[Track]]) -> bool:
        self._require_ready("play_track")

        device_id = self._state.device_id
        with CorrelationContext(device_id=device_id, stage='play_track'):
            try:
                if context is not None:
                    self._update(current_album_track_list=tuple(context))

                api = self._session.api
                self._activate(api, device_id)

                uri = to_track_uri(track_id)
                status = api.play(device_id, [uri])
                if not _is_success(status):
                    logger.error(f"Failed to play track {uri}: status {status}")
                    return False

                logger.info(f"Track playback started: {uri}")
                return True
            except Exception as e:
                log_error(logger, "Failed to play track", e, track_id=track_id)
                return False

    def play_album(self, track_ids: Sequence[str], context: Optional[Sequence[Track]] = None) -> bool:
        """Play a list of tracks from the first one, whatever played before."""
        if not self._busy.acquire(blocking=False):
            logger.info("Play request dropped: another request is in flight")
            return False
        try:
            return self._play_album(track_ids, context)
        except DeviceNotReady as e:
            logger.warning(str(e))
            return False
        finally:
            self._busy.release()

    def _play_album(self, track_ids: Sequence[str], context: Optional[Sequence[Track]]) -> bool:
        self._require_ready("play_album")
        if not track_ids:
            logger.warning("play_album called without tracks")
            return False

        device_id = self._state.device_id
        uris = [to_track_uri(track_id) for track_id in track_ids]

        with CorrelationContext(device_id=device_id, stage='play_album'):
            try:
                if context is not None:
                    self._update(current_album_track_list=tuple(context))

                api = self._session.api
                self._activate(api, device_id)

                logger.info(f"Starting album playback from track 1 of {len(uris)}")
                status = api.play(device_id, uris, offset_position=0, position_ms=0)
                if _is_success(status):
                    logger.info("Album playback started")
                    return True

                logger.error(f"Failed to play album: status {status}")
                if status not in ACTIVATION_FAILURE_STATUSES:
                    return False

                for attempt in range(self.policy.play_retries):
                    self._activator.transfer_once(api, device_id)
                    self._sleep(self.policy.play_retry_delay(attempt))
                    status = api.play(device_id, uris, offset_position=0, position_ms=0)
                    if _is_success(status):
                        logger.info(f"Album playback started after {attempt + 1} activation attempt(s)")
                        return True
                    logger.warning(f"Album retry {attempt + 1} failed: status {status}")

                logger.error("All activation attempts failed")
                return False
            except Exception as e:
                log_error(logger, "Failed to play album", e, track_count=len(uris))
                return False

    def toggle_play_pause(self) -> None:
        if not self._session.is_connected:
            return
        if self._state.is_playing:
            self._session.pause()
        else:
            self._session.resume()

    def seek(self, position_ms: int) -> None:
        if not self._session.is_connected:
            return
        self._session.seek(position_ms)

    # Navigation within the context track list

    def current_index(self) -> int:
        """Index of the current track in the context list, -1 when absent."""
        state = self._state
        tracks = state.current_album_track_list
        if not tracks or state.current_track is None:
            return -1
        for index, track in enumerate(tracks):
            if ids_match(track.id, state.current_track.id):
                return index
        return -1

    @property
    def can_go_prev(self) -> bool:
        return self.current_index() > 0

    @property
    def can_go_next(self) -> bool:
        index = self.current_index()
        tracks = self._state.current_album_track_list
        return index >= 0 and tracks is not None and index < len(tracks) - 1

    def next_track(self) -> bool:
        return self._step(1)

    def prev_track(self) -> bool:
        return self._step(-1)

    def _step(self, offset: int) -> bool:
        if not self._busy.acquire(blocking=False):
            logger.info("Navigation dropped: another request is in flight")
            return False
        try:
            tracks = self._state.current_album_track_list
            index = self.current_index()
            target = index + offset
            if index == -1 or tracks is None or not 0 <= target < len(tracks):
                logger.debug(f"Cannot move {offset:+d} from index {index}")
                return False
            return self._play_track(to_track_uri(tracks[target].id), tracks)
        except DeviceNotReady as e:
            logger.warning(str(e))
            return False
        finally:
            self._busy.release()

    # Lifecycle

    def dispose(self) -> None:
        """Detach from the session and release the device."""
        for event, handler in self._handlers.items():
            self._session.remove_listener(event, handler)
        self._session.disconnect()
        self._update(is_ready=False, is_playing=False)
        self._listeners.clear()

    def snapshot(self) -> Dict[str, Any]:
        data = self._state.to_dict()
        data['canGoPrev'] = self.can_go_prev
        data['canGoNext'] = self.can_go_next
        return data
