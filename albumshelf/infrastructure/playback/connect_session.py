import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from albumshelf.crosscutting.logging import CorrelationContext
from albumshelf.domain.errors import AuthenticationRequired, VendorApiError
from albumshelf.domain.ports import (
    ACCOUNT_ERROR, AUTHENTICATION_ERROR, NOT_READY, PLAYBACK_ERROR, READY, SESSION_EVENTS,
    STATE_CHANGED, PlaybackSession, PlayerApi,
)
from albumshelf.infrastructure.providers.spotify_player import API_BASE_URL, DEFAULT_TIMEOUT, SpotifyPlayerApi

logger = logging.getLogger(__name__)

def _idle_state() -> Dict[str, Any]:
    """State for a device with nothing playing on it."""
    return {'paused': True, 'position': 0, 'duration': 0, 'track_window': {'current_track': None}}


def _vendor_state(playback: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape a /me/player response into the player SDK state layout."""
    item = playback.get('item') or {}
    current_track = None
    if item:
        current_track = {
            'id': item.get('id'),
            'uri': item.get('uri'),
            'name': item.get('name', ''),
            'artists': [{'name': a.get('name', '')} for a in item.get('artists') or []],
            'album': {
                'name': (item.get('album') or {}).get('name', ''),
                'images': (item.get('album') or {}).get('images') or [],
            },
        }
    return {
        'paused': not playback.get('is_playing', False),
        'position': playback.get('progress_ms') or 0,
        'duration': item.get('duration_ms') or 0,
        'track_window': {'current_track': current_track},
    }


class SpotifyConnectSession(PlaybackSession):
    """Playback session bound to a named Spotify Connect receiver.

    ``connect`` opens one HTTP session for the lifetime of the connection;
    ``disconnect`` closes it. Device events are delivered to listeners
    registered per event name.
    """

    def __init__(self, device_name: str,
                 base_url: str = API_BASE_URL,
                 timeout: float = DEFAULT_TIMEOUT,
                 session_factory: Callable[[], requests.Session] = requests.Session):
        self.device_name = device_name
        self._base_url = base_url
        self._timeout = timeout
        self._session_factory = session_factory
        self._listeners: Dict[str, List[Callable[..., None]]] = {event: [] for event in SESSION_EVENTS}
        self._http: Optional[requests.Session] = None
        self._api: Optional[SpotifyPlayerApi] = None
        self._connected = False
        self.device_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def api(self) -> Optional[PlayerApi]:
        return self._api

    def add_listener(self, event: str, callback: Callable[..., None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown playback event: {event}")
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown playback event: {event}")
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}")

    def _report_vendor_error(self, error: Exception) -> None:
        status = getattr(error, 'status', None)
        if isinstance(error, AuthenticationRequired) or status == 401:
            self._emit(AUTHENTICATION_ERROR, str(error))
        elif status == 403:
            self._emit(ACCOUNT_ERROR, str(error))
        else:
            self._emit(PLAYBACK_ERROR, str(error))

    # Lifecycle

    def connect(self, get_credential: Callable[[], Optional[str]]) -> bool:
        """Open the transport and look the receiver device up by name."""
        if self._connected and self.device_id:
            return True

        if self._http is None:
            self._http = self._session_factory()
            self._api = SpotifyPlayerApi(self._http, get_credential, self._base_url, self._timeout)
        self._connected = True

        with CorrelationContext(stage='connect'):
            return self._locate_device()

    def _locate_device(self) -> bool:
        try:
            devices = self._api.list_devices()
        except (AuthenticationRequired, VendorApiError) as e:
            logger.error(f"Could not list playback devices: {e}")
            self._report_vendor_error(e)
            return False
        except Exception as e:
            logger.error(f"Could not list playback devices: {e}")
            self._emit(PLAYBACK_ERROR, str(e))
            return False

        target = self.device_name.strip().casefold()
        for device in devices:
            if (device.get('name') or '').strip().casefold() == target and device.get('id'):
                self.device_id = device['id']
                logger.info(f"Found playback device '{device.get('name')}' ({self.device_id})")
                self._emit(READY, self.device_id)
                return True

        logger.warning(f"Playback device '{self.device_name}' not found among {len(devices)} device(s)")
        self.device_id = None
        self._emit(NOT_READY, None)
        return False

    def disconnect(self) -> None:
        if self._http is not None:
            self._http.close()
        device_id = self.device_id
        self._http = None
        self._api = None
        self.device_id = None
        if self._connected:
            self._connected = False
            logger.info(f"Disconnected from playback device {device_id}")
            self._emit(NOT_READY, device_id)

    # Device commands

    def _command(self, name: str, call: Callable[[PlayerApi, str], int]) -> bool:
        if not self._connected or self._api is None or not self.device_id:
            logger.warning(f"Cannot {name}: no playback device")
            return False
        try:
            status = call(self._api, self.device_id)
        except Exception as e:
            logger.error(f"Failed to {name}: {e}")
            self._report_vendor_error(e)
            return False
        if 200 <= status < 300:
            return True
        message = f"{name} failed with status {status}"
        logger.error(message)
        self._report_vendor_error(VendorApiError(status, message))
        return False

    def pause(self) -> bool:
        return self._command('pause', lambda api, device: api.pause(device))

    def resume(self) -> bool:
        return self._command('resume', lambda api, device: api.resume(device))

    def seek(self, position_ms: int) -> bool:
        return self._command('seek', lambda api, device: api.seek(position_ms, device))

    def refresh_state(self) -> None:
        """Poll the current playback and emit it as a state change."""
        if not self._connected or self._api is None:
            return
        if not self.device_id and not self._locate_device():
            return

        try:
            playback = self._api.get_playback_state()
        except Exception as e:
            logger.warning(f"Failed to read playback state: {e}")
            self._report_vendor_error(e)
            return

        if playback is None:
            self._emit(STATE_CHANGED, None)
            return
        playing_on = (playback.get('device') or {}).get('id')
        if playing_on != self.device_id:
            logger.debug(f"Playback is on device {playing_on}, not {self.device_id}")
            self._emit(STATE_CHANGED, _idle_state())
            return
        self._emit(STATE_CHANGED, _vendor_state(playback))
