import os
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_albumshelf_env():
    """Keep configuration from a developer's .env out of the tests.

    Variables are cleared before each test and restored afterwards so tests
    that set them explicitly stay deterministic.
    """
    keys = [
        'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI',
        'ALBUMSHELF_SECRET_KEY', 'ALBUMSHELF_DATA_DIR', 'ALBUMSHELF_DEVICE_NAME',
        'ALBUMSHELF_LOG_LEVEL', 'SHELF_STORE_URL', 'SHELF_STORE_KEY',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


class FakePlayerApi:
    """In-memory player API recording every call."""

    def __init__(self, active_device: Optional[str] = None,
                 play_statuses: Optional[List[int]] = None,
                 transfer_status: int = 204,
                 activate_on_transfer: bool = False):
        self.active_device = active_device
        self.play_statuses = list(play_statuses or [])
        self.transfer_status = transfer_status
        self.activate_on_transfer = activate_on_transfer
        self.calls: List[tuple] = []

    def get_active_device_id(self) -> Optional[str]:
        self.calls.append(('active',))
        return self.active_device

    def pause(self, device_id: Optional[str] = None) -> int:
        self.calls.append(('pause', device_id))
        return 204

    def resume(self, device_id: str) -> int:
        self.calls.append(('resume', device_id))
        return 204

    def seek(self, position_ms: int, device_id: str) -> int:
        self.calls.append(('seek', position_ms, device_id))
        return 204

    def transfer(self, device_id: str, play: bool = False) -> int:
        self.calls.append(('transfer', device_id, play))
        if self.activate_on_transfer:
            self.active_device = device_id
        return self.transfer_status

    def play(self, device_id: str, uris: Sequence[str],
             offset_position: Optional[int] = None,
             position_ms: Optional[int] = None) -> int:
        self.calls.append(('play', device_id, list(uris), offset_position, position_ms))
        return self.play_statuses.pop(0) if self.play_statuses else 204

    def get_playback_state(self) -> Optional[Dict[str, Any]]:
        return None

    def list_devices(self) -> List[Dict[str, Any]]:
        return []

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def plays(self) -> List[tuple]:
        return [call for call in self.calls if call[0] == 'play']


class FakePlaybackSession:
    """Playback session driven by the test through ``emit``."""

    def __init__(self, api: Optional[FakePlayerApi] = None, connected: bool = True):
        self._api = api or FakePlayerApi()
        self._connected = connected
        self.listeners: Dict[str, List[Callable[..., None]]] = {}
        self.commands: List[tuple] = []
        self.disconnected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def api(self):
        return self._api

    def add_listener(self, event: str, callback: Callable[..., None]) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        if callback in self.listeners.get(event, []):
            self.listeners[event].remove(callback)

    def emit(self, event: str, *args) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(*args)

    def connect(self, get_credential) -> bool:
        self._connected = True
        return True

    def disconnect(self) -> None:
        self._connected = False
        self.disconnected = True

    def pause(self) -> bool:
        self.commands.append(('pause',))
        return True

    def resume(self) -> bool:
        self.commands.append(('resume',))
        return True

    def seek(self, position_ms: int) -> bool:
        self.commands.append(('seek', position_ms))
        return True

    def refresh_state(self) -> None:
        self.commands.append(('refresh',))


def vendor_state(track_id: Optional[str], paused: bool = False,
                 position: int = 0, duration: int = 200000) -> Dict[str, Any]:
    """Player state payload in the device SDK layout."""
    current = None
    if track_id is not None:
        current = {
            'id': track_id,
            'uri': f'spotify:track:{track_id}',
            'name': f'Track {track_id}',
            'artists': [{'name': 'Artist'}],
            'album': {'name': 'Album', 'images': [{'url': 'https://img/1.jpg'}]},
        }
    return {
        'paused': paused,
        'position': position,
        'duration': duration,
        'track_window': {'current_track': current},
    }


@pytest.fixture
def player_api():
    return FakePlayerApi()


@pytest.fixture
def playback_session(player_api):
    return FakePlaybackSession(player_api)


@pytest.fixture
def delays():
    """Collects the delays passed to an injected sleep function."""
    return []


@pytest.fixture
def make_api():
    return FakePlayerApi


@pytest.fixture
def make_session():
    return FakePlaybackSession


@pytest.fixture
def make_vendor_state():
    return vendor_state
