from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .entities import Album, Shelf


# Events emitted by a playback session
READY = "ready"
NOT_READY = "not_ready"
AUTHENTICATION_ERROR = "authentication_error"
ACCOUNT_ERROR = "account_error"
PLAYBACK_ERROR = "playback_error"
STATE_CHANGED = "state_changed"

SESSION_EVENTS = (READY, NOT_READY, AUTHENTICATION_ERROR, ACCOUNT_ERROR, PLAYBACK_ERROR, STATE_CHANGED)


class PlayerApi(Protocol):
    """Device-scoped REST calls of the music service.

    Mutating calls return the HTTP status code of the response.
    """

    def get_active_device_id(self) -> Optional[str]:
        """Id of the account's active output device, if any."""

    def pause(self, device_id: Optional[str] = None) -> int:
        """Pause playback on the given device, or wherever it is active."""

    def resume(self, device_id: str) -> int:
        """Resume playback on the device."""

    def seek(self, position_ms: int, device_id: str) -> int:
        """Seek the device to an absolute position."""

    def transfer(self, device_id: str, play: bool = False) -> int:
        """Make the device the active output."""

    def play(self, device_id: str, uris: Sequence[str],
             offset_position: Optional[int] = None,
             position_ms: Optional[int] = None) -> int:
        """Start playing the uris on the device."""

    def get_playback_state(self) -> Optional[Dict[str, Any]]:
        """Raw playback state, or None when nothing is playing."""

    def list_devices(self) -> List[Dict[str, Any]]:
        """Devices visible to the account."""


class PlaybackSession(Protocol):
    """One playback device session per credential lifetime."""

    @property
    def is_connected(self) -> bool:
        """True between a successful connect and disconnect."""

    @property
    def api(self) -> Optional[PlayerApi]:
        """Player API bound to this session's transport."""

    def add_listener(self, event: str, callback: Callable[..., None]) -> None:
        """Register a callback for one of SESSION_EVENTS."""

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        """Unregister a callback."""

    def connect(self, get_credential: Callable[[], Optional[str]]) -> bool:
        """Establish the device session."""

    def disconnect(self) -> None:
        """Release the device and every resource loaded by connect."""

    def pause(self) -> bool:
        """Pause the device."""

    def resume(self) -> bool:
        """Resume the device."""

    def seek(self, position_ms: int) -> bool:
        """Seek the device."""

    def refresh_state(self) -> None:
        """Read the device state and emit state_changed."""


class ShelfStore(Protocol):
    """Shelves keyed by the stable external user identity."""

    def get_shelves(self, identity: str) -> List[Shelf]:
        """Return the identity's shelves, an empty list when unknown."""

    def put_shelves(self, identity: str, shelves: List[Shelf]) -> None:
        """Replace the identity's shelves."""


class ShelfCache(Protocol):
    """Local cache tier keyed by a fixed storage key."""

    def load(self, key: str) -> Optional[List[Shelf]]:
        """Cached shelves or None when nothing is stored."""

    def save(self, key: str, shelves: List[Shelf]) -> None:
        """Overwrite the cached shelves."""


class AlbumCatalog(Protocol):
    """Album metadata lookup."""

    def fetch_album(self, url: str) -> Album:
        """Resolve an album URL or URI into an Album record."""
