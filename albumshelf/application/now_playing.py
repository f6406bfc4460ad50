from typing import Callable, Iterable, List, Optional, Union

from albumshelf.application.playback import PlaybackController
from albumshelf.application.shelves import UNIFIED_SHELF_NAME, ShelfManager
from albumshelf.domain.entities import Album, CurrentTrack, NowPlaying, Shelf
from albumshelf.domain.normalization import ids_match, normalize_id


def reconcile(current_track: Optional[Union[CurrentTrack, str]],
              collection: Optional[Union[Shelf, Iterable[Album]]]) -> Optional[NowPlaying]:
    """Find the first album of the collection containing the current track.

    Ids are compared in normalized form, so URIs and bare ids match.
    """
    if current_track is None or collection is None:
        return None

    track_id = current_track if isinstance(current_track, str) else current_track.id
    if not normalize_id(track_id):
        return None

    albums = collection.albums if isinstance(collection, Shelf) else collection
    for album in albums:
        for track in album.tracks:
            if ids_match(track.id, track_id):
                return NowPlaying(album_id=album.id, track_id=normalize_id(track.id))
    return None


class NowPlayingMonitor:
    """Keeps the now-playing attribution for one shelf current.

    Recomputed on every playback or collection change; listeners are
    called only when the attribution actually changes.
    """

    def __init__(self, controller: PlaybackController, manager: ShelfManager,
                 shelf_id: Optional[str] = None):
        self._controller = controller
        self._manager = manager
        self._shelf_id = shelf_id
        self._listeners: List[Callable[[Optional[NowPlaying]], None]] = []
        self.current: Optional[NowPlaying] = None
        self._unsubscribers = [
            controller.subscribe(lambda _state: self.recompute()),
            manager.subscribe(lambda _shelves: self.recompute()),
        ]
        self.recompute()

    def _shelf(self) -> Optional[Shelf]:
        if self._shelf_id is None:
            return self._manager.find_by_name(UNIFIED_SHELF_NAME)
        return self._manager.get_shelf(self._shelf_id)

    def recompute(self) -> Optional[NowPlaying]:
        result = reconcile(self._controller.state.current_track, self._shelf())
        if result != self.current:
            self.current = result
            for listener in list(self._listeners):
                listener(result)
        return result

    def subscribe(self, listener: Callable[[Optional[NowPlaying]], None]) -> None:
        self._listeners.append(listener)

    def is_album_playing(self, album_id: str) -> bool:
        return (self.current is not None and self.current.album_id == album_id
                and self._controller.state.is_playing)

    def is_track_playing(self, track_id: str) -> bool:
        return (self.current is not None and ids_match(self.current.track_id, track_id)
                and self._controller.state.is_playing)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._listeners.clear()
