import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

from albumshelf.crosscutting.logging import CorrelationContext, log_error
from albumshelf.domain.entities import Album, Shelf
from albumshelf.domain.ports import ShelfCache, ShelfStore


logger = logging.getLogger(__name__)

STORAGE_KEY = 'spotify_shelves'
UNIFIED_SHELF_NAME = 'My Albums'

ShelvesListener = Callable[[Tuple[Shelf, ...]], None]


class ShelfManager:
    """Sole owner of shelf membership and order.

    Every mutation writes the local cache immediately and, when an identity
    is set, writes through to the remote store on a single background worker
    so remote writes land in mutation order. Nothing coordinates writers in
    other processes: the last write wins.
    """

    def __init__(self, cache: ShelfCache,
                 remote: Optional[ShelfStore] = None,
                 identity: Optional[str] = None,
                 storage_key: str = STORAGE_KEY):
        self._cache = cache
        self._remote = remote
        self._identity = identity
        self._storage_key = storage_key
        self._shelves: Tuple[Shelf, ...] = ()
        self._lock = threading.RLock()
        self._listeners: List[ShelvesListener] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []
        self.persistence_error: Optional[str] = None

    @property
    def shelves(self) -> Tuple[Shelf, ...]:
        return self._shelves

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    def set_identity(self, identity: Optional[str]) -> None:
        """Switch the remote key, e.g. after login or logout."""
        self._identity = identity

    def subscribe(self, listener: ShelvesListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Loading

    def load(self) -> Tuple[Shelf, ...]:
        """Load shelves, preferring the remote store when an identity is set.

        Remote data overwrites the local cache. When the remote cannot be
        read, cached shelves are used and pushed back to the remote.
        """
        if self._identity and self._remote is not None:
            try:
                shelves = self._remote.get_shelves(self._identity)
                logger.info(f"Loaded {len(shelves)} shelves from remote store")
                with self._lock:
                    self._shelves = tuple(shelves)
                self._save_cache(list(shelves))
                self._notify()
                return self._shelves
            except Exception as e:
                log_error(logger, "Failed to load shelves from remote store", e)

        try:
            cached = self._cache.load(self._storage_key)
        except Exception as e:
            log_error(logger, "Failed to load shelves from local cache", e)
            cached = None

        if cached is not None:
            logger.info(f"Loaded {len(cached)} shelves from local cache")
            with self._lock:
                self._shelves = tuple(cached)
            if self._identity and self._remote is not None:
                self._write_remote(list(cached), cache_ok=True)
            self._notify()
        return self._shelves

    # Queries

    def get_shelf(self, shelf_id: str) -> Optional[Shelf]:
        for shelf in self._shelves:
            if shelf.id == shelf_id:
                return shelf
        return None

    def find_by_name(self, name: str) -> Optional[Shelf]:
        for shelf in self._shelves:
            if shelf.name == name:
                return shelf
        return None

    # Mutations

    def create_shelf(self, name: str) -> str:
        shelf = Shelf.new(name)
        with self._lock:
            self._commit(self._shelves + (shelf,))
        logger.info(f"Created shelf '{name}' ({len(self._shelves)} shelves)")
        return shelf.id

    def delete_shelf(self, shelf_id: str) -> None:
        with self._lock:
            if self.get_shelf(shelf_id) is None:
                return
            self._commit(tuple(s for s in self._shelves if s.id != shelf_id))

    def rename_shelf(self, shelf_id: str, name: str) -> None:
        with self._lock:
            shelf = self.get_shelf(shelf_id)
            if shelf is None:
                return
            self._replace(Shelf(id=shelf.id, name=name, albums=shelf.albums, created_at=shelf.created_at))

    def add_album(self, shelf_id: str, album: Album) -> bool:
        """Append an album; a second album with the same id is ignored."""
        with self._lock, CorrelationContext(shelf_id=shelf_id):
            shelf = self.get_shelf(shelf_id)
            if shelf is None:
                logger.warning(f"Shelf {shelf_id} not found, skipping album {album.id}")
                return False
            if shelf.contains(album.id):
                logger.debug(f"Album {album.id} already on shelf {shelf_id}")
                return False
            self._replace(shelf.with_albums(shelf.albums + (album,)))
            logger.info(f"Added album '{album.name}' to shelf '{shelf.name}'")
            return True

    def remove_album(self, shelf_id: str, album_id: str) -> bool:
        with self._lock:
            shelf = self.get_shelf(shelf_id)
            if shelf is None or not shelf.contains(album_id):
                return False
            self._replace(shelf.with_albums(a for a in shelf.albums if a.id != album_id))
            return True

    def reorder(self, shelf_id: str, moved_album_id: str, target_album_id: Optional[str]) -> bool:
        """Move an album to the index currently held by the target album."""
        if not target_album_id:
            return False
        with self._lock, CorrelationContext(shelf_id=shelf_id):
            shelf = self.get_shelf(shelf_id)
            if shelf is None:
                return False

            source = shelf.index_of(moved_album_id)
            target = shelf.index_of(target_album_id)
            if source == -1 or target == -1:
                logger.warning(f"Reorder skipped, album not found: {moved_album_id} -> {target_album_id}")
                return False
            if source == target:
                return False

            albums = list(shelf.albums)
            moved = albums.pop(source)
            albums.insert(target, moved)
            self._replace(shelf.with_albums(albums))
            logger.debug(f"Moved album {moved_album_id} from {source} to {target}")
            return True

    # Unified shelf

    def get_or_create_unified_shelf(self) -> Shelf:
        with self._lock:
            shelf = self.find_by_name(UNIFIED_SHELF_NAME)
            if shelf is None:
                shelf = self.get_shelf(self.create_shelf(UNIFIED_SHELF_NAME))
            return shelf

    def add_album_to_unified_shelf(self, album: Album) -> bool:
        return self.add_album(self.get_or_create_unified_shelf().id, album)

    def remove_album_from_unified_shelf(self, album_id: str) -> bool:
        return self.remove_album(self.get_or_create_unified_shelf().id, album_id)

    def reorder_unified_shelf(self, moved_album_id: str, target_album_id: Optional[str]) -> bool:
        return self.reorder(self.get_or_create_unified_shelf().id, moved_album_id, target_album_id)

    # Persistence

    def _replace(self, updated: Shelf) -> None:
        self._commit(tuple(updated if s.id == updated.id else s for s in self._shelves))

    def _commit(self, shelves: Tuple[Shelf, ...]) -> None:
        self._shelves = shelves
        snapshot = list(shelves)
        cache_ok = self._save_cache(snapshot)
        if self._identity and self._remote is not None:
            self._write_remote(snapshot, cache_ok)
        elif not cache_ok:
            self.persistence_error = "Shelves could not be saved"
        self._notify()

    def _save_cache(self, shelves: List[Shelf]) -> bool:
        try:
            self._cache.save(self._storage_key, shelves)
            return True
        except Exception as e:
            log_error(logger, "Failed to save shelves to local cache", e)
            return False

    def _write_remote(self, shelves: List[Shelf], cache_ok: bool) -> None:
        identity = self._identity
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='shelf-sync')

        def write() -> None:
            try:
                self._remote.put_shelves(identity, shelves)
                logger.info(f"Saved {len(shelves)} shelves to remote store")
                if cache_ok:
                    self.persistence_error = None
            except Exception as e:
                log_error(logger, "Failed to save shelves to remote store", e)
                if not cache_ok:
                    self.persistence_error = "Shelves could not be saved"

        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor.submit(write))

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until queued remote writes have finished."""
        for future in list(self._pending):
            future.result(timeout=timeout)
        self._pending = [f for f in self._pending if not f.done()]

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending = []

    def _notify(self) -> None:
        snapshot = self._shelves
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log_error(logger, "Shelf listener failed", e)
