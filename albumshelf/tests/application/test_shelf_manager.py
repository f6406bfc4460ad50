import os
import shutil
import tempfile
from unittest.mock import Mock

import pytest

from albumshelf.application.shelves import STORAGE_KEY, UNIFIED_SHELF_NAME, ShelfManager
from albumshelf.domain.entities import Album, Shelf, Track
from albumshelf.domain.errors import PersistenceFailure
from albumshelf.infrastructure.persistence.local_cache import LocalShelfCache


def album(album_id):
    return Album(id=album_id, name=f'Album {album_id}', tracks=(Track(id=f'{album_id}-t1'),))


class MemoryStore:
    def __init__(self, shelves=None):
        self.data = {}
        if shelves is not None:
            self.data['spot1'] = list(shelves)
        self.writes = []

    def get_shelves(self, identity):
        return list(self.data.get(identity, []))

    def put_shelves(self, identity, shelves):
        self.writes.append((identity, list(shelves)))
        self.data[identity] = list(shelves)


class TestShelfManager:
    """Tests for shelf membership, ordering and persistence."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cache = LocalShelfCache(os.path.join(self.temp_dir, 'cache.json'))
        self.manager = ShelfManager(self.cache)

    def teardown_method(self):
        self.manager.close()
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def album_ids(self, shelf_id):
        return [a.id for a in self.manager.get_shelf(shelf_id).albums]

    def test_create_shelf_persists_locally(self):
        shelf_id = self.manager.create_shelf('Favourites')

        assert self.manager.get_shelf(shelf_id).name == 'Favourites'
        assert [s.id for s in self.cache.load(STORAGE_KEY)] == [shelf_id]

    def test_add_album_dedup(self):
        shelf_id = self.manager.create_shelf('S')

        assert self.manager.add_album(shelf_id, album('a1')) is True
        assert self.manager.add_album(shelf_id, album('a1')) is False
        assert self.album_ids(shelf_id) == ['a1']

    def test_interleaved_adds_keep_first_occurrence(self):
        shelf_id = self.manager.create_shelf('S')

        added = [self.manager.add_album(shelf_id, album(a)) for a in ('a1', 'a2', 'a1', 'a3', 'a2')]

        assert added == [True, True, False, True, False]
        assert self.album_ids(shelf_id) == ['a1', 'a2', 'a3']
        assert [a.id for a in self.cache.load(STORAGE_KEY)[0].albums] == ['a1', 'a2', 'a3']

    def test_add_album_to_unknown_shelf(self):
        assert self.manager.add_album('missing', album('a1')) is False

    def test_remove_album(self):
        shelf_id = self.manager.create_shelf('S')
        self.manager.add_album(shelf_id, album('a1'))
        self.manager.add_album(shelf_id, album('a2'))

        assert self.manager.remove_album(shelf_id, 'a1') is True
        assert self.manager.remove_album(shelf_id, 'a1') is False
        assert self.album_ids(shelf_id) == ['a2']

    @pytest.mark.parametrize('moved, target, expected', [
        ('a1', 'a3', ['a2', 'a3', 'a1']),
        ('a3', 'a1', ['a3', 'a1', 'a2']),
        ('a2', 'a3', ['a1', 'a3', 'a2']),
    ])
    def test_reorder_moves_to_target_index(self, moved, target, expected):
        shelf_id = self.manager.create_shelf('S')
        for album_id in ('a1', 'a2', 'a3'):
            self.manager.add_album(shelf_id, album(album_id))

        assert self.manager.reorder(shelf_id, moved, target) is True
        assert self.album_ids(shelf_id) == expected

    @pytest.mark.parametrize('moved, target', [
        ('a1', 'a1'),
        ('a1', None),
        ('a1', 'zz'),
        ('zz', 'a1'),
    ])
    def test_reorder_noops(self, moved, target):
        shelf_id = self.manager.create_shelf('S')
        for album_id in ('a1', 'a2'):
            self.manager.add_album(shelf_id, album(album_id))
        before = self.manager.get_shelf(shelf_id)

        assert self.manager.reorder(shelf_id, moved, target) is False
        assert self.manager.get_shelf(shelf_id) is before

    def test_rename_and_delete(self):
        shelf_id = self.manager.create_shelf('Old')
        self.manager.rename_shelf(shelf_id, 'New')
        assert self.manager.get_shelf(shelf_id).name == 'New'

        self.manager.delete_shelf(shelf_id)
        assert self.manager.get_shelf(shelf_id) is None

    def test_unified_shelf_created_once(self):
        first = self.manager.get_or_create_unified_shelf()
        second = self.manager.get_or_create_unified_shelf()

        assert first.id == second.id
        assert first.name == UNIFIED_SHELF_NAME
        assert len(self.manager.shelves) == 1

    def test_unified_shelf_operations(self):
        self.manager.add_album_to_unified_shelf(album('a1'))
        self.manager.add_album_to_unified_shelf(album('a2'))
        self.manager.reorder_unified_shelf('a2', 'a1')
        unified = self.manager.find_by_name(UNIFIED_SHELF_NAME)
        assert [a.id for a in unified.albums] == ['a2', 'a1']

        self.manager.remove_album_from_unified_shelf('a2')
        assert [a.id for a in self.manager.find_by_name(UNIFIED_SHELF_NAME).albums] == ['a1']

    def test_listeners_notified(self):
        seen = []
        unsubscribe = self.manager.subscribe(seen.append)
        self.manager.create_shelf('S')
        unsubscribe()
        self.manager.create_shelf('T')
        assert len(seen) == 1

    def test_load_from_cache_without_identity(self):
        shelf = Shelf(id='s1', name='Cached', albums=(album('a1'),), created_at=1)
        self.cache.save(STORAGE_KEY, [shelf])

        assert self.manager.load() == (shelf,)


class TestShelfManagerRemote:
    """Tests for the remote tier of the shelf manager."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cache = LocalShelfCache(os.path.join(self.temp_dir, 'cache.json'))

    def teardown_method(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_remote_load_overwrites_cache(self):
        stale = Shelf(id='s-old', name='Stale', created_at=1)
        fresh = Shelf(id='s-new', name='Fresh', created_at=2)
        self.cache.save(STORAGE_KEY, [stale])
        manager = ShelfManager(self.cache, MemoryStore([fresh]), identity='spot1')

        assert manager.load() == (fresh,)
        assert self.cache.load(STORAGE_KEY) == [fresh]
        manager.close()

    def test_remote_failure_falls_back_to_cache_and_pushes(self):
        cached = Shelf(id='s1', name='Cached', created_at=1)
        self.cache.save(STORAGE_KEY, [cached])
        remote = Mock()
        remote.get_shelves.side_effect = PersistenceFailure('down')
        manager = ShelfManager(self.cache, remote, identity='spot1')

        assert manager.load() == (cached,)
        manager.flush(timeout=2)
        remote.put_shelves.assert_called_once_with('spot1', [cached])
        manager.close()

    def test_mutations_write_through_in_order(self):
        remote = MemoryStore()
        manager = ShelfManager(self.cache, remote, identity='spot1')
        shelf_id = manager.create_shelf('S')
        manager.add_album(shelf_id, album('a1'))
        manager.add_album(shelf_id, album('a2'))
        manager.flush(timeout=2)

        assert [len(w[1][0].albums) for w in remote.writes] == [0, 1, 2]
        assert remote.get_shelves('spot1')[0].albums[-1].id == 'a2'
        manager.close()

    def test_no_remote_writes_without_identity(self):
        remote = MemoryStore()
        manager = ShelfManager(self.cache, remote)
        manager.create_shelf('S')
        manager.flush(timeout=2)

        assert remote.writes == []
        manager.close()

    def test_error_surfaced_only_when_both_tiers_fail(self):
        cache = Mock()
        cache.save.side_effect = PersistenceFailure('disk full')
        remote = Mock()
        remote.put_shelves.side_effect = PersistenceFailure('down')
        manager = ShelfManager(cache, remote, identity='spot1')

        manager.create_shelf('S')
        manager.flush(timeout=2)

        assert manager.persistence_error is not None
        assert len(manager.shelves) == 1
        manager.close()

    def test_remote_failure_alone_is_silent(self):
        remote = Mock()
        remote.put_shelves.side_effect = PersistenceFailure('down')
        manager = ShelfManager(self.cache, remote, identity='spot1')

        manager.create_shelf('S')
        manager.flush(timeout=2)

        assert manager.persistence_error is None
        manager.close()
