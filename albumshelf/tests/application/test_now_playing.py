import os
import shutil
import tempfile

from albumshelf.application.now_playing import NowPlayingMonitor, reconcile
from albumshelf.application.playback import PlaybackController
from albumshelf.application.shelves import ShelfManager
from albumshelf.domain.entities import Album, CurrentTrack, NowPlaying, Shelf, Track
from albumshelf.domain.ports import READY, STATE_CHANGED
from albumshelf.infrastructure.persistence.local_cache import LocalShelfCache


def album(album_id, *track_ids):
    return Album(id=album_id, tracks=tuple(Track(id=t) for t in track_ids))


class TestReconcile:
    """Tests for now-playing attribution."""

    def test_matches_uri_against_bare_id(self):
        shelf = Shelf(id='s1', name='S', albums=(album('a1', 't1', 't2'),))
        result = reconcile(CurrentTrack(id='spotify:track:t2'), shelf)
        assert result == NowPlaying(album_id='a1', track_id='t2')

    def test_first_album_wins_when_track_repeats(self):
        albums = [album('a1', 'x'), album('a2', 'x')]
        assert reconcile('x', albums).album_id == 'a1'

    def test_no_match(self):
        assert reconcile('zz', [album('a1', 't1')]) is None

    def test_nothing_playing(self):
        assert reconcile(None, [album('a1', 't1')]) is None
        assert reconcile('t1', None) is None
        assert reconcile('', [album('a1', 't1')]) is None


class TestNowPlayingMonitor:
    """Tests for the reactive now-playing monitor."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.manager = ShelfManager(LocalShelfCache(os.path.join(self.temp_dir, 'cache.json')))

    def teardown_method(self):
        self.manager.close()
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_recomputes_on_playback_and_collection_changes(self, playback_session, make_vendor_state):
        controller = PlaybackController(playback_session, sleep=lambda s: None)
        playback_session.emit(READY, 'dev1')
        monitor = NowPlayingMonitor(controller, self.manager)
        changes = []
        monitor.subscribe(changes.append)

        playback_session.emit(STATE_CHANGED, make_vendor_state('t2'))
        assert monitor.current is None

        self.manager.add_album_to_unified_shelf(album('a1', 't1', 't2'))
        assert monitor.current == NowPlaying(album_id='a1', track_id='t2')
        assert monitor.is_album_playing('a1')
        assert monitor.is_track_playing('spotify:track:t2')

        playback_session.emit(STATE_CHANGED, make_vendor_state('t2', paused=True, position=5000))
        assert changes == [NowPlaying(album_id='a1', track_id='t2')]
        assert not monitor.is_album_playing('a1')

        monitor.close()

    def test_monitor_does_not_create_unified_shelf(self, playback_session):
        controller = PlaybackController(playback_session, sleep=lambda s: None)
        NowPlayingMonitor(controller, self.manager).close()
        assert self.manager.shelves == ()
