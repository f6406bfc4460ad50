from unittest.mock import Mock, patch

import pytest

from albumshelf.domain.errors import VendorApiError
from albumshelf.domain.ports import (
    ACCOUNT_ERROR, AUTHENTICATION_ERROR, NOT_READY, PLAYBACK_ERROR, READY, STATE_CHANGED,
)
from albumshelf.application.playback import PlaybackController
from albumshelf.infrastructure.playback.connect_session import SpotifyConnectSession


class TestSpotifyConnectSession:
    """Tests for the Spotify Connect playback adapter."""

    def setup_method(self):
        self.http = Mock()
        self.factory = Mock(return_value=self.http)
        self.session = SpotifyConnectSession('AlbumShelf Player', session_factory=self.factory)
        self.events = []
        for event in (READY, NOT_READY, AUTHENTICATION_ERROR, ACCOUNT_ERROR, PLAYBACK_ERROR, STATE_CHANGED):
            self.session.add_listener(event, lambda *args, _event=event: self.events.append((_event,) + args))

    def connect_with_devices(self, devices):
        with patch('albumshelf.infrastructure.playback.connect_session.SpotifyPlayerApi') as api_cls:
            api = api_cls.return_value
            api.list_devices.return_value = devices
            result = self.session.connect(lambda: 'token')
        return result, api

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            self.session.add_listener('progress', lambda: None)

    def test_connect_finds_device_by_name(self):
        connected, _ = self.connect_with_devices([
            {'id': 'phone', 'name': 'Phone'},
            {'id': 'dev1', 'name': 'albumshelf player'},
        ])

        assert connected is True
        assert self.session.is_connected
        assert self.session.device_id == 'dev1'
        assert self.events == [(READY, 'dev1')]

    def test_connect_without_device(self):
        connected, _ = self.connect_with_devices([{'id': 'phone', 'name': 'Phone'}])

        assert connected is False
        assert self.events == [(NOT_READY, None)]

    def test_http_session_created_once_and_closed(self):
        self.connect_with_devices([])
        self.connect_with_devices([])
        assert self.factory.call_count == 1

        self.session.disconnect()
        self.http.close.assert_called_once()
        assert self.session.is_connected is False
        assert self.session.api is None

    def test_auth_error_emitted(self):
        with patch('albumshelf.infrastructure.playback.connect_session.SpotifyPlayerApi') as api_cls:
            api_cls.return_value.list_devices.side_effect = VendorApiError(401, 'expired')
            assert self.session.connect(lambda: 'token') is False
        assert self.events[0][0] == AUTHENTICATION_ERROR

    def test_account_error_emitted(self):
        with patch('albumshelf.infrastructure.playback.connect_session.SpotifyPlayerApi') as api_cls:
            api_cls.return_value.list_devices.side_effect = VendorApiError(403, 'premium required')
            self.session.connect(lambda: 'token')
        assert self.events[0][0] == ACCOUNT_ERROR

    def test_commands_are_device_scoped(self):
        _, api = self.connect_with_devices([{'id': 'dev1', 'name': 'AlbumShelf Player'}])
        api.pause.return_value = 204
        api.seek.return_value = 204

        assert self.session.pause() is True
        assert self.session.seek(3000) is True
        api.pause.assert_called_once_with('dev1')
        api.seek.assert_called_once_with(3000, 'dev1')

    def test_failed_command_emits_playback_error(self):
        _, api = self.connect_with_devices([{'id': 'dev1', 'name': 'AlbumShelf Player'}])
        api.resume.return_value = 500

        assert self.session.resume() is False
        assert self.events[-1][0] == PLAYBACK_ERROR

    def test_refresh_state_emits_vendor_shape(self):
        _, api = self.connect_with_devices([{'id': 'dev1', 'name': 'AlbumShelf Player'}])
        api.get_playback_state.return_value = {
            'device': {'id': 'dev1'},
            'is_playing': True,
            'progress_ms': 1200,
            'item': {
                'id': 't1', 'uri': 'spotify:track:t1', 'name': 'Song', 'duration_ms': 5000,
                'artists': [{'name': 'A'}], 'album': {'name': 'Alb', 'images': []},
            },
        }

        self.session.refresh_state()

        event, payload = self.events[-1]
        assert event == STATE_CHANGED
        assert payload['paused'] is False
        assert payload['position'] == 1200
        assert payload['duration'] == 5000
        assert payload['track_window']['current_track']['id'] == 't1'

    def test_refresh_state_idle(self):
        _, api = self.connect_with_devices([{'id': 'dev1', 'name': 'AlbumShelf Player'}])
        api.get_playback_state.return_value = None
        self.session.refresh_state()
        assert self.events[-1] == (STATE_CHANGED, None)

    def test_refresh_state_ignores_other_device(self):
        _, api = self.connect_with_devices([{'id': 'mine', 'name': 'AlbumShelf Player'}])
        api.get_playback_state.return_value = {
            'device': {'id': 'phone'},
            'is_playing': True,
            'progress_ms': 30000,
            'item': {'id': 'foreign', 'uri': 'spotify:track:foreign', 'duration_ms': 90000},
        }
        controller = PlaybackController(self.session, sleep=lambda s: None)

        self.session.refresh_state()

        event, payload = self.events[-1]
        assert event == STATE_CHANGED
        assert payload['track_window']['current_track'] is None
        assert payload['paused'] is True
        assert controller.state.current_track is None
        assert controller.state.is_playing is False

    def test_disconnect_emits_not_ready(self):
        self.connect_with_devices([{'id': 'dev1', 'name': 'AlbumShelf Player'}])
        self.session.disconnect()
        assert self.events[-1] == (NOT_READY, 'dev1')
