from unittest.mock import Mock

import pytest
import requests

from albumshelf.domain.errors import AuthenticationRequired, TemporaryFailure, VendorApiError
from albumshelf.infrastructure.providers.spotify_player import SpotifyPlayerApi


def response(status, payload=None):
    resp = Mock()
    resp.status_code = status
    resp.content = b'{}' if payload is not None else b''
    resp.json.return_value = payload
    resp.text = ''
    return resp


class TestSpotifyPlayerApi:
    """Tests for the player REST wrapper."""

    def setup_method(self):
        self.http = Mock(spec=requests.Session)
        self.api = SpotifyPlayerApi(self.http, lambda: 'token-123', base_url='https://api.test/v1')

    def last_call(self):
        args, kwargs = self.http.request.call_args
        return args, kwargs

    def test_play_body_with_offset(self):
        self.http.request.return_value = response(204)

        status = self.api.play('dev1', ['spotify:track:t1', 'spotify:track:t2'], offset_position=0, position_ms=0)

        assert status == 204
        args, kwargs = self.last_call()
        assert args == ('PUT', 'https://api.test/v1/me/player/play')
        assert kwargs['params'] == {'device_id': 'dev1'}
        assert kwargs['json'] == {'uris': ['spotify:track:t1', 'spotify:track:t2'],
                                  'offset': {'position': 0}, 'position_ms': 0}
        assert kwargs['headers']['Authorization'] == 'Bearer token-123'

    def test_play_without_offset(self):
        self.http.request.return_value = response(204)
        self.api.play('dev1', ['spotify:track:t1'])
        _, kwargs = self.last_call()
        assert kwargs['json'] == {'uris': ['spotify:track:t1']}

    def test_transfer(self):
        self.http.request.return_value = response(204)
        assert self.api.transfer('dev1') == 204
        args, kwargs = self.last_call()
        assert args == ('PUT', 'https://api.test/v1/me/player')
        assert kwargs['json'] == {'device_ids': ['dev1'], 'play': False}

    def test_pause_everywhere_has_no_device_param(self):
        self.http.request.return_value = response(204)
        self.api.pause()
        _, kwargs = self.last_call()
        assert kwargs['params'] is None

    def test_status_returned_for_failures(self):
        self.http.request.return_value = response(404)
        assert self.api.resume('dev1') == 404

    def test_active_device(self):
        self.http.request.return_value = response(200, {'devices': [
            {'id': 'phone', 'is_active': False},
            {'id': 'dev1', 'is_active': True},
        ]})
        assert self.api.get_active_device_id() == 'dev1'

    def test_playback_state_none_when_idle(self):
        self.http.request.return_value = response(204)
        assert self.api.get_playback_state() is None

    def test_playback_state_error(self):
        self.http.request.return_value = response(401, {'error': {'status': 401}})
        with pytest.raises(VendorApiError) as exc_info:
            self.api.get_playback_state()
        assert exc_info.value.status == 401

    def test_network_error_is_temporary(self):
        self.http.request.side_effect = requests.exceptions.ConnectionError('down')
        with pytest.raises(TemporaryFailure):
            self.api.transfer('dev1')

    def test_missing_credential(self):
        api = SpotifyPlayerApi(self.http, lambda: None)
        with pytest.raises(AuthenticationRequired):
            api.pause()
        self.http.request.assert_not_called()
