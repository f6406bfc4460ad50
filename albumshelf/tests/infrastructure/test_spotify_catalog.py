from unittest.mock import Mock

import pytest
import spotipy

from albumshelf.domain.errors import InvalidAlbumUrl, NotFound, TemporaryFailure, VendorApiError
from albumshelf.infrastructure.providers.spotify import SpotifyCatalog


def spotify_error(status, msg='error'):
    return spotipy.SpotifyException(status, -1, msg)


class TestSpotifyCatalog:
    """Tests for album lookup."""

    def setup_method(self):
        self.client = Mock()
        self.catalog = SpotifyCatalog(client=self.client)
        self.album = {
            'id': '4aawyAB9vmqN3uQ7FjRGTy',
            'name': 'Global Warming',
            'artists': [{'name': 'Pitbull'}],
            'tracks': {'items': [{'id': 't1', 'name': 'One'}], 'next': None},
        }

    def test_fetch_album_by_url(self):
        self.client.album.return_value = self.album

        album = self.catalog.fetch_album('https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy?si=1')

        self.client.album.assert_called_once_with('4aawyAB9vmqN3uQ7FjRGTy')
        assert album.name == 'Global Warming'
        assert [t.id for t in album.tracks] == ['t1']

    def test_fetch_album_by_uri(self):
        self.client.album.return_value = self.album
        self.catalog.fetch_album('spotify:album:4aawyAB9vmqN3uQ7FjRGTy')
        self.client.album.assert_called_once_with('4aawyAB9vmqN3uQ7FjRGTy')

    def test_follows_track_pages(self):
        self.album['tracks']['next'] = 'https://api.spotify.com/v1/albums/x/tracks?offset=50'
        self.client.album.return_value = self.album
        self.client.next.return_value = {'items': [{'id': 't2'}], 'next': None}

        album = self.catalog.fetch_album('spotify:album:4aawyAB9vmqN3uQ7FjRGTy')

        assert [t.id for t in album.tracks] == ['t1', 't2']

    def test_invalid_url(self):
        with pytest.raises(InvalidAlbumUrl):
            self.catalog.fetch_album('https://open.spotify.com/track/abc')
        self.client.album.assert_not_called()

    def test_not_found(self):
        self.client.album.side_effect = spotify_error(404, 'non existing id')
        with pytest.raises(NotFound):
            self.catalog.fetch_album('spotify:album:missing')

    def test_auth_failure(self):
        self.client.album.side_effect = spotify_error(401, 'The access token expired')
        with pytest.raises(VendorApiError) as exc_info:
            self.catalog.fetch_album('spotify:album:abc')
        assert exc_info.value.status == 401

    def test_server_error_is_temporary(self):
        self.client.album.side_effect = spotify_error(503, 'unavailable')
        with pytest.raises(TemporaryFailure):
            self.catalog.fetch_album('spotify:album:abc')
