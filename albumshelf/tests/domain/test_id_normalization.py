import pytest

from albumshelf.domain.normalization import (
    convert_to_spotify_uri, external_url_for, extract_album_id, ids_match, normalize_id,
    to_track_uri, to_uri,
)


class TestNormalizeId:
    """Tests for id normalization."""

    def test_strips_uri_prefix(self):
        assert normalize_id('spotify:track:4uLU6hMCjMI75M1A2tKUQC') == '4uLU6hMCjMI75M1A2tKUQC'

    def test_bare_id_unchanged(self):
        assert normalize_id('4uLU6hMCjMI75M1A2tKUQC') == '4uLU6hMCjMI75M1A2tKUQC'

    def test_idempotent(self):
        once = normalize_id('spotify:album:abc123')
        assert normalize_id(once) == once

    @pytest.mark.parametrize('value', [None, ''])
    def test_empty_values(self, value):
        assert normalize_id(value) == ''

    def test_ids_match_across_forms(self):
        assert ids_match('spotify:track:t1', 't1')
        assert ids_match('t1', 'spotify:track:t1')
        assert not ids_match('t1', 't2')

    def test_empty_ids_never_match(self):
        assert not ids_match('', '')
        assert not ids_match(None, None)

    def test_track_uri_from_either_form(self):
        assert to_track_uri('t1') == 'spotify:track:t1'
        assert to_track_uri('spotify:track:t1') == 'spotify:track:t1'
        assert to_uri('album', 'spotify:album:a1') == 'spotify:album:a1'


class TestAlbumUrls:
    """Tests for album URL parsing."""

    def test_web_url(self):
        assert extract_album_id('https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy') == '4aawyAB9vmqN3uQ7FjRGTy'

    def test_web_url_with_query(self):
        url = 'https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy?si=abc'
        assert extract_album_id(url) == '4aawyAB9vmqN3uQ7FjRGTy'

    def test_uri(self):
        assert extract_album_id('spotify:album:4aawyAB9vmqN3uQ7FjRGTy') == '4aawyAB9vmqN3uQ7FjRGTy'

    @pytest.mark.parametrize('url', [
        'https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC',
        'not a url',
        '',
        None,
    ])
    def test_unrecognized(self, url):
        assert extract_album_id(url) is None

    def test_convert_to_spotify_uri(self):
        assert convert_to_spotify_uri('https://open.spotify.com/track/abc') == 'spotify:track:abc'
        assert convert_to_spotify_uri('https://open.spotify.com/playlist/p1?si=x') == 'spotify:playlist:p1'
        assert convert_to_spotify_uri('https://example.com/album/abc') is None

    def test_external_url(self):
        assert external_url_for('album', 'spotify:album:a1') == 'https://open.spotify.com/album/a1'
