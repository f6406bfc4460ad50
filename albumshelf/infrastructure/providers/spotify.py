import logging
from typing import Any, Dict, List, Optional

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOauthError

from albumshelf.domain.entities import Album
from albumshelf.domain.errors import InvalidAlbumUrl, NotFound, TemporaryFailure, VendorApiError
from albumshelf.domain.normalization import extract_album_id
from albumshelf.domain.ports import AlbumCatalog
from albumshelf.infrastructure.providers.schemas import album_from_payload

logger = logging.getLogger(__name__)


class SpotifyCatalog(AlbumCatalog):
    """Album metadata lookup over the Spotify Web API.

    Uses the client-credentials grant, so no user login is required to
    resolve an album link.
    """

    def __init__(self,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 client: Optional[spotipy.Spotify] = None,
                 requests_timeout: int = 15):
        """Initialize the catalog.

        Args:
            client_id: Spotify application client id
            client_secret: Spotify application client secret
            client: Preconfigured spotipy client (tests inject a mock here)
            requests_timeout: HTTP timeout in seconds
        """
        if client is not None:
            self._client = client
        else:
            auth_manager = SpotifyClientCredentials(client_id=client_id, client_secret=client_secret)
            self._client = spotipy.Spotify(auth_manager=auth_manager, requests_timeout=requests_timeout)

    def fetch_album(self, url: str) -> Album:
        """Resolve an album URL or ``spotify:album:`` URI.

        Raises:
            InvalidAlbumUrl: the URL carries no album id
            NotFound: Spotify does not know the album
            VendorApiError: any other non-success response
        """
        album_id = extract_album_id(url)
        if not album_id:
            raise InvalidAlbumUrl(
                "Invalid Spotify album URL. Please make sure the URL contains an album ID."
            )

        logger.info(f"Fetching album {album_id}")
        raw = self._call(lambda: self._client.album(album_id), album_id)
        extra = self._remaining_tracks(raw.get('tracks') or {}, album_id)
        album = album_from_payload(raw, extra)
        logger.info(f"Fetched album '{album.name}' with {len(album.tracks)} tracks")
        return album

    def _remaining_tracks(self, page: Dict[str, Any], album_id: str) -> List[Dict[str, Any]]:
        """Follow the paging links of an album's track listing."""
        items: List[Dict[str, Any]] = []
        while page.get('next'):
            current = page
            page = self._call(lambda: self._client.next(current), album_id) or {}
            items.extend(page.get('items') or [])
        return items

    def _call(self, request, album_id: str) -> Dict[str, Any]:
        try:
            return request()
        except spotipy.SpotifyException as e:
            status = getattr(e, 'http_status', None)
            logger.error(f"Spotify album API error for {album_id}: status={status} {e.msg}")
            if status == 404 or (status == 400 and 'invalid' in str(e.msg).lower()):
                raise NotFound("Album not found") from e
            if status == 401:
                raise VendorApiError(401, "Spotify API authentication failed") from e
            if status == 429 or (status is not None and status >= 500):
                raise TemporaryFailure(f"Spotify API unavailable: {status}") from e
            raise VendorApiError(status, f"Spotify API error: {e.msg}") from e
        except SpotifyOauthError as e:
            logger.error(f"Spotify client credentials rejected: {e}")
            raise VendorApiError(401, "Invalid Spotify API credentials") from e
