import time
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from albumshelf.application.login import wait_for_session
from albumshelf.application.shelves import ShelfManager
from albumshelf.crosscutting.config import Settings, get_settings
from albumshelf.domain.entities import Album, Shelf, UserSession
from albumshelf.domain.errors import (
    AuthenticationRequired, InvalidAlbumUrl, NotFound, PersistenceFailure, TemporaryFailure,
    VendorApiError,
)
from albumshelf.domain.ports import AlbumCatalog, ShelfStore
from albumshelf.infrastructure.persistence.local_cache import LocalShelfCache

logger = logging.getLogger(__name__)


class AlbumShelfClient(AlbumCatalog, ShelfStore):
    """Client for the albumshelf web service JSON API.

    Holds the session cookie in its requests.Session. It can serve as the
    remote tier of a ShelfManager, as an album catalog, and as the
    credential source of a playback session (``get_access_token``).
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = base_url.rstrip('/')
        self._session = session or requests.Session()
        self._timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self._session.request(method, f"{self.base_url}{path}", timeout=self._timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Request {method} {path} failed: {e}")
            raise TemporaryFailure(f"Service unreachable: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return (response.json() or {}).get('error') or response.reason
        except ValueError:
            return response.reason or f"HTTP {response.status_code}"

    # Authentication

    def check_session(self) -> Optional[UserSession]:
        """Return the authenticated session, or None."""
        response = self._request('GET', '/api/auth/me')
        if response.status_code != 200:
            return None
        data = response.json()
        if not data.get('isAuthenticated') or not data.get('user'):
            return None
        user = data['user']
        return UserSession(
            user_id=user.get('id') or user.get('userId'),
            external_id=user.get('externalId'),
            email=user.get('email'),
            display_name=user.get('displayName'),
            image_url=user.get('imageUrl'),
        )

    def wait_for_login(self, attempts: int = 5, base_delay: float = 0.25,
                       sleep: Callable[[float], None] = time.sleep) -> Optional[UserSession]:
        """Confirm a login right after the OAuth redirect lands."""
        return wait_for_session(self.check_session, attempts=attempts,
                                base_delay=base_delay, sleep=sleep)

    def get_authorize_url(self) -> str:
        response = self._request('GET', '/api/spotify/auth')
        if response.status_code != 200:
            raise VendorApiError(response.status_code, self._error_message(response))
        return response.json()['authUrl']

    def logout(self) -> None:
        self._request('POST', '/api/auth/logout')
        self._session.cookies.clear()

    def get_access_token(self) -> Optional[str]:
        """Current bearer credential; the server refreshes it when needed."""
        response = self._request('GET', '/api/auth/token')
        if response.status_code == 401:
            data = response.json() if response.content else {}
            if data.get('needsReauth'):
                logger.warning("Stored credentials expired, login required")
            return None
        if response.status_code != 200:
            raise VendorApiError(response.status_code, self._error_message(response))
        return response.json().get('accessToken')

    # Catalog

    def fetch_album(self, url: str) -> Album:
        response = self._request('POST', '/api/spotify/album', json={'url': url})
        if response.status_code == 200:
            return Album.from_dict(response.json())
        message = self._error_message(response)
        if response.status_code == 400:
            raise InvalidAlbumUrl(message)
        if response.status_code == 404:
            raise NotFound(message)
        if response.status_code == 401:
            raise AuthenticationRequired(message)
        raise VendorApiError(response.status_code, message)

    # Shelves of the logged-in user; the identity argument names the same user

    def get_shelves(self, identity: str) -> List[Shelf]:
        try:
            response = self._request('GET', '/api/user/shelves')
        except TemporaryFailure as e:
            raise PersistenceFailure(str(e)) from e
        if response.status_code != 200:
            raise PersistenceFailure(f"Fetching shelves failed: {self._error_message(response)}")
        return [Shelf.from_dict(s) for s in response.json().get('shelves') or []]

    def put_shelves(self, identity: str, shelves: List[Shelf]) -> None:
        body: Dict[str, Any] = {'shelves': [shelf.to_dict() for shelf in shelves]}
        try:
            response = self._request('POST', '/api/user/shelves', json=body)
        except TemporaryFailure as e:
            raise PersistenceFailure(str(e)) from e
        if response.status_code != 200:
            raise PersistenceFailure(f"Saving shelves failed: {self._error_message(response)}")

    def get_public_shelves(self, external_id: str) -> Dict[str, Any]:
        response = self._request('GET', f'/api/user/{external_id}/shelves')
        if response.status_code == 404:
            raise NotFound(self._error_message(response))
        if response.status_code != 200:
            raise VendorApiError(response.status_code, self._error_message(response))
        data = response.json()
        return {
            'user': data.get('user'),
            'shelves': [Shelf.from_dict(s) for s in data.get('shelves') or []],
        }


def create_shelf_manager(client: AlbumShelfClient,
                         settings: Optional[Settings] = None,
                         identity: Optional[str] = None) -> ShelfManager:
    """Client-side shelf manager: local cache file plus the service as remote tier."""
    settings = settings or get_settings()
    cache = LocalShelfCache(settings.local_cache_file)
    return ShelfManager(cache, remote=client, identity=identity)
