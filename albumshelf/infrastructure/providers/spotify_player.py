import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from albumshelf.domain.errors import AuthenticationRequired, TemporaryFailure, VendorApiError
from albumshelf.domain.ports import PlayerApi

logger = logging.getLogger(__name__)

API_BASE_URL = 'https://api.spotify.com/v1'
DEFAULT_TIMEOUT = 10


class SpotifyPlayerApi(PlayerApi):
    """Spotify Connect player endpoints over a shared requests.Session.

    Mutating calls return the response status so callers can tell an
    inactive device (403/404) from other failures. Network errors raise
    ``TemporaryFailure``.
    """

    def __init__(self, session: requests.Session,
                 get_credential: Callable[[], Optional[str]],
                 base_url: str = API_BASE_URL,
                 timeout: float = DEFAULT_TIMEOUT):
        self._session = session
        self._get_credential = get_credential
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout

    def _request(self, method: str, path: str,
                 params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None) -> requests.Response:
        token = self._get_credential()
        if not token:
            raise AuthenticationRequired("No access token available")

        try:
            response = self._session.request(
                method,
                f"{self._base_url}{path}",
                headers={'Authorization': f'Bearer {token}'},
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                json=json,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Spotify player request {method} {path} failed: {e.__class__.__name__}")
            raise TemporaryFailure(f"Spotify request failed: {e}") from e

        if response.status_code >= 400:
            logger.debug(f"Spotify player {method} {path} -> {response.status_code}: {response.text[:200]}")
        return response

    def _get_json(self, path: str) -> Optional[Dict[str, Any]]:
        response = self._request('GET', path)
        if response.status_code == 204 or not response.content:
            return None
        if response.status_code != 200:
            raise VendorApiError(response.status_code, f"GET {path} failed")
        return response.json()

    def get_active_device_id(self) -> Optional[str]:
        for device in self.list_devices():
            if device.get('is_active'):
                return device.get('id')
        return None

    def list_devices(self) -> List[Dict[str, Any]]:
        data = self._get_json('/me/player/devices') or {}
        return data.get('devices') or []

    def get_playback_state(self) -> Optional[Dict[str, Any]]:
        return self._get_json('/me/player')

    def pause(self, device_id: Optional[str] = None) -> int:
        return self._request('PUT', '/me/player/pause', params={'device_id': device_id}).status_code

    def resume(self, device_id: str) -> int:
        return self._request('PUT', '/me/player/play', params={'device_id': device_id}).status_code

    def seek(self, position_ms: int, device_id: str) -> int:
        params = {'position_ms': int(position_ms), 'device_id': device_id}
        return self._request('PUT', '/me/player/seek', params=params).status_code

    def transfer(self, device_id: str, play: bool = False) -> int:
        body = {'device_ids': [device_id], 'play': play}
        return self._request('PUT', '/me/player', json=body).status_code

    def play(self, device_id: str, uris: Sequence[str],
             offset_position: Optional[int] = None,
             position_ms: Optional[int] = None) -> int:
        body: Dict[str, Any] = {'uris': list(uris)}
        if offset_position is not None:
            body['offset'] = {'position': offset_position}
        if position_ms is not None:
            body['position_ms'] = position_ms
        return self._request('PUT', '/me/player/play', params={'device_id': device_id}, json=body).status_code
