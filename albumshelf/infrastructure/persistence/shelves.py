import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

from albumshelf.domain.entities import Shelf, now_ms
from albumshelf.domain.errors import PersistenceFailure
from albumshelf.domain.ports import ShelfStore
from albumshelf.infrastructure.persistence.json_file import JsonDocument

logger = logging.getLogger(__name__)

SHELVES_TABLE = 'user_shelves'


def _parse_shelves(records: Any, source: str) -> List[Shelf]:
    try:
        return [Shelf.from_dict(record) for record in records or []]
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Malformed shelves from {source}: {e}")
        raise PersistenceFailure(f"Malformed shelves from {source}") from e


class JsonFileShelfStore(ShelfStore):
    """Shelves of every user in one JSON file, keyed by external identity.

    Records have the shape ``{userId, shelves, updatedAt}``.
    """

    def __init__(self, path: Union[str, Path]):
        self._document = JsonDocument(path, default=list)

    def _records(self) -> List[Dict[str, Any]]:
        data = self._document.read()
        return data if isinstance(data, list) else []

    def get_shelves(self, identity: str) -> List[Shelf]:
        for record in self._records():
            if record.get('userId') == identity:
                return _parse_shelves(record.get('shelves'), 'shelves file')
        return []

    def has_identity(self, identity: str) -> bool:
        return any(record.get('userId') == identity for record in self._records())

    def put_shelves(self, identity: str, shelves: List[Shelf]) -> None:
        record = {
            'userId': identity,
            'shelves': [shelf.to_dict() for shelf in shelves],
            'updatedAt': now_ms(),
        }
        with self._document.lock:
            records = [r for r in self._records() if r.get('userId') != identity]
            records.append(record)
            self._document.write(records)
        logger.debug(f"Saved {len(shelves)} shelves for {identity} to file")


class RestShelfStore(ShelfStore):
    """Shelves in a PostgREST table (``spotify_id``, ``shelves``, ``updated_at``)."""

    def __init__(self, endpoint: str, api_key: str,
                 session: Optional[requests.Session] = None,
                 table: str = SHELVES_TABLE,
                 timeout: float = 10):
        self._url = f"{endpoint.rstrip('/')}/rest/v1/{table}"
        self._api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            'apikey': self._api_key,
            'Authorization': f'Bearer {self._api_key}',
            'Content-Type': 'application/json',
        }
        headers.update(extra)
        return headers

    def get_shelves(self, identity: str) -> List[Shelf]:
        try:
            response = self._session.get(
                self._url,
                params={'spotify_id': f'eq.{identity}', 'select': 'shelves'},
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Remote shelf read failed: {e}")
            raise PersistenceFailure("Remote shelf store unreachable") from e

        if response.status_code != 200:
            logger.error(f"Remote shelf read failed: {response.status_code} {response.text[:200]}")
            raise PersistenceFailure(f"Remote shelf read failed with status {response.status_code}")

        rows = response.json() or []
        if not rows:
            return []
        return _parse_shelves(rows[0].get('shelves'), 'remote store')

    def put_shelves(self, identity: str, shelves: List[Shelf]) -> None:
        body = {
            'spotify_id': identity,
            'shelves': [shelf.to_dict() for shelf in shelves],
            'updated_at': datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = self._session.post(
                self._url,
                params={'on_conflict': 'spotify_id'},
                json=body,
                headers=self._headers(Prefer='resolution=merge-duplicates'),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Remote shelf write failed: {e}")
            raise PersistenceFailure("Remote shelf store unreachable") from e

        if response.status_code >= 300:
            logger.error(f"Remote shelf write failed: {response.status_code} {response.text[:200]}")
            raise PersistenceFailure(f"Remote shelf write failed with status {response.status_code}")
        logger.debug(f"Saved {len(shelves)} shelves for {identity} to remote store")


class FallbackShelfStore(ShelfStore):
    """Use the primary store and degrade to the secondary when it fails."""

    def __init__(self, primary: ShelfStore, secondary: ShelfStore):
        self.primary = primary
        self.secondary = secondary

    def get_shelves(self, identity: str) -> List[Shelf]:
        try:
            return self.primary.get_shelves(identity)
        except PersistenceFailure as e:
            logger.warning(f"Primary shelf store failed, reading fallback: {e}")
            return self.secondary.get_shelves(identity)

    def put_shelves(self, identity: str, shelves: List[Shelf]) -> None:
        try:
            self.primary.put_shelves(identity, shelves)
        except PersistenceFailure as e:
            logger.warning(f"Primary shelf store failed, writing fallback: {e}")
            self.secondary.put_shelves(identity, shelves)


def create_shelf_store(endpoint: Optional[str], api_key: Optional[str],
                       fallback: ShelfStore) -> ShelfStore:
    """Build the shelf store for one request.

    A fresh REST client is created per call so no connection state is
    shared between requests; without an endpoint the fallback is used.
    """
    if endpoint and api_key:
        return FallbackShelfStore(RestShelfStore(endpoint, api_key), fallback)
    return fallback
