import logging
from pathlib import Path
from typing import List, Optional, Union

from albumshelf.domain.entities import Shelf
from albumshelf.domain.errors import PersistenceFailure
from albumshelf.domain.ports import ShelfCache
from albumshelf.infrastructure.persistence.json_file import JsonDocument

logger = logging.getLogger(__name__)


class LocalShelfCache(ShelfCache):
    """Device-local shelf cache: a JSON object keyed by storage key."""

    def __init__(self, path: Union[str, Path]):
        self._document = JsonDocument(path, default=dict)

    def load(self, key: str) -> Optional[List[Shelf]]:
        data = self._document.read()
        records = data.get(key) if isinstance(data, dict) else None
        if records is None:
            return None
        try:
            return [Shelf.from_dict(record) for record in records]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Cached shelves under '{key}' are malformed: {e}")
            raise PersistenceFailure("Cached shelves are malformed") from e

    def save(self, key: str, shelves: List[Shelf]) -> None:
        with self._document.lock:
            try:
                current = self._document.read()
            except PersistenceFailure:
                current = {}
            data = dict(current) if isinstance(current, dict) else {}
            data[key] = [shelf.to_dict() for shelf in shelves]
            self._document.write(data)
