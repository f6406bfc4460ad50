import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Optional, Union

from albumshelf.domain.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class JsonDocument:
    """One JSON file with a process-scoped in-memory mirror.

    The mirror is populated on first read and overwritten on every write,
    so readers in this process never re-parse the file. It is discarded
    when the process restarts.
    """

    def __init__(self, path: Union[str, Path], default: Callable[[], Any]):
        self.path = Path(path)
        self._default = default
        self._mirror: Optional[Any] = None
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def read(self) -> Any:
        with self._lock:
            if self._mirror is None:
                self._mirror = self._load()
            return self._mirror

    def _load(self) -> Any:
        if not self.path.exists():
            return self._default()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {self.path.name}: {e}")
            raise PersistenceFailure(f"Cannot read {self.path.name}") from e

    def write(self, data: Any) -> None:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
            except OSError as e:
                logger.error(f"Error writing {self.path.name}: {e}")
                raise PersistenceFailure(f"Cannot write {self.path.name}") from e
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.path)
            except OSError as e:
                self._discard(tmp_path)
                logger.error(f"Error writing {self.path.name}: {e}")
                raise PersistenceFailure(f"Cannot write {self.path.name}") from e
            except Exception:
                self._discard(tmp_path)
                raise
            self._mirror = data

    def _discard(self, tmp_path: str) -> None:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {tmp_path}: {e}")
