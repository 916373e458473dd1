"""
Flat-file JSON storage shared by the wallet registry and the transfer journal.
"""
import os
import json
import stat
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Any, Callable, Iterator, Optional

import portalocker

logger = logging.getLogger(__name__)


class JsonStore:
    """
    Thread-safe and process-safe JSON document store.

    The whole document is read and rewritten on every mutation. Mutations
    go through :meth:`update`, which holds an in-process lock and a
    ``portalocker`` file lock across the load-mutate-save cycle.
    """

    def __init__(self, store_path: str, root_key: str, lock_timeout: int = 10):
        """
        Initialize the store.

        Args:
            store_path: Path of the JSON file
            root_key: Top-level key holding the stored entries
            lock_timeout: Seconds to wait for the file lock
        """
        self.store_path = Path(store_path).expanduser()
        self.root_key = root_key
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._ensure_file()

    def _empty(self) -> Dict[str, Any]:
        return {self.root_key: {}}

    def _ensure_file(self) -> None:
        directory = self.store_path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)

        if not self.store_path.exists():
            with open(self.store_path, "w") as f:
                json.dump(self._empty(), f)

        # Restrict the store to the current user (Unix/Linux/Mac only)
        if os.name == "posix":
            os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def _get_lock_path(self) -> str:
        return str(self.store_path) + ".lock"

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            with portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
                yield

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.store_path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return self._empty()
        except json.JSONDecodeError:
            if self.store_path.stat().st_size == 0:
                return self._empty()
            raise
        data.setdefault(self.root_key, {})
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        tmp_path = self.store_path.with_suffix(self.store_path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.store_path)
        if os.name == "posix":
            os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)

    def read(self) -> Dict[str, Any]:
        """
        Read the stored entries under the file lock.

        Returns:
            Mapping of entry key to entry data
        """
        with self._locked():
            return self._load()[self.root_key]

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self.read().get(key)

    def update(self, mutate: Callable[[Dict[str, Any]], Any]) -> Any:
        """
        Apply ``mutate`` to the entries and persist the result atomically.

        Args:
            mutate: Callable receiving the mutable entries mapping

        Returns:
            Whatever ``mutate`` returns
        """
        with self._locked():
            data = self._load()
            result = mutate(data[self.root_key])
            self._save(data)
            return result

    def put(self, key: str, value: Dict[str, Any]) -> None:
        def _put(entries: Dict[str, Any]) -> None:
            entries[key] = value
        self.update(_put)
