# ==============================================================================
# KEY-VALUE STORAGE - Persistence medium under the record store
# ==============================================================================
# A small string-to-string store modelled on browser local storage. Values
# are JSON text. Subscribers are called with the key after each write and
# for changes made by another process (JsonFileStorage.reload).
# ==============================================================================

import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from stockwise.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

StorageListener = Callable[[str], None]

_VALID_KEY = re.compile(r'^[A-Za-z0-9_.-]+$')


class BaseStorage(ABC):
    """
    Abstract key-value storage.

    All operations may raise StorageUnavailable. Writes are serialized with
    a re-entrant lock shared by the instance.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._listeners: List[StorageListener] = []

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value and notify subscribers."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key (no-op if absent) and notify subscribers."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys."""

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """
        Register a change listener.

        Args:
            listener: Called with the changed key

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key)
            except Exception:
                logger.exception("Storage listener failed for key %s", key)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()


class MemoryStorage(BaseStorage):
    """
    In-process storage.

    Several managers sharing one instance behave like several tabs of one
    browser profile.

    Args:
        quota_bytes: Maximum total size of keys and values; exceeding it
            raises StorageUnavailable like a full local storage
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__()
        self.quota_bytes = quota_bytes
        self.available = True
        self._data: Dict[str, str] = {}

    def _check_available(self) -> None:
        if not self.available:
            raise StorageUnavailable('Storage is not accessible')

    def get(self, key: str) -> Optional[str]:
        self._check_available()
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_available()
        with self._lock:
            if self.quota_bytes is not None:
                used = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
                if used + len(key) + len(value) > self.quota_bytes:
                    raise StorageUnavailable(f"Storage quota exceeded writing {key}")
            self._data[key] = value
        self._notify(key)

    def remove(self, key: str) -> None:
        self._check_available()
        with self._lock:
            existed = self._data.pop(key, None) is not None
        if existed:
            self._notify(key)

    def keys(self) -> List[str]:
        self._check_available()
        with self._lock:
            return list(self._data)


class JsonFileStorage(BaseStorage):
    """
    One `<key>.json` file per key inside a directory.

    Writes go to a temporary file first and replace the target with
    os.replace. OS errors surface as StorageUnavailable.
    """

    SUFFIX = '.json'

    def __init__(self, directory: str):
        super().__init__()
        self.directory = directory
        self._seen: Dict[str, int] = {}
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot create data directory {directory}: {exc}") from exc
        self._seen = self._scan()

    def _path(self, key: str) -> str:
        if not _VALID_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return os.path.join(self.directory, key + self.SUFFIX)

    def _mtime(self, path: str) -> Optional[int]:
        try:
            return os.stat(path).st_mtime_ns
        except FileNotFoundError:
            return None

    def _scan(self) -> Dict[str, int]:
        found = {}
        try:
            names = os.listdir(self.directory)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot list {self.directory}: {exc}") from exc
        for name in names:
            if not name.endswith(self.SUFFIX):
                continue
            key = name[:-len(self.SUFFIX)]
            if not _VALID_KEY.match(key):
                continue
            mtime = self._mtime(os.path.join(self.directory, name))
            if mtime is not None:
                found[key] = mtime
        return found

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        with self._lock:
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return f.read()
            except FileNotFoundError:
                return None
            except UnicodeDecodeError as exc:
                raise StorageUnavailable(f"{path} is not valid UTF-8: {exc}") from exc
            except OSError as exc:
                raise StorageUnavailable(f"Cannot read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        temp_path = path + '.tmp'
        with self._lock:
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    f.write(value)
                os.replace(temp_path, path)
            except OSError as exc:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise StorageUnavailable(f"Cannot write {path}: {exc}") from exc
            self._seen[key] = self._mtime(path)
        self._notify(key)

    def remove(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            try:
                os.remove(path)
            except FileNotFoundError:
                return
            except OSError as exc:
                raise StorageUnavailable(f"Cannot remove {path}: {exc}") from exc
            self._seen.pop(key, None)
        self._notify(key)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._scan())

    def reload(self) -> List[str]:
        """
        Detect files changed by another process since the last look.

        Returns:
            Keys that changed; subscribers are notified for each
        """
        with self._lock:
            current = self._scan()
            changed = [k for k, mtime in current.items() if self._seen.get(k) != mtime]
            changed += [k for k in self._seen if k not in current]
            self._seen = current
        for key in changed:
            self._notify(key)
        return changed
