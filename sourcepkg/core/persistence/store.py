"""
State store — key/value persistence for package records and build files.

Keys are slash-separated paths ("source-packages/emacs"). The file-backed
store maps each key to a file under its root directory; writes are atomic
(write to temp file, then rename) so a crash never leaves a half-written
record behind.

The store also hands out namespace directories ("build-packages") where
archives are downloaded and unpacked.
"""

from __future__ import annotations

import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = Path("~/.cache/sourcepkg")


class StoreError(Exception):
    """Raised when a key cannot be read or written."""


def _check_key(key: str) -> str:
    parts = [p for p in key.split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise StoreError(f"Invalid store key: {key!r}")
    return "/".join(parts)


class StateStore(ABC):
    """Abstract key/value store consumed by the stage controller."""

    @abstractmethod
    def has_key(self, key: str) -> bool:
        """Whether a value is stored under ``key``."""

    @abstractmethod
    def load(self, key: str) -> str:
        """Return the value stored under ``key``.

        Raises:
            StoreError: Nothing is stored under ``key``.
        """

    @abstractmethod
    def store(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def create_cache_path(self, namespace: str, create: bool = True) -> Path:
        """Directory for ``namespace``, created unless ``create`` is False."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class FileCache(StateStore):
    """File-backed store rooted at a cache directory."""

    def __init__(self, root: Path | str = DEFAULT_CACHE_PATH):
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        return self._root / _check_key(key)

    def has_key(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def load(self, key: str) -> str:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StoreError(f"No value stored for {key!r}") from e
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}") from e

    def store(self, key: str, value: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file in same directory, then rename
        _fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".store_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(value)
            tmp.replace(path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Cannot write {path}: {e}") from e
        logger.debug("Stored %s (%d bytes)", key, len(value))

    def create_cache_path(self, namespace: str, create: bool = True) -> Path:
        path = self._path_for(namespace)
        if create:
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Cannot create {path}: {e}") from e
        return path

    def __repr__(self) -> str:
        return f"<FileCache root={str(self._root)!r}>"


class MemoryCache(StateStore):
    """In-memory store for tests and mock runs.

    Values live in a dict; namespace directories are still real
    directories under ``root`` because archives are real files.
    """

    def __init__(self, root: Path | str):
        self._root = Path(root)
        self._data: dict[str, str] = {}

    @property
    def data(self) -> dict[str, str]:
        """The raw stored values, keyed by normalised key."""
        return self._data

    def has_key(self, key: str) -> bool:
        return _check_key(key) in self._data

    def load(self, key: str) -> str:
        try:
            return self._data[_check_key(key)]
        except KeyError as e:
            raise StoreError(f"No value stored for {key!r}") from e

    def store(self, key: str, value: str) -> None:
        self._data[_check_key(key)] = value

    def create_cache_path(self, namespace: str, create: bool = True) -> Path:
        path = self._root / _check_key(namespace)
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path
