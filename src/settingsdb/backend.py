"""Persistent key-value backends.

The database only talks to the :class:`KeyValueBackend` protocol, so any
settings store with ``get`` / ``set`` / ``remove`` / prefix enumeration can
be plugged in. Two implementations ship here: an in-process dict and a
single JSON file rewritten atomically on every mutation.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from settingsdb.exceptions import BackendError
from settingsdb.observe import ChangeKind, KeyChange, KeyObserver

_logger = logging.getLogger(__name__)

_MISSING = object()


class KeyValueBackend(Protocol):
    """Structural interface for the settings store the database persists into.

    Values are JSON-shaped structures (dicts, lists, strings, numbers,
    booleans, ``None``). No multi-key transactions are assumed.
    """

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> list[str]:
        ...


class ObservableBackend:
    """Shared backend behaviour: copy semantics and key observation.

    Subclasses implement the raw ``_read`` / ``_write`` / ``_delete`` /
    ``_all_keys`` primitives.
    """

    def __init__(self) -> None:
        self._observers: dict[str, list[KeyObserver]] = {}

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Any:
        raise NotImplementedError

    def _write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def _delete(self, key: str) -> None:
        raise NotImplementedError

    def _all_keys(self) -> list[str]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # KeyValueBackend
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        value = self._read(key)
        if value is _MISSING:
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        observed = key in self._observers
        old = self._read(key) if observed else _MISSING
        self._write(key, copy.deepcopy(value))
        if observed:
            self._notify(key, ChangeKind.SET, old, value)

    def remove(self, key: str) -> None:
        old = self._read(key)
        if old is _MISSING:
            return
        self._delete(key)
        self._notify(key, ChangeKind.REMOVE, old, _MISSING)

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._all_keys() if key.startswith(prefix)]

    def __contains__(self, key: str) -> bool:
        return self._read(key) is not _MISSING

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(
        self,
        key: str,
        callback: Callable[[KeyChange], None],
        *,
        value_type: type | None = None,
        include_initial: bool = False,
    ) -> KeyObserver:
        """Call *callback* with a :class:`KeyChange` after every write of *key*.

        The returned observer stays active until ``invalidate()`` is
        called on it.
        """
        observer = KeyObserver(key, callback, value_type=value_type, detach=self._detach)
        self._observers.setdefault(key, []).append(observer)
        _logger.debug("Observing key %s", key)
        if include_initial:
            current = self._read(key)
            observer.deliver(ChangeKind.INITIAL, None, None if current is _MISSING else copy.deepcopy(current))
        return observer

    def observe_new(
        self,
        key: str,
        callback: Callable[[Any], None],
        *,
        value_type: type | None = None,
    ) -> KeyObserver:
        """Call *callback* with the new value of *key* whenever one is written."""

        def _on_change(change: KeyChange) -> None:
            if change.new is not None:
                callback(change.new)

        return self.observe(key, _on_change, value_type=value_type)

    def _detach(self, observer: KeyObserver) -> None:
        observers = self._observers.get(observer.key)
        if not observers:
            return
        try:
            observers.remove(observer)
        except ValueError:
            return
        if not observers:
            del self._observers[observer.key]
        _logger.debug("Stopped observing key %s", observer.key)

    def _notify(self, key: str, kind: ChangeKind, old: Any, new: Any) -> None:
        observers = self._observers.get(key)
        if not observers:
            return
        old_value = None if old is _MISSING else old
        new_value = None if new is _MISSING else new
        # Snapshot: observers may invalidate themselves while being called.
        for observer in list(observers):
            observer.deliver(kind, copy.deepcopy(old_value), copy.deepcopy(new_value))


class MemoryBackend(ObservableBackend):
    """In-process backend. Contents live as long as the instance."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._values: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def _read(self, key: str) -> Any:
        return self._values.get(key, _MISSING)

    def _write(self, key: str, value: Any) -> None:
        self._values[key] = value

    def _delete(self, key: str) -> None:
        self._values.pop(key, None)

    def _all_keys(self) -> list[str]:
        return list(self._values)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of every stored key and value."""
        return copy.deepcopy(self._values)


class JsonFileBackend(ObservableBackend):
    """Backend persisted as one JSON object in a file.

    The file is read on first access and rewritten atomically after every
    mutation. A missing file is an empty store.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        super().__init__()
        self._path = Path(path)
        self._values: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if self._values is not None:
            return self._values
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._values = {}
            return self._values
        except OSError as exc:
            raise BackendError(f"Cannot read {self._path}: {exc}", path=self._path) from exc

        try:
            loaded = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise BackendError(f"{self._path} is not valid JSON: {exc}", path=self._path) from exc
        if not isinstance(loaded, dict):
            raise BackendError(f"{self._path} does not contain a JSON object", path=self._path)
        _logger.debug("Loaded %d keys from %s", len(loaded), self._path)
        self._values = loaded
        return self._values

    def _save(self, values: dict[str, Any], key: str) -> None:
        try:
            payload = json.dumps(values, ensure_ascii=False, sort_keys=True, indent=2)
        except (TypeError, ValueError) as exc:
            raise BackendError(f"Value for {key} is not JSON-serializable: {exc}", key=key, path=self._path) from exc

        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise BackendError(f"Cannot write {self._path}: {exc}", key=key, path=self._path) from exc

    def _read(self, key: str) -> Any:
        return self._load().get(key, _MISSING)

    def _write(self, key: str, value: Any) -> None:
        values = dict(self._load())
        values[key] = value
        self._save(values, key)
        self._values = values

    def _delete(self, key: str) -> None:
        values = dict(self._load())
        values.pop(key, None)
        self._save(values, key)
        self._values = values

    def _all_keys(self) -> list[str]:
        return list(self._load())

    def reload(self) -> None:
        """Drop the cached contents; the next access re-reads the file."""
        self._values = None
