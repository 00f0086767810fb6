"""Key observation on top of a key-value backend.

Observers are explicit objects owned by the caller: each one holds the
cancellation callback that detaches it from its backend, so there is no
global observer registry to clean up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

_logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    INITIAL = "initial"
    SET = "set"
    REMOVE = "remove"


@dataclass(frozen=True)
class KeyChange:
    """A single change of an observed key.

    ``old`` / ``new`` are ``None`` when the key was absent, or when the
    value is not an instance of the observer's ``value_type``.
    """

    key: str
    kind: ChangeKind
    old: Any = None
    new: Any = None


def _typed(value: Any, value_type: type | None) -> Any:
    if value is None or value_type is None:
        return value
    return value if isinstance(value, value_type) else None


class KeyObserver:
    """Live observation of one backend key."""

    def __init__(
        self,
        key: str,
        callback: Callable[[KeyChange], None],
        *,
        value_type: type | None = None,
        detach: Callable[[KeyObserver], None],
    ) -> None:
        self._key = key
        self._callback = callback
        self._value_type = value_type
        self._detach: Callable[[KeyObserver], None] | None = detach
        self.is_suspended = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def is_active(self) -> bool:
        return self._detach is not None

    def invalidate(self) -> None:
        """Stop observing. Safe to call repeatedly and from the callback."""
        detach = self._detach
        if detach is None:
            return
        self._detach = None
        detach(self)

    def deliver(self, kind: ChangeKind, old: Any, new: Any) -> None:
        if self._detach is None or self.is_suspended:
            return
        change = KeyChange(
            key=self._key,
            kind=kind,
            old=_typed(old, self._value_type),
            new=_typed(new, self._value_type),
        )
        try:
            self._callback(change)
        except Exception:
            _logger.warning("Observer callback for key %s failed", self._key, exc_info=True)


def suspend_all(observers: Iterable[KeyObserver]) -> None:
    for observer in observers:
        observer.is_suspended = True


def resume_all(observers: Iterable[KeyObserver]) -> None:
    for observer in observers:
        observer.is_suspended = False
