"""In-process change notifications for the settings database.

The database posts one notification per mutated record on a single shared
channel; every notification carries the record type it was posted for.
Subscribers register for one record type and optionally map records into
an application view type.

Delivery is synchronous: :meth:`Notifier.post` calls every matching,
still-active subscriber in registration order before it returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from settingsdb.models._base import Record, id_type_of

_logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


@dataclass(frozen=True)
class Add(Generic[T]):
    """A record was stored under a new id."""

    record: T


@dataclass(frozen=True)
class Update(Generic[T]):
    """A stored record was replaced."""

    old: T
    new: T


@dataclass(frozen=True)
class Delete:
    """A record id was deleted. Only the id is carried."""

    id: Any


Notification = Add[Any] | Update[Any] | Delete


def _record_type_of(view_type: type, record_type: type[Record] | None) -> type[Record]:
    if record_type is not None:
        return record_type
    if isinstance(view_type, type) and issubclass(view_type, Record):
        return view_type
    record_class = getattr(view_type, "record_class", None)
    if isinstance(record_class, type) and issubclass(record_class, Record):
        return record_class
    raise TypeError(f"Cannot infer the record type for {view_type!r}; pass record_type=")


def _default_map(view_type: type, record_type: type[Record]) -> Callable[[Any], Any]:
    if view_type is record_type:
        return lambda record: record
    from_record = getattr(view_type, "from_record", None)
    if from_record is None:
        raise TypeError(f"{view_type!r} has no from_record(); pass map_fn=")
    return from_record


def _id_type(view_type: type) -> type:
    model_fields = getattr(view_type, "model_fields", None)
    if model_fields is None:
        return object
    return id_type_of(view_type)


class Subscription:
    """A live registration on a :class:`Notifier`.

    ``invalidate()`` stops future delivery. It is idempotent and may be
    called from inside the subscriber's own callback.
    """

    def __init__(
        self,
        notifier: Notifier,
        record_type: str,
        transform: Callable[[Notification], Notification | None],
        callback: Callable[[Any], None],
    ) -> None:
        self._notifier: Notifier | None = notifier
        self._record_type = record_type
        self._transform = transform
        self._callback = callback

    @property
    def record_type(self) -> str:
        return self._record_type

    @property
    def is_active(self) -> bool:
        return self._notifier is not None

    def invalidate(self) -> None:
        notifier = self._notifier
        if notifier is None:
            return
        self._notifier = None
        notifier._detach(self)  # noqa: SLF001

    def _receive(self, record_type: str, notification: Notification) -> None:
        if self._notifier is None or record_type != self._record_type:
            return
        try:
            mapped = self._transform(notification)
        except Exception:
            _logger.warning("Mapping %s notification failed", record_type, exc_info=True)
            return
        if mapped is None:
            return
        try:
            self._callback(mapped)
        except Exception:
            _logger.warning("Subscriber for %s raised", record_type, exc_info=True)


class NotificationStream(Generic[V]):
    """Lazy stream of notifications for one record type.

    Nothing is registered until a consumer attaches: every ``sink()`` call
    and every ``async for`` loop creates its own independent subscription.
    """

    def __init__(
        self,
        notifier: Notifier,
        record_type: type[Record],
        transform: Callable[[Notification], Notification | None],
    ) -> None:
        self._notifier = notifier
        self._record_type = record_type
        self._transform = transform

    @property
    def record_type(self) -> type[Record]:
        return self._record_type

    def sink(self, callback: Callable[[Add[V] | Update[V] | Delete], None]) -> Subscription:
        """Deliver every matching notification to *callback* until invalidated."""
        subscription = Subscription(
            self._notifier,
            self._record_type.record_type(),
            self._transform,
            callback,
        )
        self._notifier._attach(subscription)  # noqa: SLF001
        return subscription

    def __aiter__(self) -> AsyncIterator[Add[V] | Update[V] | Delete]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Add[V] | Update[V] | Delete]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Add[V] | Update[V] | Delete] = asyncio.Queue()

        def _enqueue(notification: Add[V] | Update[V] | Delete) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                queue.put_nowait(notification)
            else:
                loop.call_soon_threadsafe(queue.put_nowait, notification)

        subscription = self.sink(_enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.invalidate()


class Notifier:
    """Publish/subscribe bus shared by a database and its observers."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def post(self, record_type: type[Record], notification: Notification) -> None:
        """Broadcast *notification* to every subscriber of *record_type*."""
        name = record_type.record_type()
        _logger.debug("Posting %s for %s", type(notification).__name__, name)
        # Snapshot: subscribers may (un)register while being called.
        for subscription in list(self._subscriptions):
            subscription._receive(name, notification)  # noqa: SLF001

    def register(
        self,
        view_type: type[V],
        map_fn: Callable[[Any], V] | None = None,
        *,
        record_type: type[Record] | None = None,
    ) -> NotificationStream[V]:
        """Stream notifications for a record type, mapped into *view_type*.

        ``record_type`` defaults to *view_type* itself when it is a
        :class:`Record`, else to ``view_type.record_class``. ``map_fn``
        defaults to identity or ``view_type.from_record``. ``Delete``
        notifications whose id is not an instance of the view type's
        ``id`` type are dropped.
        """
        source = _record_type_of(view_type, record_type)
        mapper = map_fn if map_fn is not None else _default_map(view_type, source)
        id_type = _id_type(view_type)

        def _transform(notification: Notification) -> Notification | None:
            if isinstance(notification, Delete):
                if isinstance(notification.id, id_type):
                    return notification
                _logger.debug(
                    "Dropping delete of %r: id type does not match %s",
                    notification.id,
                    getattr(view_type, "__name__", view_type),
                )
                return None
            if isinstance(notification, Update):
                return Update(mapper(notification.old), mapper(notification.new))
            if isinstance(notification, Add):
                return Add(mapper(notification.record))
            return None

        return NotificationStream(self, source, _transform)

    def _attach(self, subscription: Subscription) -> None:
        self._subscriptions.append(subscription)

    def _detach(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)
