"""Document database layered on a key-value settings store.

Each record type owns one table, a ``{id: value}`` dict persisted under
``<namespace>_<RecordType>``. Every record is also written on its own under
``<normalized_namespace>.<RecordType>.<id>`` so other processes sharing the
backend can look a single record up without loading the table.

There is no internal locking and no rollback: callers serialize access,
and a failed table write after notifications were posted is not undone.
See :class:`~settingsdb.config.StoreConfig` for the notification ordering
switch.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from settingsdb._constants import DUMP_FILE_TEMPLATE, normalized_key, table_key
from settingsdb.backend import KeyValueBackend
from settingsdb.config import StoreConfig
from settingsdb.exceptions import RecordTypeMismatchError
from settingsdb.models._base import Record, registered_record_type
from settingsdb.notifier import Add, Delete, Notification, Notifier, Update

_logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


def _as_list(record_type: type[R], records: R | Iterable[R]) -> list[R]:
    # A pydantic model is iterable over its fields; treat any model as one item.
    items = [records] if isinstance(records, BaseModel) else list(records)
    for item in items:
        if type(item) is not record_type:
            raise RecordTypeMismatchError(
                f"Expected {record_type.record_type()} record, got {type(item).__name__}",
                expected=record_type.record_type(),
                actual=type(item).__name__,
            )
    return items


class SettingsDatabase:
    """CRUD over typed record tables with change notification.

    Usage::

        db = SettingsDatabase(JsonFileBackend("settings.json"))
        subscription = db.notifier.register(Item).sink(print)
        db.add(ItemRecord, ItemRecord(id="1", title="item1"))
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        config: StoreConfig | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or StoreConfig()
        self._notifier = notifier or Notifier()

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def table_key(self, record_type: type[Record]) -> str:
        return table_key(self._config.namespace, record_type.record_type())

    def normalized_key(self, record_type: type[Record], record_id: str) -> str:
        return normalized_key(self._config.normalized_namespace, record_type.record_type(), record_id)

    def _load_table(self, record_type: type[Record]) -> dict[str, Any] | None:
        key = self.table_key(record_type)
        table = self._backend.get(key)
        if table is None:
            return None
        if not isinstance(table, dict):
            _logger.debug("Ignoring non-table value stored under %s", key)
            return None
        return table

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_all(self, record_type: type[R]) -> list[R]:
        """Every record of *record_type* that can be reconstructed."""
        table = self._load_table(record_type)
        if not table:
            return []
        records: list[R] = []
        for record_id, value in table.items():
            record = record_type.from_dict(value)
            if record is None:
                _logger.debug("Dropping malformed %s entry %s", record_type.record_type(), record_id)
                continue
            records.append(record)
        return records

    def get(self, record_type: type[R], record_id: str) -> R | None:
        """The record stored under *record_id*, or ``None``."""
        table = self._load_table(record_type)
        if table is None or record_id not in table:
            return None
        return record_type.from_dict(table[record_id])

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add(self, record_type: type[R], records: R | Iterable[R]) -> None:
        """Insert or replace one record or a batch of records.

        Posts ``Update(old, new)`` for ids whose previous value could be
        reconstructed, ``Add(new)`` otherwise, in input order. The table is
        written once after the whole batch.
        """
        items = _as_list(record_type, records)
        if not items:
            return

        key = self.table_key(record_type)
        table = self._load_table(record_type) or {}
        pending: list[Notification] = []

        for record in items:
            previous = table.get(record.id)
            old = record_type.from_dict(previous) if previous is not None else None
            value = record.to_dict()
            table[record.id] = value
            self._backend.set(self.normalized_key(record_type, record.id), value)
            notification: Notification = Update(old, record) if old is not None else Add(record)
            self._dispatch(record_type, notification, pending)

        self._backend.set(key, table)
        _logger.debug("Stored %d %s record(s) under %s", len(items), record_type.record_type(), key)
        self._flush_pending(record_type, pending)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, record_type: type[R], records: R | Iterable[R]) -> None:
        """Remove one record or a batch of records by id.

        Posts ``Delete(id)`` per record after the table is written. Ids that
        were not stored still produce a notification unless
        ``StoreConfig.notify_absent_deletes`` is off.
        """
        items = _as_list(record_type, records)
        if not items:
            return

        key = self.table_key(record_type)
        table = self._load_table(record_type) or {}
        removed: list[tuple[str, bool]] = []

        for record in items:
            present = table.pop(record.id, None) is not None
            self._backend.remove(self.normalized_key(record_type, record.id))
            removed.append((record.id, present))

        self._backend.set(key, table)
        _logger.debug("Deleted %d %s record(s) from %s", len(items), record_type.record_type(), key)

        for record_id, present in removed:
            if not present and not self._config.notify_absent_deletes:
                _logger.debug("Not notifying delete of absent %s %s", record_type.record_type(), record_id)
                continue
            self._notifier.post(record_type, Delete(record_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _dispatch(self, record_type: type[Record], notification: Notification, pending: list[Notification]) -> None:
        if self._config.notify_after_persist:
            pending.append(notification)
        else:
            self._notifier.post(record_type, notification)

    def _flush_pending(self, record_type: type[Record], pending: list[Notification]) -> None:
        for notification in pending:
            self._notifier.post(record_type, notification)

    def table_keys(self) -> list[str]:
        """Backend keys of every table in this database's namespace.

        Only suffixes naming a defined record class count, so tables of a
        sibling namespace such as ``app_v2`` next to ``app`` are not matched.
        """
        prefix = table_key(self._config.namespace, "")
        return [key for key in self._backend.keys(prefix) if registered_record_type(key[len(prefix) :]) is not None]

    def flush(self) -> None:
        """Empty every table. Normalized entries are left in place."""
        keys = self.table_keys()
        for key in keys:
            self._backend.set(key, {})
        _logger.debug("Flushed %d table(s)", len(keys))

    def log(self, record_type: type[Record]) -> Path | None:
        """Dump the table of *record_type* to the logger and to ``dump_dir``.

        Returns the dump file path, or ``None`` when no dump directory is
        configured or the file could not be written.
        """
        table = self._load_table(record_type) or {}
        dump = json.dumps(table, ensure_ascii=False, sort_keys=True, indent=2, default=str)
        _logger.info("Table %s:\n%s", self.table_key(record_type), dump)

        dump_dir = self._config.dump_dir
        if dump_dir is None:
            return None
        path = dump_dir / DUMP_FILE_TEMPLATE.format(record_type=record_type.record_type())
        try:
            dump_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(dump, encoding="utf-8")
        except OSError:
            _logger.warning("Could not write table dump to %s", path, exc_info=True)
            return None
        _logger.info("Table %s written to %s", record_type.record_type(), path)
        return path
