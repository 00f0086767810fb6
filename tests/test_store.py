from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from settingsdb.backend import JsonFileBackend, MemoryBackend
from settingsdb.config import StoreConfig
from settingsdb.exceptions import BackendError, RecordTypeMismatchError
from settingsdb.models import Item, ItemRecord, Record
from settingsdb.notifier import Add, Delete, Update
from settingsdb.store import SettingsDatabase


class NoteRecord(Record):
    body: str = ""
    pinned: bool = False


class _FailingTableBackend(MemoryBackend):
    """Accepts normalized entries but fails every table write."""

    def set(self, key: str, value: Any) -> None:
        if key.startswith("local_database_") and not key.startswith("local_database_normalized."):
            raise BackendError("disk full", key=key)
        super().set(key, value)


class _Recording(MemoryBackend):
    """Remembers the key of every write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[str] = []

    def set(self, key: str, value: Any) -> None:
        self.writes.append(key)
        super().set(key, value)


def _db(backend: MemoryBackend | None = None, **config: Any) -> SettingsDatabase:
    return SettingsDatabase(backend or MemoryBackend(), config=StoreConfig(**config))


def _collect(db: SettingsDatabase, view_type: type = ItemRecord) -> list[Any]:
    received: list[Any] = []
    db.notifier.register(view_type).sink(received.append)
    return received


class TestReadWrite:
    def test_add_then_get_returns_equal_record(self) -> None:
        db = _db()
        record = ItemRecord(id="1", title="item1")

        db.add(ItemRecord, record)

        assert db.get(ItemRecord, "1") == record

    def test_get_missing_table_or_entry_is_none(self) -> None:
        db = _db()
        assert db.get(ItemRecord, "nope") is None
        db.add(ItemRecord, ItemRecord(id="1"))
        assert db.get(ItemRecord, "nope") is None

    def test_get_all_empty_without_table(self) -> None:
        assert _db().get_all(ItemRecord) == []

    def test_get_all_returns_every_record(self) -> None:
        db = _db()
        db.add(ItemRecord, [ItemRecord(id="1", title="a"), ItemRecord(id="2", title="b")])

        records = db.get_all(ItemRecord)

        assert sorted(r.id for r in records) == ["1", "2"]

    def test_malformed_entries_are_dropped(self) -> None:
        backend = MemoryBackend(
            {
                "local_database_ItemRecord": {
                    "1": {"id": "1", "title": "ok"},
                    "2": {"title": "missing id"},
                    "3": "not a dict",
                }
            }
        )
        db = _db(backend)

        assert [r.id for r in db.get_all(ItemRecord)] == ["1"]
        assert db.get(ItemRecord, "2") is None
        assert db.get(ItemRecord, "3") is None

    def test_tables_are_separate_per_record_type(self) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="1", title="item"))
        db.add(NoteRecord, NoteRecord(id="1", body="note"))

        assert db.get(ItemRecord, "1") == ItemRecord(id="1", title="item")
        assert db.get(NoteRecord, "1") == NoteRecord(id="1", body="note")

    def test_storage_key_layout(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)

        db.add(ItemRecord, ItemRecord(id="7", title="seven"))

        stored = backend.snapshot()
        assert stored["local_database_ItemRecord"] == {"7": {"id": "7", "title": "seven"}}
        assert stored["local_database_normalized.ItemRecord.7"] == {"id": "7", "title": "seven"}

    def test_normalized_entry_tracks_table_entry(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)

        db.add(ItemRecord, ItemRecord(id="1", title="first"))
        db.add(ItemRecord, ItemRecord(id="1", title="second"))

        table = backend.get("local_database_ItemRecord")
        assert backend.get("local_database_normalized.ItemRecord.1") == table["1"]

    def test_custom_namespaces(self) -> None:
        backend = MemoryBackend()
        db = _db(backend, namespace="app", normalized_namespace="app_norm")

        db.add(ItemRecord, ItemRecord(id="1"))

        assert "app_ItemRecord" in backend
        assert "app_norm.ItemRecord.1" in backend

    def test_record_type_name_overrides_class_name(self) -> None:
        class Renamed(Record):
            record_type_name = "Todo"

        backend = MemoryBackend()
        db = _db(backend)
        db.add(Renamed, Renamed(id="x"))

        assert "local_database_Todo" in backend
        assert db.get(Renamed, "x") == Renamed(id="x")

    def test_wrong_record_type_rejected_before_write(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)

        with pytest.raises(RecordTypeMismatchError) as excinfo:
            db.add(ItemRecord, [ItemRecord(id="1"), NoteRecord(id="2")])  # type: ignore[list-item]

        assert excinfo.value.expected == "ItemRecord"
        assert excinfo.value.actual == "NoteRecord"
        assert backend.keys() == []

    def test_subclass_record_keeps_its_own_table(self) -> None:
        class PinnedNote(NoteRecord):
            pass

        backend = MemoryBackend()
        db = _db(backend)
        notes = _collect(db, NoteRecord)

        db.add(PinnedNote, PinnedNote(id="p", pinned=True))

        assert "local_database_PinnedNote" in backend
        assert "local_database_NoteRecord" not in backend
        assert db.get(NoteRecord, "p") is None
        assert notes == []

        with pytest.raises(RecordTypeMismatchError) as excinfo:
            db.add(NoteRecord, PinnedNote(id="q"))
        assert excinfo.value.actual == "PinnedNote"

    def test_single_view_model_reported_by_type(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)

        with pytest.raises(RecordTypeMismatchError) as excinfo:
            db.add(ItemRecord, Item(id="1", title="view"))  # type: ignore[arg-type]

        assert excinfo.value.actual == "Item"
        assert backend.keys() == []


class TestNotifications:
    def test_add_fresh_id_posts_single_add(self) -> None:
        db = _db()
        received = _collect(db)
        record = ItemRecord(id="1", title="item1")

        db.add(ItemRecord, record)

        assert received == [Add(record)]

    def test_second_add_posts_update_with_old_and_new(self) -> None:
        db = _db()
        first = ItemRecord(id="1", title="a")
        second = ItemRecord(id="1", title="b")
        db.add(ItemRecord, first)
        received = _collect(db)

        db.add(ItemRecord, second)

        assert received == [Update(first, second)]

    def test_malformed_previous_value_counts_as_add(self) -> None:
        backend = MemoryBackend({"local_database_ItemRecord": {"1": {"title": "broken"}}})
        db = _db(backend)
        received = _collect(db)
        record = ItemRecord(id="1", title="fixed")

        db.add(ItemRecord, record)

        assert received == [Add(record)]

    def test_delete_removes_and_posts_delete(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)
        record = ItemRecord(id="1", title="item1")
        db.add(ItemRecord, record)
        received = _collect(db)

        db.delete(ItemRecord, record)

        assert db.get(ItemRecord, "1") is None
        assert "local_database_normalized.ItemRecord.1" not in backend
        assert received == [Delete("1")]

    def test_delete_of_absent_id_still_notifies_by_default(self) -> None:
        db = _db()
        received = _collect(db)

        db.delete(ItemRecord, ItemRecord(id="ghost"))

        assert received == [Delete("ghost")]

    def test_delete_of_absent_id_can_be_silenced(self) -> None:
        db = _db(notify_absent_deletes=False)
        db.add(ItemRecord, ItemRecord(id="1"))
        received = _collect(db)

        db.delete(ItemRecord, [ItemRecord(id="ghost"), ItemRecord(id="1")])

        assert received == [Delete("1")]

    def test_batch_notifications_follow_input_order(self) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="b", title="old"))
        received = _collect(db)

        db.add(
            ItemRecord,
            [ItemRecord(id="a"), ItemRecord(id="b", title="new"), ItemRecord(id="c")],
        )

        assert [type(n) for n in received] == [Add, Update, Add]
        assert received[1] == Update(ItemRecord(id="b", title="old"), ItemRecord(id="b", title="new"))

    def test_batch_add_writes_table_once(self) -> None:
        backend = _Recording()
        db = _db(backend)
        received = _collect(db)

        db.add(
            ItemRecord,
            [ItemRecord(id="1", title="a"), ItemRecord(id="2", title="b"), ItemRecord(id="1", title="c")],
        )

        assert backend.writes.count("local_database_ItemRecord") == 1
        assert backend.writes[-1] == "local_database_ItemRecord"
        assert set(backend.writes[:-1]) == {
            "local_database_normalized.ItemRecord.1",
            "local_database_normalized.ItemRecord.2",
        }
        table = backend.get("local_database_ItemRecord")
        for record_id, value in table.items():
            assert backend.get(f"local_database_normalized.ItemRecord.{record_id}") == value
        assert table["1"] == {"id": "1", "title": "c"}
        assert received == [
            Add(ItemRecord(id="1", title="a")),
            Add(ItemRecord(id="2", title="b")),
            Update(ItemRecord(id="1", title="a"), ItemRecord(id="1", title="c")),
        ]

    def test_batch_delete_writes_table_once(self) -> None:
        backend = _Recording()
        db = _db(backend)
        db.add(ItemRecord, [ItemRecord(id=str(i)) for i in range(3)])
        backend.writes.clear()

        db.delete(ItemRecord, db.get_all(ItemRecord))

        assert backend.writes == ["local_database_ItemRecord"]
        assert db.get_all(ItemRecord) == []

    def test_subscriber_for_other_type_gets_nothing(self) -> None:
        db = _db()
        notes = _collect(db, NoteRecord)

        db.add(ItemRecord, ItemRecord(id="1"))
        db.delete(ItemRecord, ItemRecord(id="1"))

        assert notes == []

    def test_reads_do_not_notify(self) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="1"))
        received = _collect(db)

        db.get(ItemRecord, "1")
        db.get_all(ItemRecord)

        assert received == []

    def test_demo_scenario(self) -> None:
        db = _db()
        db.flush()
        received: list[Any] = []
        db.notifier.register(Item).sink(received.append)

        db.add(ItemRecord, Item(id="1", title="item1").record)
        db.add(ItemRecord, Item(id="2", title="item2").record)
        db.add(ItemRecord, Item(id="2", title="item2_updated").record)
        db.add(ItemRecord, Item(id="1", title="item1_updated").record)
        stored = db.get(ItemRecord, "1")
        assert stored is not None
        db.delete(ItemRecord, stored)

        assert received == [
            Add(Item(id="1", title="item1")),
            Add(Item(id="2", title="item2")),
            Update(Item(id="2", title="item2"), Item(id="2", title="item2_updated")),
            Update(Item(id="1", title="item1"), Item(id="1", title="item1_updated")),
            Delete("1"),
        ]
        assert db.get_all(ItemRecord) == [ItemRecord(id="2", title="item2_updated")]


class TestNotificationOrdering:
    def test_default_posts_before_table_is_persisted(self) -> None:
        backend = MemoryBackend()
        db = _db(backend)
        seen_in_table: list[bool] = []
        db.notifier.register(ItemRecord).sink(
            lambda _n: seen_in_table.append("1" in (backend.get("local_database_ItemRecord") or {}))
        )

        db.add(ItemRecord, ItemRecord(id="1"))

        assert seen_in_table == [False]

    def test_notify_after_persist_posts_after_table_write(self) -> None:
        backend = MemoryBackend()
        db = _db(backend, notify_after_persist=True)
        seen_in_table: list[bool] = []
        db.notifier.register(ItemRecord).sink(
            lambda _n: seen_in_table.append("1" in (backend.get("local_database_ItemRecord") or {}))
        )

        db.add(ItemRecord, ItemRecord(id="1"))

        assert seen_in_table == [True]

    def test_failed_table_write_after_notification_is_not_rolled_back(self) -> None:
        db = _db(_FailingTableBackend())
        received = _collect(db)

        with pytest.raises(BackendError):
            db.add(ItemRecord, ItemRecord(id="1"))

        assert received == [Add(ItemRecord(id="1"))]
        assert db.get(ItemRecord, "1") is None

    def test_failed_table_write_suppresses_deferred_notifications(self) -> None:
        db = _db(_FailingTableBackend(), notify_after_persist=True)
        received = _collect(db)

        with pytest.raises(BackendError):
            db.add(ItemRecord, ItemRecord(id="1"))

        assert received == []


class TestFlushAndLog:
    def test_flush_empties_every_table(self) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="1"))
        db.add(NoteRecord, NoteRecord(id="n"))

        db.flush()

        assert db.get_all(ItemRecord) == []
        assert db.get_all(NoteRecord) == []

    def test_flush_keeps_normalized_entries_and_foreign_keys(self) -> None:
        backend = MemoryBackend({"unrelated": "value"})
        db = _db(backend)
        db.add(ItemRecord, ItemRecord(id="1", title="kept"))

        db.flush()

        assert backend.get("local_database_ItemRecord") == {}
        assert backend.get("local_database_normalized.ItemRecord.1") == {"id": "1", "title": "kept"}
        assert backend.get("unrelated") == "value"

    def test_flush_leaves_sibling_namespace_alone(self) -> None:
        backend = MemoryBackend({"app_v2_ItemRecord": {"9": {"id": "9", "title": "other app"}}})
        db = _db(backend, namespace="app", normalized_namespace="app_norm")
        db.add(ItemRecord, ItemRecord(id="1"))

        db.flush()

        assert db.table_keys() == ["app_ItemRecord"]
        assert backend.get("app_ItemRecord") == {}
        assert backend.get("app_v2_ItemRecord") == {"9": {"id": "9", "title": "other app"}}

    def test_flush_does_not_notify(self) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="1"))
        received = _collect(db)

        db.flush()

        assert received == []

    def test_log_writes_json_dump(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        db = _db(dump_dir=tmp_path / "dumps")
        db.add(ItemRecord, ItemRecord(id="1", title="item1"))

        with caplog.at_level("INFO", logger="settingsdb.store"):
            path = db.log(ItemRecord)

        assert path == tmp_path / "dumps" / "settings_ItemRecord.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"1": {"id": "1", "title": "item1"}}
        assert "item1" in caplog.text

    def test_log_without_dump_dir_only_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        db = _db()
        db.add(ItemRecord, ItemRecord(id="1", title="item1"))

        with caplog.at_level("INFO", logger="settingsdb.store"):
            assert db.log(ItemRecord) is None

        assert "local_database_ItemRecord" in caplog.text


def test_database_on_json_file_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    db = SettingsDatabase(JsonFileBackend(path))
    db.add(ItemRecord, [ItemRecord(id="1", title="a"), ItemRecord(id="2", title="b")])
    db.delete(ItemRecord, ItemRecord(id="1"))

    reopened = SettingsDatabase(JsonFileBackend(path))

    assert reopened.get_all(ItemRecord) == [ItemRecord(id="2", title="b")]
    assert reopened.backend.get("local_database_normalized.ItemRecord.2") == {"id": "2", "title": "b"}
