#!/usr/bin/env python3
"""Walk through the settings database, key observation and throttling.

Runs the add/update/delete item scenario against a settings store while a
subscriber prints every change notification, then demonstrates key
observation and call throttling on the same store.

Usage
-----
::

    python scripts/demo_database.py                      # in-memory store
    python scripts/demo_database.py --file settings.json # JSON file store
    python scripts/demo_database.py --dump-dir ./dumps   # also dump the table

Options::

    --file PATH          Persist the store to PATH (default: in memory)
    --dump-dir DIR       Write the item table dump into DIR
    --notify-after-persist
                         Post notifications only after the table is written
    --step SECONDS       Pause between scenario steps (default: 0.5)
    -v, --verbose        Enable DEBUG logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from settingsdb import (  # noqa: E402
    Item,
    ItemRecord,
    JsonFileBackend,
    MemoryBackend,
    SettingsDatabase,
    StoreConfig,
    Throttler,
)
from settingsdb.backend import ObservableBackend  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="settingsdb walkthrough")
    parser.add_argument("--file", type=Path, default=None, help="JSON file to persist the store in")
    parser.add_argument("--dump-dir", type=Path, default=None, help="Directory for table dumps")
    parser.add_argument("--notify-after-persist", action="store_true", help="Notify only after writes commit")
    parser.add_argument("--step", type=float, default=0.5, help="Pause between scenario steps in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    return parser.parse_args()


async def _database_scenario(db: SettingsDatabase, step: float) -> None:
    db.flush()
    subscription = db.notifier.register(Item).sink(lambda notification: print(f"  notified: {notification}"))

    print("Adding item1 and item2")
    db.add(ItemRecord, Item(id="1", title="item1").record)
    db.add(ItemRecord, Item(id="2", title="item2").record)

    await asyncio.sleep(step)
    print("Updating item2")
    db.add(ItemRecord, Item(id="2", title="item2_updated").record)

    await asyncio.sleep(step)
    print("Updating item1")
    db.add(ItemRecord, Item(id="1", title="item1_updated").record)

    await asyncio.sleep(step)
    record = db.get(ItemRecord, "1")
    if record is not None:
        print("Deleting item1")
        db.delete(ItemRecord, record)

    subscription.invalidate()
    remaining: list[Any] = [Item.from_record(r) for r in db.get_all(ItemRecord)]
    print(f"Remaining items: {remaining}")
    dump_path = db.log(ItemRecord)
    if dump_path is not None:
        print(f"Table dump written to {dump_path}")


async def _observation_scenario(backend: ObservableBackend, step: float) -> None:
    print("Observing demo_value")
    observer = backend.observe_new("demo_value", lambda value: print(f"  observed: {value}"), value_type=str)
    for n in range(1, 5):
        backend.set("demo_value", f"Hello world {n}")

    await asyncio.sleep(step)
    backend.set("demo_value", "Hello world 5")
    observer.invalidate()
    backend.set("demo_value", "Hello world 6 (not observed)")


async def _throttle_scenario(step: float) -> None:
    print("Throttling a burst of three calls")
    throttler = Throttler(step)
    for label in ("1", "2", "3"):
        throttler.throttle(lambda label=label: print(f"  throttled call {label}"))
    await asyncio.sleep(step * 2)
    throttler.throttle(lambda: print("  throttled call 4"))
    await asyncio.sleep(step * 2)


async def main() -> None:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    backend: ObservableBackend = JsonFileBackend(args.file) if args.file else MemoryBackend()
    config = StoreConfig.from_env(
        dump_dir=args.dump_dir,
        notify_after_persist=args.notify_after_persist,
    )
    db = SettingsDatabase(backend, config=config)

    await _database_scenario(db, args.step)
    await _observation_scenario(backend, args.step)
    await _throttle_scenario(args.step)


if __name__ == "__main__":
    asyncio.run(main())
