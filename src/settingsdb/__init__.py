"""settingsdb - Document database with change notifications on a key-value settings store."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("settingsdb")
except PackageNotFoundError:
    __version__ = "0+local"
from settingsdb.backend import JsonFileBackend, KeyValueBackend, MemoryBackend, ObservableBackend
from settingsdb.config import StoreConfig
from settingsdb.exceptions import (
    BackendError,
    RecordTypeMismatchError,
    SettingsDbConfigError,
    SettingsDbError,
)
from settingsdb.models import Item, ItemRecord, Record, ViewModel
from settingsdb.notifier import Add, Delete, Notification, NotificationStream, Notifier, Subscription, Update
from settingsdb.observe import ChangeKind, KeyChange, KeyObserver, resume_all, suspend_all
from settingsdb.store import SettingsDatabase
from settingsdb.throttle import Throttler

__all__ = [
    "__version__",
    "Add",
    "BackendError",
    "ChangeKind",
    "Delete",
    "Item",
    "ItemRecord",
    "JsonFileBackend",
    "KeyChange",
    "KeyObserver",
    "KeyValueBackend",
    "MemoryBackend",
    "Notification",
    "NotificationStream",
    "Notifier",
    "ObservableBackend",
    "Record",
    "RecordTypeMismatchError",
    "SettingsDatabase",
    "SettingsDbConfigError",
    "SettingsDbError",
    "StoreConfig",
    "Subscription",
    "Throttler",
    "Update",
    "ViewModel",
    "resume_all",
    "suspend_all",
]
