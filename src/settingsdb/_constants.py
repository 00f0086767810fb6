"""Storage key layout constants."""

from __future__ import annotations

#: Prefix of table keys: ``<namespace>_<RecordType>``.
DEFAULT_NAMESPACE = "local_database"

#: Prefix of normalized single-record keys: ``<namespace>.<RecordType>.<id>``.
DEFAULT_NORMALIZED_NAMESPACE = "local_database_normalized"

TABLE_SEPARATOR = "_"
KEY_SEPARATOR = "."

#: File name pattern used by ``SettingsDatabase.log``.
DUMP_FILE_TEMPLATE = "settings_{record_type}.json"


def table_key(namespace: str, record_type: str) -> str:
    return f"{namespace}{TABLE_SEPARATOR}{record_type}"


def normalized_key(namespace: str, record_type: str, record_id: str) -> str:
    return f"{namespace}{KEY_SEPARATOR}{record_type}{KEY_SEPARATOR}{record_id}"
