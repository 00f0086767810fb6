"""Store configuration for settingsdb."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from settingsdb._constants import DEFAULT_NAMESPACE, DEFAULT_NORMALIZED_NAMESPACE, KEY_SEPARATOR
from settingsdb.exceptions import SettingsDbConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _check_namespace(field_name: str, value: str) -> None:
    if not value or not value.strip():
        raise SettingsDbConfigError(f"{field_name} must be non-empty")
    if KEY_SEPARATOR in value:
        raise SettingsDbConfigError(f"{field_name} must not contain {KEY_SEPARATOR!r}: {value!r}")


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Database configuration.

    Parameters
    ----------
    namespace : str
        Prefix of every table key (``<namespace>_<RecordType>``).
    normalized_namespace : str
        Prefix of every normalized single-record key
        (``<normalized_namespace>.<RecordType>.<id>``).
    dump_dir : Path or None
        Directory that ``log()`` writes table dumps into. ``None``
        disables the file dump; the table is still logged.
    notify_after_persist : bool
        Post notifications only after the table write returned.
        When ``False`` notifications fire while the batch is applied,
        before the table is persisted.
    notify_absent_deletes : bool
        Emit ``Delete`` notifications for ids that were not stored.
    """

    namespace: str = DEFAULT_NAMESPACE
    normalized_namespace: str = DEFAULT_NORMALIZED_NAMESPACE
    dump_dir: Path | None = None
    notify_after_persist: bool = False
    notify_absent_deletes: bool = True

    def __post_init__(self) -> None:
        _check_namespace("namespace", self.namespace)
        _check_namespace("normalized_namespace", self.normalized_namespace)
        if self.namespace == self.normalized_namespace:
            raise SettingsDbConfigError("namespace and normalized_namespace must differ")
        if self.dump_dir is not None and not isinstance(self.dump_dir, Path):
            object.__setattr__(self, "dump_dir", Path(self.dump_dir))

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create configuration from environment variables.

        Reads optional ``SETTINGSDB_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        StoreConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "SETTINGSDB_NAMESPACE": "namespace",
            "SETTINGSDB_NORMALIZED_NAMESPACE": "normalized_namespace",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        dump_env = env.get("SETTINGSDB_DUMP_DIR")
        if dump_env and "dump_dir" not in overrides:
            config_kwargs["dump_dir"] = Path(dump_env).expanduser()

        if "notify_after_persist" not in overrides:
            config_kwargs["notify_after_persist"] = _env_bool(
                env.get("SETTINGSDB_NOTIFY_AFTER_PERSIST"),
                False,
            )

        if "notify_absent_deletes" not in overrides:
            config_kwargs["notify_absent_deletes"] = _env_bool(
                env.get("SETTINGSDB_NOTIFY_ABSENT_DELETES"),
                True,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
