"""Base models for stored records and application views.

Every persisted entity inherits from :class:`Record` which provides:

* ``id: str``, the primary key inside its table.
* ``to_dict()`` / ``from_dict()`` conversion to and from the JSON-shaped
  value the key-value backend stores. ``from_dict`` is tolerant: a
  malformed value yields ``None`` instead of raising.
* An explicit record-type identifier (``record_type_name``) from which
  storage keys are derived. It defaults to the class name and is not
  inherited: every subclass owns its own table. Identifiers are unique
  per process; a second class claiming a taken one is rejected.

Application code that wants a different shape than the stored one
declares a :class:`ViewModel` bound to a record class; the notifier maps
records into it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, ValidationError

from settingsdb._constants import KEY_SEPARATOR

_RECORD_TYPES: dict[str, type[Record]] = {}


class Record(BaseModel):
    """Base for records stored in a :class:`~settingsdb.store.SettingsDatabase`."""

    record_type_name: ClassVar[str] = ""
    """Explicit storage identifier; falls back to the class name when empty."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    id: str

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        name = cls.record_type()
        if KEY_SEPARATOR in name:
            raise TypeError(f"{cls.__name__}: record type {name!r} must not contain {KEY_SEPARATOR!r}")
        existing = _RECORD_TYPES.get(name)
        # Re-running the same class statement (module reload) replaces the entry.
        if existing is not None and (existing.__module__, existing.__qualname__) != (cls.__module__, cls.__qualname__):
            raise TypeError(
                f"{cls.__qualname__}: record type {name!r} is already used by "
                f"{existing.__module__}.{existing.__qualname__}"
            )
        _RECORD_TYPES[name] = cls

    @classmethod
    def record_type(cls) -> str:
        """Identifier used in table and normalized-entry keys."""
        return cls.__dict__.get("record_type_name") or cls.__name__

    @classmethod
    def from_dict(cls, value: Any) -> Self | None:
        """Reconstruct a record from a stored value, or ``None`` if malformed."""
        if not isinstance(value, Mapping):
            return None
        try:
            return cls.model_validate(dict(value))
        except ValidationError:
            return None

    def to_dict(self) -> dict[str, Any]:
        """Structured, JSON-compatible value persisted for this record."""
        return self.model_dump(mode="json")


class ViewModel(BaseModel):
    """Application-level view of a stored record.

    Subclasses set ``record_class`` and may override :meth:`from_record`
    and :meth:`to_record` when the shapes differ.
    """

    record_class: ClassVar[type[Record]]

    model_config = ConfigDict(populate_by_name=True)

    id: str

    @classmethod
    def from_record(cls, record: Record) -> Self:
        return cls.model_validate(record.to_dict())

    def to_record(self) -> Record:
        return self.record_class.model_validate(self.model_dump(mode="json"))


def id_type_of(model: type[BaseModel]) -> type:
    """Declared type of ``model.id``, or ``object`` when it isn't a plain class."""
    field = model.model_fields.get("id")
    if field is None:
        return object
    annotation = field.annotation
    return annotation if isinstance(annotation, type) else object


def registered_record_type(name: str) -> type[Record] | None:
    """The record class that owns the identifier *name*, if one was defined."""
    return _RECORD_TYPES.get(name)
