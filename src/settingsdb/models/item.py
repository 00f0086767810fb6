"""Sample item record and its view model."""

from __future__ import annotations

from settingsdb.models._base import Record, ViewModel


class ItemRecord(Record):
    """Stored shape of an item.

    Parameters
    ----------
    id : str
        Item identifier.
    title : str
        Display title. Missing in stored data means ``""``.
    """

    title: str = ""


class Item(ViewModel):
    """Item as used by application code."""

    record_class = ItemRecord

    title: str = ""

    @property
    def record(self) -> ItemRecord:
        """Stored representation of this item."""
        return ItemRecord(id=self.id, title=self.title)

    def to_record(self) -> ItemRecord:
        return self.record
