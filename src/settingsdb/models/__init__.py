"""Record and view models."""

from settingsdb.models._base import Record, ViewModel, id_type_of, registered_record_type
from settingsdb.models.item import Item, ItemRecord

__all__ = [
    "Item",
    "ItemRecord",
    "Record",
    "ViewModel",
    "id_type_of",
    "registered_record_type",
]
