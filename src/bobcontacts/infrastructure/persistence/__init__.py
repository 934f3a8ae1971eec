"""Local persistence of contact collections."""

from bobcontacts.infrastructure.persistence.json_store import (
    JsonCollectionStore,
    MemoryCollectionStore,
    contact_to_record,
    record_to_contact,
)

__all__ = [
    "JsonCollectionStore",
    "MemoryCollectionStore",
    "contact_to_record",
    "record_to_contact",
]
