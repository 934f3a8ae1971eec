"""
Bob contacts core: clean-architecture layout.

- domain: Contact and its per-source details, phone normalization. No outer dependencies.
- application: workflows (ContactsManager, ContactsSyncEngine, ContactsScanner), stats, ports, DTOs.
- infrastructure: adapters (InMemoryContactRepository, JsonCollectionStore, StrapiClient).
"""

from bobcontacts.application import (
    ContactsManager,
    ContactsScanner,
    ContactsSyncEngine,
    RawDeviceContact,
)
from bobcontacts.domain import Contact, Source, normalize_phone
from bobcontacts.infrastructure import (
    InMemoryContactRepository,
    JsonCollectionStore,
    StaticTokenProvider,
    StrapiClient,
)

__all__ = [
    "Contact",
    "ContactsManager",
    "ContactsScanner",
    "ContactsSyncEngine",
    "InMemoryContactRepository",
    "JsonCollectionStore",
    "RawDeviceContact",
    "Source",
    "StaticTokenProvider",
    "StrapiClient",
    "normalize_phone",
]
