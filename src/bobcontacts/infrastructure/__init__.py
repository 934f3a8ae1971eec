"""Infrastructure layer: concrete implementations of application ports."""

from bobcontacts.infrastructure.concurrency import (
    CancellationToken,
    TokenBucket,
    TtlCache,
    chunked,
    run_bounded,
)
from bobcontacts.infrastructure.device import UploadedDeviceSource
from bobcontacts.infrastructure.memory_repository import InMemoryContactRepository
from bobcontacts.infrastructure.persistence.json_store import (
    JsonCollectionStore,
    MemoryCollectionStore,
)
from bobcontacts.infrastructure.remote.strapi_client import StaticTokenProvider, StrapiClient

__all__ = [
    "CancellationToken",
    "InMemoryContactRepository",
    "JsonCollectionStore",
    "MemoryCollectionStore",
    "StaticTokenProvider",
    "StrapiClient",
    "TokenBucket",
    "TtlCache",
    "UploadedDeviceSource",
    "chunked",
    "run_bounded",
]
