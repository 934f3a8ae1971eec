"""Application ports (interfaces). Implemented by infrastructure adapters."""

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from bobcontacts.application.dto import ChangeEvent, LoadReport, Page, RawDeviceContact
from bobcontacts.application.remote import (
    RemoteAccount,
    RemoteContact,
    RemoteInvitation,
    RemotePage,
)
from bobcontacts.domain import Contact, DeviceDetails, Source


class CollectionStore(Protocol):
    """Named JSON-compatible collections persisted on the device."""

    def read(self, name: str) -> Any | None:
        """Return the stored value, or None if the collection does not exist."""
        ...

    def write(self, name: str, value: Any) -> None:
        """Replace the stored value of a collection."""
        ...

    def delete(self, name: str) -> None:
        """Remove a collection. Missing collections are ignored."""
        ...


class ContactRepository(Protocol):
    """Contact store keyed by normalized phone, with a change feed and batches.

    Mutations persist through a CollectionStore unless deferred or inside a
    batch. ``flush`` and ``commit_batch`` raise StorageError when the write
    fails; the changes then stay in memory and ``dirty`` stays set.
    """

    @property
    def dirty(self) -> bool: ...

    def get_all(self) -> list[Contact]: ...

    def get_by_phone(self, phone: str) -> Contact | None: ...

    def get_by_id(self, contact_id: str) -> Contact | None: ...

    def get_by_source(self, source: Source | str) -> list[Contact]: ...

    def count(self) -> int: ...

    def search(self, query: str) -> list[Contact]: ...

    def paginate(self, page: int = 1, page_size: int = 50, sort_key: str = "name") -> Page: ...

    def subscribe(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]: ...

    def add(self, contact: Contact) -> Contact: ...

    def add_many(self, contacts: Iterable[Contact], *, defer_persist: bool = False) -> list[Contact]: ...

    def update(
        self,
        phone: str,
        changes: Mapping[str, Any],
        *,
        defer_persist: bool = False,
        allow_demotion: bool = False,
    ) -> Contact | None: ...

    def demote_to_device(self, phone: str, details: DeviceDetails | None = None) -> Contact | None: ...

    def remove(self, phone: str) -> Contact | None: ...

    def begin_batch(self) -> None: ...

    def commit_batch(self) -> ChangeEvent: ...

    def rollback_batch(self) -> None: ...

    def load(self) -> LoadReport: ...

    def flush(self) -> None: ...


class DeviceContactsSource(Protocol):
    """Platform address book adapter."""

    async def request_permission(self) -> bool:
        """Return True if the app may read the address book."""
        ...

    async def fetch_raw_contacts(self) -> list[RawDeviceContact]:
        """Return every raw record of the address book."""
        ...


class TokenProvider(Protocol):
    async def get_token(self) -> str | None:
        """Return a valid bearer token, or None if the user is signed out."""
        ...


class RemoteBackend(Protocol):
    """REST contract of the contact-management backend.

    Authentication failures raise AuthenticationError, duplicate creates raise
    RemoteConflictError, other failures raise RemoteRequestError.
    """

    async def list_contacts(self, *, page: int, page_size: int) -> RemotePage:
        """One page of the user's remote contacts (items are RemoteContact)."""
        ...

    async def find_contacts_by_phone(self, phone: str) -> list[RemoteContact]:
        ...

    async def search_contacts_by_name(self, name: str) -> list[RemoteContact]:
        ...

    async def create_contact(
        self,
        *,
        first_name: str,
        last_name: str,
        telephone: str,
        email: str | None = None,
    ) -> RemoteContact:
        ...

    async def delete_contact(self, remote_id: str) -> bool:
        """Delete a record. Returns False when it was already gone (404)."""
        ...

    async def list_users(self, *, page: int, page_size: int) -> RemotePage:
        """One page of registered accounts (items are RemoteAccount)."""
        ...

    async def create_invitation(
        self,
        *,
        telephone: str,
        name: str,
        channel: str,
        message: str | None = None,
    ) -> RemoteInvitation:
        ...

    async def delete_invitation(self, invitation_id: str) -> bool:
        ...

    async def list_invitations(self) -> list[RemoteInvitation]:
        ...


__all__ = [
    "CollectionStore",
    "ContactRepository",
    "DeviceContactsSource",
    "RemoteAccount",
    "RemoteBackend",
    "RemoteContact",
    "RemoteInvitation",
    "RemotePage",
    "TokenProvider",
]
