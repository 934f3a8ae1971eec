"""Shared test doubles: remote backend, clock and sleeper."""

from datetime import datetime, timezone

import pytest

from bobcontacts.application import (
    ContactsManager,
    ContactsScanner,
    ContactsSyncEngine,
    RawDeviceContact,
    RemoteAccount,
    RemoteContact,
    RemoteInvitation,
    RemotePage,
)
from bobcontacts.errors import AuthenticationError, RemoteConflictError, RemoteRequestError, StorageError
from bobcontacts.infrastructure import (
    InMemoryContactRepository,
    MemoryCollectionStore,
    UploadedDeviceSource,
)

NOW = datetime(2026, 3, 18, 15, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested pauses and advances the shared clock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class FailingStore(MemoryCollectionStore):
    def write(self, name, value):
        raise StorageError("disk full")


class FakeRemoteBackend:
    """In-memory RemoteBackend with call counters and injectable failures."""

    def __init__(self) -> None:
        self.contacts: dict[str, RemoteContact] = {}
        self.users: list[RemoteAccount] = []
        self.invitations: dict[str, RemoteInvitation] = {}
        self.conflict_phones: set[str] = set()
        self.failing_phones: set[str] = set()
        self.auth_fail_after: int | None = None
        self.calls: dict[str, int] = {}
        self._next_id = 1

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def seed_contact(self, telephone: str, first_name: str = "", last_name: str = "Remote") -> RemoteContact:
        remote_id = self._new_id()
        record = RemoteContact(
            id=remote_id,
            document_id=f"doc-{remote_id}",
            first_name=first_name,
            last_name=last_name,
            telephone=telephone,
        )
        self.contacts[record.ref] = record
        return record

    def seed_user(self, telephone: str, username: str = "bobber", **extra) -> RemoteAccount:
        account = RemoteAccount(id=self._new_id(), username=username, telephone=telephone, **extra)
        self.users.append(account)
        return account

    @staticmethod
    def _page(items: list, page: int, page_size: int) -> RemotePage:
        start = (page - 1) * page_size
        page_count = max(1, -(-len(items) // page_size))
        return RemotePage(
            items=items[start : start + page_size],
            page=page,
            page_size=page_size,
            page_count=page_count,
            total=len(items),
        )

    async def list_contacts(self, *, page: int, page_size: int) -> RemotePage:
        self._count("list_contacts")
        return self._page(list(self.contacts.values()), page, page_size)

    async def find_contacts_by_phone(self, phone: str) -> list[RemoteContact]:
        self._count("find_contacts_by_phone")
        return [c for c in self.contacts.values() if c.telephone == phone]

    async def search_contacts_by_name(self, name: str) -> list[RemoteContact]:
        self._count("search_contacts_by_name")
        needle = name.lower()
        return [c for c in self.contacts.values() if needle in (c.last_name or "").lower()]

    async def create_contact(self, *, first_name, last_name, telephone, email=None) -> RemoteContact:
        self._count("create_contact")
        if self.auth_fail_after is not None and self.calls["create_contact"] > self.auth_fail_after:
            raise AuthenticationError("token expired")
        if telephone in self.failing_phones:
            raise RemoteRequestError(status_code=500, message="boom")
        if telephone in self.conflict_phones:
            raise RemoteConflictError()
        remote_id = self._new_id()
        record = RemoteContact(
            id=remote_id,
            document_id=f"doc-{remote_id}",
            first_name=first_name,
            last_name=last_name,
            telephone=telephone,
            email=email,
        )
        self.contacts[record.ref] = record
        return record

    async def delete_contact(self, remote_id: str) -> bool:
        self._count("delete_contact")
        return self.contacts.pop(remote_id, None) is not None

    async def list_users(self, *, page: int, page_size: int) -> RemotePage:
        self._count("list_users")
        return self._page(list(self.users), page, page_size)

    async def create_invitation(self, *, telephone, name, channel, message=None) -> RemoteInvitation:
        self._count("create_invitation")
        ref = f"inv-{self._new_id()}"
        invitation = RemoteInvitation(
            document_id=ref, telephone=telephone, name=name, channel=channel, message=message
        )
        self.invitations[ref] = invitation
        return invitation

    async def delete_invitation(self, invitation_id: str) -> bool:
        self._count("delete_invitation")
        return self.invitations.pop(invitation_id, None) is not None

    async def list_invitations(self) -> list[RemoteInvitation]:
        self._count("list_invitations")
        return list(self.invitations.values())


def raw(name: str, phone: str, *, email: str | None = None, given: str | None = None, id: str | None = None):
    return RawDeviceContact(
        id=id,
        name=name,
        given_name=given,
        phone_numbers=[phone],
        emails=[email] if email else [],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def backend() -> FakeRemoteBackend:
    return FakeRemoteBackend()


@pytest.fixture
def store() -> MemoryCollectionStore:
    return MemoryCollectionStore()


@pytest.fixture
def repository(store, clock) -> InMemoryContactRepository:
    return InMemoryContactRepository(store, clock=clock)


@pytest.fixture
def device() -> UploadedDeviceSource:
    return UploadedDeviceSource(
        [
            raw("Alice Martin", "06 12 34 56 78", email="alice@example.com", given="Alice"),
            raw("Bob Smith", "+1 (415) 555-2671"),
            raw("Chloé Durand", "0712345678"),
        ]
    )


@pytest.fixture
def engine(backend, repository, clock, sleeper) -> ContactsSyncEngine:
    return ContactsSyncEngine(
        backend,
        repository,
        batch_size=2,
        concurrency=2,
        rate_limit_per_second=1000,
        batch_pause_seconds=0.5,
        clock=clock,
        sleep=sleeper,
        now=lambda: NOW,
    )


@pytest.fixture
def manager(repository, device, engine) -> ContactsManager:
    return ContactsManager(repository, ContactsScanner(device), engine, now=lambda: NOW)
