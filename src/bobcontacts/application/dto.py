"""Data transfer objects returned by the engine's workflows."""

from dataclasses import dataclass, field
from enum import Enum

from bobcontacts.application.remote import RemoteAccount
from bobcontacts.domain import Contact

OPERATION_IN_PROGRESS = "Another contacts operation is already in progress."
SYNC_BLOCKED = "Synchronization is blocked; unblock it before syncing again."


@dataclass(frozen=True)
class RawDeviceContact:
    """One record as returned by the platform address book."""

    id: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    phone_numbers: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    has_image: bool = False


class ChangeKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    LOAD = "load"
    CLEAR = "clear"
    BULK_UPDATE = "bulk_update"
    SCAN_NEEDED = "scan_needed"


@dataclass(frozen=True)
class ChangeEvent:
    """A repository change, delivered to subscribers in mutation order."""

    kind: ChangeKind
    contacts: tuple[Contact, ...] = ()
    phones: tuple[str, ...] = ()


@dataclass(frozen=True)
class LoadReport:
    loaded: int = 0
    error: str | None = None


@dataclass(frozen=True)
class Page:
    contacts: list[Contact]
    total_count: int
    total_pages: int
    current_page: int
    has_next_page: bool
    has_prev_page: bool


@dataclass
class ScanResult:
    contacts: list[Contact] = field(default_factory=list)
    total: int = 0
    has_permission: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    success: bool = False
    created: int = 0
    updated: int = 0
    skipped: int = 0
    invalid: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class DetectionResult:
    total_checked: int = 0
    total_found: int = 0
    registered: dict[str, bool] = field(default_factory=dict)
    accounts: dict[str, RemoteAccount] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)
    sync: SyncResult | None = None
    detection: DetectionResult | None = None


@dataclass
class DeletionResult:
    identifier: str
    phone: str | None = None
    found: bool = False
    remote_deleted: bool = False
    restored_as_device: bool = False
    erased: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class WipeResult:
    total: int = 0
    deleted: int = 0
    failed: int = 0
    purged_local: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 100
        return round(self.deleted * 100 / self.total)


@dataclass
class InvitationResult:
    phone: str | None = None
    success: bool = False
    contact: Contact | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class InvitationRefreshResult:
    updated: int = 0
    added: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class FullSyncResult:
    sync: SyncResult = field(default_factory=SyncResult)
    detection: DetectionResult = field(default_factory=DetectionResult)
    errors: list[str] = field(default_factory=list)
