"""Application layer: workflows, ports, wire models and DTOs."""

from bobcontacts.application.contacts_manager import ContactsManager
from bobcontacts.application.dto import (
    OPERATION_IN_PROGRESS,
    SYNC_BLOCKED,
    ChangeEvent,
    ChangeKind,
    DeletionResult,
    DetectionResult,
    FullSyncResult,
    ImportResult,
    InvitationRefreshResult,
    InvitationResult,
    LoadReport,
    Page,
    RawDeviceContact,
    ScanResult,
    SyncResult,
    WipeResult,
)
from bobcontacts.application.ports import (
    CollectionStore,
    ContactRepository,
    DeviceContactsSource,
    RemoteBackend,
    TokenProvider,
)
from bobcontacts.application.remote import (
    RemoteAccount,
    RemoteContact,
    RemoteInvitation,
    RemotePage,
)
from bobcontacts.application.scanner import ContactsScanner
from bobcontacts.application.stats import ContactsStats, StatsReport, calculate_stats, generate_report
from bobcontacts.application.sync_engine import ContactsSyncEngine

__all__ = [
    "OPERATION_IN_PROGRESS",
    "SYNC_BLOCKED",
    "ChangeEvent",
    "ChangeKind",
    "CollectionStore",
    "ContactRepository",
    "ContactsManager",
    "ContactsScanner",
    "ContactsStats",
    "ContactsSyncEngine",
    "DeletionResult",
    "DetectionResult",
    "DeviceContactsSource",
    "FullSyncResult",
    "ImportResult",
    "InvitationRefreshResult",
    "InvitationResult",
    "LoadReport",
    "Page",
    "RawDeviceContact",
    "RemoteAccount",
    "RemoteBackend",
    "RemoteContact",
    "RemoteInvitation",
    "RemotePage",
    "ScanResult",
    "StatsReport",
    "SyncResult",
    "TokenProvider",
    "WipeResult",
    "calculate_stats",
    "generate_report",
]
