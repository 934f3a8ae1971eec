"""High-level contact workflows: scan, import, delete, wipe, sync and invitations."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime

from bobcontacts.application.dto import (
    OPERATION_IN_PROGRESS,
    SYNC_BLOCKED,
    DeletionResult,
    DetectionResult,
    FullSyncResult,
    ImportResult,
    InvitationRefreshResult,
    InvitationResult,
    ScanResult,
    SyncResult,
    WipeResult,
)
from bobcontacts.application.ports import ContactRepository
from bobcontacts.application.remote import RemoteAccount, RemoteInvitation
from bobcontacts.application.scanner import ContactsScanner
from bobcontacts.application.stats import ContactsStats, StatsReport, calculate_stats, generate_report
from bobcontacts.application.sync_engine import ContactsSyncEngine
from bobcontacts.domain import (
    Contact,
    CuratedDetails,
    Invitation,
    InvitationChannel,
    InvitationStatus,
    InvitedDetails,
    RegisteredDetails,
    Source,
    normalize_phone,
)
from bobcontacts.domain.entities import NETWORK_SOURCES, utcnow
from bobcontacts.errors import AuthenticationError, RemoteRequestError, StorageError
from bobcontacts.infrastructure.concurrency import CancellationToken

logger = logging.getLogger(__name__)


def registered_details(account: RemoteAccount) -> RegisteredDetails:
    return RegisteredDetails(
        handle=account.username,
        reward_points=account.reward_points,
        tier=account.tier or "beginner",
        is_online=account.is_online,
        last_active_at=account.last_active_at,
    )


def invitation_from_remote(
    remote: RemoteInvitation,
    *,
    now: datetime,
    channel: InvitationChannel = InvitationChannel.SMS,
    message: str | None = None,
) -> Invitation:
    try:
        status = InvitationStatus(remote.status)
    except ValueError:
        status = InvitationStatus.SENT
    if "channel" in remote.model_fields_set:
        try:
            channel = InvitationChannel(remote.channel)
        except ValueError:
            pass
    return Invitation(
        id=remote.ref or str(uuid.uuid4()),
        remote_ref=remote.ref,
        status=status,
        sent_at=remote.sent_at or now,
        channel=channel,
        responded_at=remote.responded_at,
        message=remote.message or message,
    )


class ContactsManager:
    """Entry point of the engine. Constructed once with its collaborators.

    Long workflows are serialized: while one runs, another call returns its
    empty result carrying OPERATION_IN_PROGRESS instead of waiting.
    """

    def __init__(
        self,
        repository: ContactRepository,
        scanner: ContactsScanner,
        engine: ContactsSyncEngine,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._scanner = scanner
        self._engine = engine
        self._now = now
        self._lock = asyncio.Lock()
        self._cancel: CancellationToken | None = None
        self.sync_blocked = False

    @property
    def repository(self) -> ContactRepository:
        return self._repository

    @property
    def engine(self) -> ContactsSyncEngine:
        return self._engine

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def load(self):
        return self._repository.load()

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[bool]:
        if self._lock.locked():
            logger.warning("%s rejected: %s", name, OPERATION_IN_PROGRESS)
            yield False
            return
        async with self._lock:
            self._cancel = CancellationToken()
            logger.info("%s started", name)
            try:
                yield True
            finally:
                self._cancel = None
                logger.info("%s finished", name)

    @asynccontextmanager
    async def batch(self):
        """Group repository mutations: one flush and one bulk_update on success,
        full rollback if the block raises."""
        self._repository.begin_batch()
        try:
            yield self._repository
        except BaseException:
            self._repository.rollback_batch()
            raise
        self._repository.commit_batch()

    def block_sync(self) -> None:
        self.sync_blocked = True
        if self._cancel is not None:
            self._cancel.cancel("sync blocked")
        logger.warning("Synchronization blocked")

    def unblock_sync(self) -> None:
        self.sync_blocked = False
        logger.info("Synchronization unblocked")

    def _resolve(self, identifier: str) -> Contact | None:
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        contact = self._repository.get_by_phone(identifier)
        if contact is None:
            phone = normalize_phone(identifier)
            if phone is not None:
                contact = self._repository.get_by_phone(phone)
        if contact is None:
            contact = self._repository.get_by_id(identifier)
        return contact

    def _network(self) -> list[Contact]:
        return [c for c in self._repository.get_all() if c.source in NETWORK_SOURCES]

    # Device

    async def scan_device(self) -> ScanResult:
        async with self._operation("scan_device") as acquired:
            if not acquired:
                return ScanResult(errors=[OPERATION_IN_PROGRESS])
            return await self._scan()

    async def _scan(self) -> ScanResult:
        result = await self._scanner.scan()
        if result.contacts:
            self._repository.add_many(result.contacts, defer_persist=True)
            try:
                self._repository.flush()
            except StorageError as exc:
                logger.exception("Could not persist scanned contacts")
                result.errors.append(f"Could not persist scanned contacts: {exc}")
        return result

    # Import

    async def import_contacts(
        self,
        identifiers: Iterable[str],
        *,
        push: bool = False,
        detect: bool = False,
    ) -> ImportResult:
        identifiers = list(identifiers)
        async with self._operation("import_contacts") as acquired:
            if not acquired:
                return ImportResult(total=len(identifiers), errors=[OPERATION_IN_PROGRESS])
            return await self._import(identifiers, push=push, detect=detect)

    async def import_all(self, *, push: bool = False, detect: bool = False) -> ImportResult:
        async with self._operation("import_all") as acquired:
            if not acquired:
                return ImportResult(errors=[OPERATION_IN_PROGRESS])
            phones = [c.phone for c in self._repository.get_by_source(Source.DEVICE)]
            return await self._import(phones, push=push, detect=detect)

    async def _import(self, identifiers: list[str], *, push: bool, detect: bool) -> ImportResult:
        result = ImportResult(total=len(identifiers))
        selected: dict[str, Contact] = {}
        for identifier in identifiers:
            contact = self._resolve(identifier)
            if contact is None:
                result.errors.append(f"{identifier}: not found among device contacts")
                continue
            if contact.in_network or contact.phone in selected:
                result.skipped += 1
                continue
            selected[contact.phone] = contact

        imported: list[Contact] = []
        try:
            async with self.batch() as repository:
                for phone in selected:
                    updated = repository.update(
                        phone,
                        {"source": Source.CURATED, "details": CuratedDetails(imported_at=self._now())},
                        defer_persist=True,
                    )
                    if updated is not None:
                        imported.append(updated)
        except StorageError as exc:
            logger.exception("Could not persist imported contacts")
            result.errors.append(f"Could not persist imported contacts: {exc}")
        result.imported = len(imported)
        logger.info("Imported %d contacts (%d skipped)", result.imported, result.skipped)

        if push and imported:
            result.sync = await self._push(imported)
        if detect and imported:
            result.detection = await self._detect(imported)
        return result

    # Sync

    async def push(self, contacts: Iterable[Contact] | None = None, *, force_sync: bool = False) -> SyncResult:
        async with self._operation("push") as acquired:
            if not acquired:
                return SyncResult(errors=[OPERATION_IN_PROGRESS])
            targets = list(contacts) if contacts is not None else self._network()
            return await self._push(targets, force_sync=force_sync)

    async def _push(self, contacts: list[Contact], *, force_sync: bool = False) -> SyncResult:
        if self.sync_blocked:
            return SyncResult(errors=[SYNC_BLOCKED])
        return await self._engine.push(contacts, force_sync=force_sync, cancel=self._cancel)

    async def detect(self, contacts: Iterable[Contact] | None = None) -> DetectionResult:
        async with self._operation("detect") as acquired:
            if not acquired:
                return DetectionResult(errors=[OPERATION_IN_PROGRESS])
            targets = list(contacts) if contacts is not None else self._network()
            return await self._detect(targets)

    async def _detect(self, contacts: list[Contact]) -> DetectionResult:
        if self.sync_blocked:
            return DetectionResult(errors=[SYNC_BLOCKED])
        detection = await self._engine.detect(contacts, cancel=self._cancel)
        if detection.registered:
            try:
                async with self.batch():
                    self._apply_detection(contacts, detection)
            except StorageError as exc:
                detection.errors.append(f"Could not persist detection results: {exc}")
        return detection

    def _apply_detection(self, contacts: list[Contact], detection: DetectionResult) -> None:
        with_flags = 0
        promoted = 0
        for contact in contacts:
            found = detection.registered.get(contact.phone)
            current = self._repository.get_by_phone(contact.phone)
            if found is None or current is None or not current.in_network:
                continue
            if found:
                account = detection.accounts.get(normalize_phone(current.phone) or current.phone)
                if account is None:
                    continue
                self._repository.update(
                    current.phone,
                    {
                        "source": Source.REGISTERED,
                        "details": registered_details(account),
                        "avatar_ref": current.avatar_ref or account.avatar,
                        "email": current.email or account.email,
                    },
                    defer_persist=True,
                )
                promoted += 1
            elif current.source is Source.CURATED:
                self._repository.update(
                    current.phone,
                    {"details": replace(current.details, is_registered=False)},
                    defer_persist=True,
                )
                with_flags += 1
        logger.info("Detection applied: %d registered, %d marked unregistered", promoted, with_flags)

    async def full_sync(self) -> FullSyncResult:
        async with self._operation("full_sync") as acquired:
            if not acquired:
                return FullSyncResult(errors=[OPERATION_IN_PROGRESS])
            result = FullSyncResult()
            if self.sync_blocked:
                result.errors.append(SYNC_BLOCKED)
                return result
            result.sync = await self._push(self._network())
            missing = await self._engine.sync_missing_remote_ids(cancel=self._cancel)
            result.sync.updated += missing.updated
            result.sync.errors.extend(missing.errors)
            result.detection = await self._detect(self._network())
            result.errors = result.sync.errors + result.detection.errors
            return result

    # Deletion

    async def delete_contact(self, identifier: str) -> DeletionResult:
        async with self._operation("delete_contact") as acquired:
            if not acquired:
                return DeletionResult(identifier=identifier, errors=[OPERATION_IN_PROGRESS])
            return await self._delete(identifier)

    async def _delete(self, identifier: str) -> DeletionResult:
        result = DeletionResult(identifier=identifier)
        contact = self._resolve(identifier)
        if contact is None:
            result.errors.append(f"{identifier}: contact not found")
            return result
        result.found = True
        result.phone = contact.phone

        if self.sync_blocked:
            logger.info("Sync blocked, leaving remote record of %s untouched", contact.phone)
        elif contact.in_network or contact.remote_id:
            try:
                result.remote_deleted = await self._engine.delete_remote(contact)
            except AuthenticationError as exc:
                result.errors.append(f"Authentication failed: {exc}")
                return result
            except RemoteRequestError as exc:
                logger.warning("Remote removal of %s failed: %s", contact.phone, exc)
                result.errors.append(f"Remote removal failed: {exc.message}")

        scan = await self._scanner.scan()
        on_device = next((c for c in scan.contacts if c.phone == contact.phone), None)
        try:
            if on_device is not None:
                self._repository.demote_to_device(contact.phone, on_device.details)
                result.restored_as_device = True
            else:
                self._repository.remove(contact.phone)
                result.erased = True
            if self._repository.dirty:
                self._repository.flush()
        except StorageError as exc:
            result.errors.append(f"Could not persist deletion: {exc}")
        self._engine.forget(contact.phone)
        return result

    async def wipe_remote(self, on_progress: Callable[[int], None] | None = None) -> WipeResult:
        """Delete every remote contact, purge network state and block sync."""
        async with self._operation("wipe_remote") as acquired:
            if not acquired:
                return WipeResult(errors=[OPERATION_IN_PROGRESS])
            result = await self._engine.delete_all_remote(cancel=self._cancel, on_progress=on_progress)
            if result.total == 0 and result.errors:
                return result
            try:
                async with self.batch() as repository:
                    for contact in repository.get_all():
                        if contact.source is not Source.DEVICE:
                            repository.remove(contact.phone)
                            result.purged_local += 1
                        elif contact.remote_id or contact.remote_doc_ref or contact.content_hash:
                            repository.update(
                                contact.phone,
                                {"remote_id": None, "remote_doc_ref": None, "content_hash": None},
                            )
            except StorageError as exc:
                result.errors.append(f"Could not persist purge: {exc}")
            self._engine.reset_caches()
            self.sync_blocked = True
            logger.warning(
                "Remote wipe done (%d%%), %d local contacts purged; sync blocked until unblocked",
                result.percentage,
                result.purged_local,
            )
            return result

    # Invitations

    async def invite(
        self,
        identifier: str,
        channel: InvitationChannel | str = InvitationChannel.SMS,
        message: str | None = None,
    ) -> InvitationResult:
        contact = self._resolve(identifier)
        if contact is None:
            return InvitationResult(errors=[f"{identifier}: contact not found"])
        result = InvitationResult(phone=contact.phone)
        if contact.source is Source.REGISTERED:
            result.errors.append(f"{contact.phone}: already registered")
            return result
        channel = InvitationChannel(channel)
        try:
            remote = await self._engine.send_invitation(contact, channel, message)
        except (AuthenticationError, RemoteRequestError) as exc:
            result.errors.append(f"Invitation failed: {exc}")
            return result
        invitation = invitation_from_remote(remote, now=self._now(), channel=channel, message=message)
        result.contact = self._repository.update(
            contact.phone,
            {"source": Source.INVITED, "details": InvitedDetails(invitation=invitation)},
        )
        result.success = result.contact is not None
        return result

    async def cancel_invitation(self, identifier: str) -> InvitationResult:
        contact = self._resolve(identifier)
        if contact is None:
            return InvitationResult(errors=[f"{identifier}: contact not found"])
        result = InvitationResult(phone=contact.phone)
        invitation = contact.invitation
        if invitation is None:
            result.errors.append(f"{contact.phone}: no invitation to cancel")
            return result
        if invitation.remote_ref:
            try:
                await self._engine.cancel_invitation(invitation.remote_ref)
            except (AuthenticationError, RemoteRequestError) as exc:
                result.errors.append(f"Cancellation failed: {exc}")
                return result
        result.contact = self._repository.update(
            contact.phone,
            {"source": Source.CURATED, "details": CuratedDetails(is_registered=False)},
            allow_demotion=True,
        )
        result.success = result.contact is not None
        return result

    async def refresh_invitations(self) -> InvitationRefreshResult:
        result = InvitationRefreshResult()
        try:
            remote_invitations = await self._engine.fetch_invitations()
        except (AuthenticationError, RemoteRequestError) as exc:
            result.errors.append(f"Could not fetch invitations: {exc}")
            return result
        now = self._now()
        try:
            async with self.batch() as repository:
                for remote in remote_invitations:
                    phone = remote.normalized_phone
                    if phone is None:
                        continue
                    details = InvitedDetails(invitation=invitation_from_remote(remote, now=now))
                    current = repository.get_by_phone(phone)
                    if current is None:
                        repository.add(
                            Contact(
                                phone=phone,
                                display_name=(remote.name or "").strip() or phone,
                                source=Source.INVITED,
                                details=details,
                            )
                        )
                        result.added += 1
                    elif current.source is not Source.REGISTERED:
                        repository.update(phone, {"source": Source.INVITED, "details": details})
                        result.updated += 1
        except StorageError as exc:
            result.errors.append(f"Could not persist invitations: {exc}")
        return result

    # Stats

    def stats(self) -> ContactsStats:
        return calculate_stats(self._repository.get_all(), now=self._now())

    def stats_report(self) -> StatsReport:
        return generate_report(self._repository.get_all(), now=self._now())

