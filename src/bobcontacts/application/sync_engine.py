"""Reconciles the local contact store with the remote backend.

Push creates missing remote records in rate-limited batches and skips work it
has already done: a remote-existing index (phone -> remote id, loaded once per
TTL window) answers "already there" without a lookup per item, and a content
hash per phone skips contacts that have not changed since their last push.

Detection answers "which of these phones belong to registered accounts" from a
registered-accounts cache loaded by paginated listing, so its remote cost is
bounded by the number of pages, never by the number of contacts.
"""

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from bobcontacts.application.dto import DetectionResult, SyncResult, WipeResult
from bobcontacts.application.ports import ContactRepository, RemoteBackend, TokenProvider
from bobcontacts.application.remote import RemoteAccount, RemoteContact, RemoteInvitation
from bobcontacts.application.stats import percent
from bobcontacts.config import Settings
from bobcontacts.domain import Contact, CuratedDetails, InvitationChannel, Source, normalize_phone
from bobcontacts.domain.entities import NETWORK_SOURCES, utcnow
from bobcontacts.domain.phone import parse_full_name, phone_variants
from bobcontacts.errors import (
    AuthenticationError,
    RemoteConflictError,
    RemoteRequestError,
    StorageError,
)
from bobcontacts.infrastructure.concurrency import (
    CancellationToken,
    TokenBucket,
    TtlCache,
    chunked,
    run_bounded,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_DELETE_BATCH_SIZE = 50
DEFAULT_CONCURRENCY = 4
DEFAULT_RATE_LIMIT_PER_SECOND = 5.0
DEFAULT_BATCH_PAUSE_SECONDS = 0.5
DEFAULT_CACHE_TTL_SECONDS = 300.0
LISTING_PAGE_SIZE = 100
MAX_USER_PAGES = 10
MAX_CONTACT_PAGES = 1000
RECENT_CONTACT_WINDOW = timedelta(hours=24)

ProgressCallback = Callable[[int], None]


def content_hash(contact: Contact) -> str:
    """Fingerprint of the fields a push sends."""
    payload = "|".join(
        (contact.display_name.strip(), contact.phone.strip(), (contact.email or "").strip())
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def is_high_priority(contact: Contact, *, now: datetime) -> bool:
    """Contacts likely to be real matches: pending invitation, recent, email or full name."""
    invitation = contact.invitation
    if invitation is not None and invitation.is_pending:
        return True
    if contact.added_at is not None and now - contact.added_at < RECENT_CONTACT_WINDOW:
        return True
    if contact.email and "@" in contact.email:
        return True
    return len(contact.display_name.split()) >= 2


@dataclass(frozen=True)
class _Outcome:
    kind: str
    error: str | None = None


class ContactsSyncEngine:
    """Push, detection and remote housekeeping over a RemoteBackend."""

    def __init__(
        self,
        backend: RemoteBackend,
        repository: ContactRepository,
        *,
        token_provider: TokenProvider | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        rate_limit_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._repository = repository
        self._tokens = token_provider
        self.batch_size = max(1, batch_size)
        self.delete_batch_size = max(1, delete_batch_size)
        self.concurrency = max(1, concurrency)
        self._rate = rate_limit_per_second
        self._batch_pause = batch_pause_seconds
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._existing: TtlCache[str, str | None] = TtlCache(cache_ttl_seconds, clock=clock)
        self._accounts: TtlCache[str, RemoteAccount] = TtlCache(cache_ttl_seconds, clock=clock)
        self._hashes: dict[str, str] = {}

    @classmethod
    def from_settings(
        cls, backend: RemoteBackend, repository: ContactRepository, settings: Settings, **kwargs
    ) -> "ContactsSyncEngine":
        return cls(
            backend,
            repository,
            batch_size=settings.sync_batch_size,
            delete_batch_size=settings.delete_batch_size,
            concurrency=settings.sync_concurrency,
            rate_limit_per_second=settings.rate_limit_per_second,
            batch_pause_seconds=settings.batch_pause_seconds,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            **kwargs,
        )

    def _limiter(self) -> TokenBucket:
        return TokenBucket(self._rate, clock=self._clock, sleep=self._sleep)

    # Caches

    def reset_caches(self) -> None:
        """Forget everything learned from the remote side."""
        self._existing.invalidate()
        self._accounts.invalidate()
        self._hashes.clear()
        logger.info("Sync caches reset")

    def forget(self, phone: str) -> None:
        self._existing.discard(phone)
        self._accounts.discard(phone)
        self._hashes.pop(phone, None)

    def cache_stats(self) -> dict[str, int | bool]:
        return {
            "existing_contacts": len(self._existing),
            "existing_contacts_fresh": self._existing.is_fresh,
            "registered_accounts": len(self._accounts),
            "registered_accounts_fresh": self._accounts.is_fresh,
            "content_hashes": len(self._hashes),
        }

    async def _has_token(self) -> bool:
        if self._tokens is None:
            return True
        return bool(await self._tokens.get_token())

    async def _ensure_existing_index(self) -> None:
        if self._existing.is_fresh:
            return
        index: dict[str, str] = {}
        page_number = 1
        while page_number <= MAX_CONTACT_PAGES:
            page = await self._backend.list_contacts(page=page_number, page_size=LISTING_PAGE_SIZE)
            for remote in page.items:
                phone = remote.normalized_phone
                if phone and remote.ref:
                    index[phone] = remote.ref
            if not page.has_more:
                break
            page_number += 1
        self._existing.replace(index)
        logger.info("Loaded remote-existing index: %d phones", len(index))

    async def _ensure_accounts(self) -> None:
        if self._accounts.is_fresh:
            return
        accounts: dict[str, RemoteAccount] = {}
        for page_number in range(1, MAX_USER_PAGES + 1):
            page = await self._backend.list_users(page=page_number, page_size=LISTING_PAGE_SIZE)
            for account in page.items:
                phone = account.normalized_phone
                if phone:
                    accounts[phone] = account
            if not page.has_more:
                break
        self._accounts.replace(accounts)
        logger.info("Loaded registered-accounts cache: %d accounts", len(accounts))

    # Push

    async def push(
        self,
        contacts: Iterable[Contact],
        *,
        force_sync: bool = False,
        cancel: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncResult:
        result = SyncResult()
        pending: list[tuple[Contact, str]] = []
        for contact in contacts:
            if not contact.display_name.strip() or not contact.phone.strip():
                result.invalid += 1
                result.errors.append(f"{contact.display_name or contact.id}: missing name or phone")
                continue
            digest = content_hash(contact)
            if not force_sync and digest in (self._hashes.get(contact.phone), contact.content_hash):
                result.skipped += 1
                continue
            pending.append((contact, digest))

        if not pending:
            result.success = True
            return result

        if not await self._has_token():
            result.errors.append("No valid authentication token")
            return result

        try:
            await self._ensure_existing_index()
        except AuthenticationError as exc:
            result.errors.append(f"Authentication failed: {exc}")
            return result
        except RemoteRequestError as exc:
            logger.warning("Could not preload remote contacts, pushing without index: %s", exc)

        logger.info("Pushing %d contacts (%d skipped, %d invalid)", len(pending), result.skipped, result.invalid)
        stop = CancellationToken()
        limiter = self._limiter()
        done = 0

        async def worker(item: tuple[Contact, str]) -> _Outcome | None:
            nonlocal done
            if cancel is not None and cancel.cancelled:
                stop.cancel(cancel.reason or "cancelled")
                return None
            outcome = await self._push_one(*item, stop=stop)
            done += 1
            if on_progress is not None:
                on_progress(percent(done, len(pending)))
            return outcome

        batches = list(chunked(pending, self.batch_size))
        for number, batch in enumerate(batches, start=1):
            outcomes = await run_bounded(
                batch, worker, concurrency=self.concurrency, cancel=stop, limiter=limiter
            )
            for outcome in outcomes:
                if outcome is None:
                    continue
                if outcome.kind == "created":
                    result.created += 1
                elif outcome.kind == "skipped":
                    result.skipped += 1
                elif outcome.kind == "auth":
                    if not any(e.startswith("Authentication failed") for e in result.errors):
                        result.errors.append(f"Authentication failed: {outcome.error}")
                else:
                    result.failed += 1
                    result.errors.append(outcome.error or "unknown error")
            if stop.cancelled:
                break
            if number < len(batches) and self._batch_pause > 0:
                await self._sleep(self._batch_pause)

        self._flush_repository(result)
        aborted = stop.cancelled
        if aborted and stop.reason != "authentication":
            result.errors.append(f"Synchronization stopped: {stop.reason}")
        result.success = not aborted and result.failed == 0
        logger.info(
            "Push finished: %d created, %d skipped, %d failed, %d invalid",
            result.created,
            result.skipped,
            result.failed,
            result.invalid,
        )
        return result

    async def _push_one(self, contact: Contact, digest: str, *, stop: CancellationToken) -> _Outcome:
        phone = contact.phone
        if phone in self._existing:
            self._record_synced(contact, digest, remote_ref=self._existing.get(phone))
            return _Outcome("skipped")
        given, family = parse_full_name(contact.display_name)
        try:
            remote = await self._backend.create_contact(
                first_name=given,
                last_name=family,
                telephone=phone,
                email=(contact.email or "").strip() or None,
            )
        except RemoteConflictError:
            logger.info("Remote contact %s already exists", phone)
            self._existing.set(phone, None)
            self._record_synced(contact, digest)
            return _Outcome("skipped")
        except AuthenticationError as exc:
            stop.cancel("authentication")
            return _Outcome("auth", str(exc))
        except RemoteRequestError as exc:
            logger.warning("Push of %s failed: %s", phone, exc)
            return _Outcome("failed", f"{contact.display_name}: {exc.message}")

        self._existing.set(phone, remote.ref)
        self._record_synced(contact, digest, remote=remote)
        return _Outcome("created")

    def _record_synced(
        self,
        contact: Contact,
        digest: str,
        *,
        remote_ref: str | None = None,
        remote: RemoteContact | None = None,
    ) -> None:
        """Store the content hash and, when known, the remote identifiers.

        Without a created record, ``remote_ref`` from the existing index
        becomes the remote id unless one is already stored.
        """
        self._hashes[contact.phone] = digest
        changes: dict = {"content_hash": digest}
        if remote is not None:
            changes["remote_id"] = str(remote.id) if remote.id is not None else remote.ref
            changes["remote_doc_ref"] = remote.document_id
        elif remote_ref and not contact.remote_id:
            changes["remote_id"] = remote_ref
        if "remote_id" in changes:
            stored = self._repository.get_by_phone(contact.phone)
            if stored is not None and stored.source is Source.DEVICE:
                changes["source"] = Source.CURATED
                changes["details"] = CuratedDetails()
        self._repository.update(contact.phone, changes, defer_persist=True)

    def _flush_repository(self, result: SyncResult) -> None:
        try:
            self._repository.flush()
        except StorageError as exc:
            logger.exception("Could not persist pushed contacts")
            result.errors.append(f"Could not persist contacts: {exc}")

    async def sync_missing_remote_ids(self, *, cancel: CancellationToken | None = None) -> SyncResult:
        """Attach remote ids to network contacts that were pushed without one."""
        result = SyncResult()
        targets = [
            c for c in self._repository.get_all() if c.source in NETWORK_SOURCES and not c.remote_id
        ]
        limiter = self._limiter()
        for contact in targets:
            if cancel is not None and cancel.cancelled:
                result.errors.append(f"Synchronization stopped: {cancel.reason}")
                break
            await limiter.acquire()
            try:
                matches = await self._backend.find_contacts_by_phone(contact.phone)
            except AuthenticationError as exc:
                result.errors.append(f"Authentication failed: {exc}")
                break
            except RemoteRequestError as exc:
                result.failed += 1
                result.errors.append(f"{contact.display_name}: {exc.message}")
                continue
            remote = next((m for m in matches if m.ref), None)
            if remote is None:
                continue
            self._repository.update(
                contact.phone,
                {
                    "remote_id": str(remote.id) if remote.id is not None else remote.ref,
                    "remote_doc_ref": remote.document_id,
                },
                defer_persist=True,
            )
            self._existing.set(contact.phone, remote.ref)
            result.updated += 1
        self._flush_repository(result)
        result.success = not result.errors
        return result

    # Detection

    async def detect(
        self,
        contacts: Iterable[Contact],
        *,
        cancel: CancellationToken | None = None,
    ) -> DetectionResult:
        result = DetectionResult()
        originals: dict[str, str] = {}
        priority: dict[str, bool] = {}
        now = self._now()
        for contact in contacts:
            normalized = normalize_phone(contact.phone)
            if normalized is None:
                continue
            originals.setdefault(normalized, contact.phone)
            priority[normalized] = priority.get(normalized, False) or is_high_priority(contact, now=now)
        result.total_checked = len(originals)
        if not originals:
            return result

        if not await self._has_token():
            result.errors.append("No valid authentication token")
            return result
        try:
            await self._ensure_accounts()
        except AuthenticationError as exc:
            result.errors.append(f"Authentication failed: {exc}")
            return result
        except RemoteRequestError as exc:
            logger.warning("Could not load registered accounts: %s", exc)
            result.errors.append(f"Could not load registered accounts: {exc.message}")
            return result

        ordered = sorted(originals, key=lambda phone: not priority[phone])
        for phone in ordered:
            if cancel is not None and cancel.cancelled:
                result.errors.append(f"Detection stopped: {cancel.reason}")
                break
            account = self._accounts.get(phone)
            result.registered[originals[phone]] = account is not None
            if account is not None:
                result.total_found += 1
                result.accounts[phone] = account
        logger.info("Detection: %d of %d phones registered", result.total_found, result.total_checked)
        return result

    # Remote deletion

    async def find_remote_ref(self, contact: Contact) -> str | None:
        """Locate the remote record of a contact by phone variants, then by name."""
        for variant in phone_variants(contact.phone):
            matches = await self._backend.find_contacts_by_phone(variant)
            remote = next((m for m in matches if m.ref), None)
            if remote is not None:
                return remote.ref
        name = contact.display_name.strip().lower()
        if not name:
            return None
        _, family = parse_full_name(contact.display_name)
        for remote in await self._backend.search_contacts_by_name(family or contact.display_name):
            first = (remote.first_name or "").strip().lower()
            last = (remote.last_name or "").strip().lower()
            if name in {remote.full_name.lower(), f"{last} {first}".strip(), first, last} and remote.ref:
                return remote.ref
        return None

    async def delete_remote(self, contact: Contact) -> bool:
        """Best-effort removal of a contact's remote record.

        Returns True when a record was deleted. Authentication failures
        propagate; a missing record is not an error.
        """
        direct = contact.remote_doc_ref or contact.remote_id
        if direct:
            deleted = await self._backend.delete_contact(direct)
            if deleted:
                self.forget(contact.phone)
                return True
        ref = await self.find_remote_ref(contact)
        self.forget(contact.phone)
        if ref is None or ref == direct:
            logger.info("No remote record left for %s", contact.phone)
            return False
        return await self._backend.delete_contact(ref)

    async def delete_all_remote(
        self,
        *,
        cancel: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> WipeResult:
        """Delete every remote contact of the user, then drop the remote caches."""
        result = WipeResult()
        refs: list[str] = []
        page_number = 1
        try:
            while page_number <= MAX_CONTACT_PAGES:
                page = await self._backend.list_contacts(page=page_number, page_size=LISTING_PAGE_SIZE)
                refs.extend(r.ref for r in page.items if r.ref)
                if not page.has_more:
                    break
                page_number += 1
        except AuthenticationError as exc:
            result.errors.append(f"Authentication failed: {exc}")
            return result
        except RemoteRequestError as exc:
            result.errors.append(f"Could not list remote contacts: {exc.message}")
            return result

        refs = list(dict.fromkeys(refs))
        result.total = len(refs)
        stop = CancellationToken()
        limiter = self._limiter()

        async def worker(ref: str) -> str | None:
            if cancel is not None and cancel.cancelled:
                stop.cancel(cancel.reason or "cancelled")
                return None
            try:
                await self._backend.delete_contact(ref)
            except AuthenticationError as exc:
                stop.cancel("authentication")
                return f"Authentication failed: {exc}"
            except RemoteRequestError as exc:
                return f"{ref}: {exc.message}"
            return ""

        for batch in chunked(refs, self.delete_batch_size):
            outcomes = await run_bounded(
                batch, worker, concurrency=self.concurrency, cancel=stop, limiter=limiter
            )
            for outcome in outcomes:
                if outcome is None:
                    continue
                if outcome:
                    result.failed += 1
                    result.errors.append(outcome)
                else:
                    result.deleted += 1
            if on_progress is not None:
                on_progress(result.percentage)
            if stop.cancelled:
                break

        # Remote truth changed outside push/detect: nothing cached may survive.
        self.reset_caches()
        logger.info("Remote wipe: %d of %d deleted (%d%%)", result.deleted, result.total, result.percentage)
        return result

    # Invitations

    async def send_invitation(
        self,
        contact: Contact,
        channel: InvitationChannel = InvitationChannel.SMS,
        message: str | None = None,
    ) -> RemoteInvitation:
        return await self._backend.create_invitation(
            telephone=contact.phone,
            name=contact.display_name,
            channel=InvitationChannel(channel).value,
            message=message,
        )

    async def cancel_invitation(self, invitation_ref: str) -> bool:
        return await self._backend.delete_invitation(invitation_ref)

    async def fetch_invitations(self) -> list[RemoteInvitation]:
        return await self._backend.list_invitations()
