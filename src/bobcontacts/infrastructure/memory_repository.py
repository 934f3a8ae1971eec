"""In-memory contact store keyed by normalized phone, with indexes, change feed and persistence."""

import logging
import math
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from bobcontacts.application.dto import ChangeEvent, ChangeKind, LoadReport, Page
from bobcontacts.application.ports import CollectionStore
from bobcontacts.domain import Contact, DeviceDetails, Source, merge_contacts
from bobcontacts.domain.entities import SOURCE_RANK, utcnow
from bobcontacts.errors import InvariantViolation, StorageError
from bobcontacts.infrastructure.indexes import (
    SearchIndexes,
    apply_delta,
    build_indexes,
    country_key,
    index_delta,
)
from bobcontacts.infrastructure.persistence.json_store import (
    METADATA_COLLECTION,
    SCHEMA_VERSION,
    contact_to_record,
    record_to_contact,
)

logger = logging.getLogger(__name__)

QUERY_CACHE_TTL_SECONDS = 120.0
MIN_INDEXED_QUERY_LENGTH = 3
SORT_KEYS = ("name", "date", "country")

Subscriber = Callable[[ChangeEvent], None]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InMemoryContactRepository:
    """Stores contacts in memory, one per normalized phone.

    Every mutation runs under a single re-entrant lock, keeps the search
    indexes in step through ``index_delta``/``apply_delta``, clears the query
    cache, notifies subscribers in mutation order and persists the affected
    state through the optional CollectionStore.
    """

    def __init__(
        self,
        store: CollectionStore | None = None,
        *,
        query_cache_ttl: float = QUERY_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._query_cache_ttl = query_cache_ttl
        self._clock = clock
        self._lock = threading.RLock()
        self._contacts: dict[str, Contact] = {}
        self._ids: dict[str, str] = {}
        self._indexes = SearchIndexes()
        self._query_cache: dict[str, tuple[float, list[str]]] = {}
        self._subscribers: list[Subscriber] = []
        self._dirty = False
        self._batch_snapshot: dict[str, Contact] | None = None
        self._batch_phones: list[str] = []
        self.load_error: str | None = None
        self.metrics = {"searches": 0, "cache_hits": 0, "cache_misses": 0}

    # Reads

    def get_all(self) -> list[Contact]:
        with self._lock:
            return list(self._contacts.values())

    def get_by_phone(self, phone: str) -> Contact | None:
        with self._lock:
            return self._contacts.get(phone)

    def get_by_id(self, contact_id: str) -> Contact | None:
        with self._lock:
            phone = self._ids.get(contact_id)
            return self._contacts.get(phone) if phone is not None else None

    def get_by_source(self, source: Source | str) -> list[Contact]:
        source = Source(source)
        with self._lock:
            return [c for c in self._contacts.values() if c.source is source]

    def exists(self, phone: str) -> bool:
        with self._lock:
            return phone in self._contacts

    def count(self) -> int:
        with self._lock:
            return len(self._contacts)

    def get_by_email_domain(self, domain: str) -> list[Contact]:
        with self._lock:
            phones = self._indexes.email_domains.get(domain.strip().lower(), set())
            return self._contacts_for(sorted(phones))

    def get_by_country(self, calling_code: str) -> list[Contact]:
        with self._lock:
            phones = self._indexes.countries.get(calling_code.strip(), set())
            return self._contacts_for(sorted(phones))

    def index_sizes(self) -> dict[str, int]:
        with self._lock:
            sizes = self._indexes.sizes()
            sizes["query_cache"] = len(self._query_cache)
            return sizes

    @property
    def indexes(self) -> SearchIndexes:
        return self._indexes

    @property
    def in_batch(self) -> bool:
        return self._batch_snapshot is not None

    def _contacts_for(self, phones: Iterable[str]) -> list[Contact]:
        return [self._contacts[p] for p in phones if p in self._contacts]

    # Search and pagination

    def search(self, query: str) -> list[Contact]:
        q = (query or "").strip().lower()
        if not q:
            return []
        with self._lock:
            self.metrics["searches"] += 1
            cached = self._query_cache.get(q)
            now = self._clock()
            if cached is not None and now - cached[0] < self._query_cache_ttl:
                self.metrics["cache_hits"] += 1
                return self._contacts_for(cached[1])
            self.metrics["cache_misses"] += 1

            matches: set[str] = set(self._indexes.names.get(q, set()))
            for word in q.split():
                if len(word) >= 2:
                    matches.update(self._indexes.tokens.get(word, set()))
            if not matches or len(q) < MIN_INDEXED_QUERY_LENGTH:
                for term, phones in self._indexes.tokens.items():
                    if q in term or term in q:
                        matches.update(phones)

            ranked = sorted(
                self._contacts_for(matches),
                key=lambda c: (-_relevance(c, q), c.phone),
            )
            self._query_cache[q] = (now, [c.phone for c in ranked])
            return ranked

    def paginate(self, page: int = 1, page_size: int = 50, sort_key: str = "name") -> Page:
        if sort_key not in SORT_KEYS:
            raise ValueError(f"sort_key must be one of {SORT_KEYS}, got {sort_key!r}")
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be >= 1")
        with self._lock:
            contacts = list(self._contacts.values())
        if sort_key == "name":
            contacts.sort(key=lambda c: ((c.display_name or "").lower(), c.phone))
        elif sort_key == "date":
            contacts.sort(key=lambda c: (-(c.added_at or _EPOCH).timestamp(), c.phone))
        else:
            contacts.sort(key=lambda c: (country_key(c.phone), c.phone))
        total = len(contacts)
        total_pages = math.ceil(total / page_size)
        offset = (page - 1) * page_size
        return Page(
            contacts=contacts[offset : offset + page_size],
            total_count=total,
            total_pages=total_pages,
            current_page=page,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )

    # Change feed

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, kind: ChangeKind, contacts: Iterable[Contact] = (), phones: Iterable[str] = ()) -> None:
        event = ChangeEvent(kind=kind, contacts=tuple(contacts), phones=tuple(phones))
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Contacts subscriber failed on %s event", kind.value)

    # Mutations

    def _put(self, contact: Contact) -> tuple[Contact | None, Contact]:
        """Insert or merge one contact. Caller holds the lock."""
        existing = self._contacts.get(contact.phone)
        if existing is None:
            owner = self._ids.get(contact.id)
            if owner is not None and owner != contact.phone:
                contact = replace(contact, id=str(uuid.uuid4()))
            stored = contact
        else:
            stored = merge_contacts(existing, contact)
        self._replace(existing, stored)
        return existing, stored

    def _replace(self, old: Contact | None, new: Contact | None) -> None:
        apply_delta(self._indexes, index_delta(old, new))
        if old is not None:
            self._ids.pop(old.id, None)
            if new is None:
                del self._contacts[old.phone]
        if new is not None:
            self._contacts[new.phone] = new
            self._ids[new.id] = new.phone
        self._query_cache.clear()
        self._dirty = True
        phone = (new or old).phone
        if self.in_batch:
            self._batch_phones.append(phone)

    def _after_mutation(
        self,
        kind: ChangeKind,
        contacts: Iterable[Contact] = (),
        phones: Iterable[str] = (),
        *,
        defer_persist: bool = False,
    ) -> None:
        if self.in_batch:
            return
        if not defer_persist:
            self._persist_quietly()
        self._emit(kind, contacts, phones)

    def add(self, contact: Contact) -> Contact:
        """Add a contact, merging into the existing entity when the phone is known."""
        with self._lock:
            existing, stored = self._put(contact)
            kind = ChangeKind.ADD if existing is None else ChangeKind.UPDATE
            self._after_mutation(kind, [stored], [stored.phone])
            return stored

    def add_many(self, contacts: Iterable[Contact], *, defer_persist: bool = False) -> list[Contact]:
        with self._lock:
            stored = [self._put(contact)[1] for contact in contacts]
            if stored:
                self._after_mutation(
                    ChangeKind.BULK_UPDATE,
                    stored,
                    [c.phone for c in stored],
                    defer_persist=defer_persist,
                )
            return stored

    def update(
        self,
        phone: str,
        changes: Mapping[str, Any],
        *,
        defer_persist: bool = False,
        allow_demotion: bool = False,
    ) -> Contact | None:
        """Apply field changes to the contact stored under ``phone``.

        Returns the updated contact, or None when the phone is unknown. Changing
        the phone raises InvariantViolation, and so does moving to a
        lower-ranked source unless ``allow_demotion`` is set by an explicit
        demotion path.
        """
        with self._lock:
            old = self._contacts.get(phone)
            if old is None:
                logger.warning("Update ignored: no contact for %s", phone)
                return None
            if "phone" in changes and changes["phone"] != phone:
                raise InvariantViolation("The phone of a stored contact cannot change.")
            new = replace(old, **dict(changes))
            if not allow_demotion and SOURCE_RANK[new.source] < SOURCE_RANK[old.source]:
                raise InvariantViolation(
                    f"Update would demote {phone} from {old.source.value} to {new.source.value}."
                )
            self._replace(old, new)
            self._after_mutation(ChangeKind.UPDATE, [new], [phone], defer_persist=defer_persist)
            return new

    def demote_to_device(self, phone: str, details: DeviceDetails | None = None) -> Contact | None:
        """Return a contact to the device state, dropping remote and invitation data."""
        with self._lock:
            old = self._contacts.get(phone)
            if old is None:
                return None
            new = replace(
                old,
                source=Source.DEVICE,
                details=details or DeviceDetails(has_email=bool(old.email)),
                remote_id=None,
                remote_doc_ref=None,
                content_hash=None,
            )
            self._replace(old, new)
            self._after_mutation(ChangeKind.UPDATE, [new], [phone])
            return new

    def remove(self, phone: str) -> Contact | None:
        with self._lock:
            old = self._contacts.get(phone)
            if old is None:
                return None
            self._replace(old, None)
            self._after_mutation(ChangeKind.REMOVE, [old], [phone])
            return old

    def remove_many(self, phones: Iterable[str]) -> list[Contact]:
        with self._lock:
            removed = []
            for phone in phones:
                old = self._contacts.get(phone)
                if old is not None:
                    self._replace(old, None)
                    removed.append(old)
            if removed:
                self._after_mutation(ChangeKind.REMOVE, removed, [c.phone for c in removed])
            return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._contacts)
            phones = list(self._contacts)
            self._contacts.clear()
            self._ids.clear()
            self._indexes.clear()
            self._query_cache.clear()
            self._dirty = True
            if self.in_batch:
                self._batch_phones.extend(phones)
            self._after_mutation(ChangeKind.CLEAR, (), phones)
            return count

    # Batches

    def begin_batch(self) -> None:
        with self._lock:
            if self.in_batch:
                raise InvariantViolation("A contacts batch is already open.")
            self._batch_snapshot = dict(self._contacts)
            self._batch_phones = []

    def commit_batch(self) -> ChangeEvent:
        with self._lock:
            if not self.in_batch:
                raise InvariantViolation("No contacts batch is open.")
            phones = list(dict.fromkeys(self._batch_phones))
            self._batch_snapshot = None
            self._batch_phones = []
            try:
                if self._dirty:
                    self.flush()
            finally:
                contacts = self._contacts_for(phones)
                event = ChangeEvent(kind=ChangeKind.BULK_UPDATE, contacts=tuple(contacts), phones=tuple(phones))
                self._emit(event.kind, event.contacts, event.phones)
            return event

    def rollback_batch(self) -> None:
        with self._lock:
            if self._batch_snapshot is None:
                raise InvariantViolation("No contacts batch is open.")
            self._reset(self._batch_snapshot.values())
            self._batch_snapshot = None
            self._batch_phones = []
            self._dirty = False
            logger.info("Contacts batch rolled back (%d contacts restored)", len(self._contacts))

    def _reset(self, contacts: Iterable[Contact]) -> None:
        self._contacts = {c.phone: c for c in contacts}
        self._ids = {c.id: c.phone for c in self._contacts.values()}
        self._indexes = build_indexes(self._contacts.values())
        self._query_cache.clear()

    # Persistence

    def load(self) -> LoadReport:
        """Load every collection from the store.

        A storage failure leaves the repository empty and is reported in the
        returned LoadReport and in ``load_error``.
        """
        with self._lock:
            self.load_error = None
            contacts: list[Contact] = []
            if self._store is not None:
                try:
                    contacts = self._read_collections()
                except (StorageError, KeyError, TypeError, ValueError) as exc:
                    self.load_error = str(exc)
                    logger.error("Could not load contacts, starting empty: %s", exc)
                    contacts = []
            self._reset(contacts)
            self._dirty = False
            if self._contacts:
                self._emit(ChangeKind.LOAD, self._contacts.values(), list(self._contacts))
            else:
                self._emit(ChangeKind.SCAN_NEEDED)
            logger.info("Loaded %d contacts", len(self._contacts))
            return LoadReport(loaded=len(self._contacts), error=self.load_error)

    def _read_collections(self) -> list[Contact]:
        metadata = self._store.read(METADATA_COLLECTION) or {}
        if not isinstance(metadata, dict):
            raise StorageError(f"Corrupt contacts metadata: expected an object, got {type(metadata).__name__}")
        version = metadata.get("schema_version", SCHEMA_VERSION)
        if version > SCHEMA_VERSION:
            raise StorageError(f"Unsupported contacts schema version {version}")
        contacts: dict[str, Contact] = {}
        for source in Source:
            records = self._store.read(source.value) or []
            if not isinstance(records, list):
                raise StorageError(f"Corrupt {source.value} collection: expected a list, got {type(records).__name__}")
            for record in records:
                if not isinstance(record, dict):
                    raise StorageError(f"Corrupt {source.value} record: expected an object, got {type(record).__name__}")
                contact = record_to_contact(record)
                previous = contacts.get(contact.phone)
                contacts[contact.phone] = contact if previous is None else merge_contacts(previous, contact)
        return list(contacts.values())

    def flush(self) -> None:
        """Write every collection and the metadata record. Raises StorageError."""
        with self._lock:
            if self.in_batch:
                return
            if self._store is None:
                self._dirty = False
                return
            grouped: dict[Source, list[dict[str, Any]]] = {source: [] for source in Source}
            for contact in self._contacts.values():
                grouped[contact.source].append(contact_to_record(contact))
            for source, records in grouped.items():
                self._store.write(source.value, records)
            self._store.write(
                METADATA_COLLECTION,
                {
                    "schema_version": SCHEMA_VERSION,
                    "last_update": utcnow().isoformat(),
                    "count": len(self._contacts),
                },
            )
            self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _persist_quietly(self) -> None:
        try:
            self.flush()
        except StorageError:
            logger.exception("Could not persist contacts; changes stay in memory")


def _relevance(contact: Contact, query: str) -> int:
    names = [n.lower() for n in (contact.display_name, contact.given_name) if n]
    score = 0
    if query in names:
        score += 3
    if any(query in n for n in names):
        score += 2
    if (contact.email and query in contact.email.lower()) or query in contact.phone:
        score += 1
    return score
