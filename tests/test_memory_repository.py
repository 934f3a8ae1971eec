"""InMemoryContactRepository: uniqueness, indexes, search, events, batches and persistence."""

from datetime import datetime, timedelta, timezone

import pytest

from bobcontacts.application import ChangeKind
from bobcontacts.domain import (
    Contact,
    CuratedDetails,
    DeviceDetails,
    Invitation,
    InvitedDetails,
    RegisteredDetails,
    Source,
)
from bobcontacts.errors import InvariantViolation, StorageError
from bobcontacts.infrastructure import InMemoryContactRepository
from bobcontacts.infrastructure.indexes import build_indexes, dangling_phones, index_keys
from bobcontacts.infrastructure.persistence.json_store import METADATA_COLLECTION
from conftest import FailingStore

pytestmark = pytest.mark.unit

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def device(phone, name, **kw):
    return Contact(phone=phone, display_name=name, **kw)


def curated(phone, name, **kw):
    return Contact(phone=phone, display_name=name, source=Source.CURATED, details=CuratedDetails(imported_at=T0), **kw)


def assert_indexes_consistent(repo):
    contacts = {c.phone: c for c in repo.get_all()}
    assert dangling_phones(repo.indexes, contacts) == set()
    assert repo.indexes.sizes() == build_indexes(contacts.values()).sizes()


def test_add_merges_same_phone_into_one_entity(repository):
    first = repository.add(device("+33612345678", "Alice"))
    second = repository.add(curated("+33612345678", "Alice Martin", email="a@example.com"))

    assert repository.count() == 1
    assert second.id == first.id
    assert second.source is Source.CURATED
    assert second.display_name == "Alice Martin"
    assert second.email == "a@example.com"
    assert repository.get_by_id(first.id) is second


def test_merge_never_demotes(repository):
    repository.add(curated("+33612345678", "Alice"))
    stored = repository.add(device("+33612345678", "Alice M"))
    assert stored.source is Source.CURATED
    assert stored.display_name == "Alice M"


def test_id_clash_on_different_phone_gets_fresh_id(repository):
    a = repository.add(device("+33612345678", "Alice", id="same"))
    b = repository.add(device("+33712345678", "Bob", id="same"))
    assert a.id == "same"
    assert b.id != "same"
    assert repository.get_by_id(b.id).phone == "+33712345678"


def test_indexes_follow_every_mutation(repository):
    repository.add_many(
        [
            device("+33612345678", "Alice Martin", email="alice@example.com"),
            device("+14155552671", "Bob Martin", email="bob@example.com"),
        ]
    )
    assert_indexes_consistent(repository)
    assert [c.phone for c in repository.get_by_email_domain("EXAMPLE.com")] == ["+14155552671", "+33612345678"]
    assert [c.phone for c in repository.get_by_country("+1")] == ["+14155552671"]

    repository.update("+33612345678", {"display_name": "Alice Durand", "email": None})
    assert_indexes_consistent(repository)
    assert [c.phone for c in repository.get_by_email_domain("example.com")] == ["+14155552671"]

    repository.remove("+14155552671")
    assert_indexes_consistent(repository)
    assert repository.get_by_country("+1") == []

    assert repository.clear() == 1
    assert repository.index_sizes() == {
        "tokens": 0,
        "names": 0,
        "email_domains": 0,
        "countries": 0,
        "query_cache": 0,
    }


def test_search_by_any_token_until_removed(repository):
    contacts = repository.add_many(
        [
            device("+33600000001", "Alice Martin", email="alice@example.com"),
            device("+14155552671", "Bob Stone", given_name="Bobby"),
            device("+33600000003", "Chloé Durand"),
        ]
    )
    for contact in contacts:
        for token in index_keys(contact).tokens:
            assert contact in repository.search(token), token

    removed = repository.remove("+14155552671")
    for token in index_keys(removed).tokens:
        assert removed.phone not in [c.phone for c in repository.search(token)], token


def test_search_ranks_exact_name_first(repository):
    repository.add_many(
        [
            device("+33600000001", "Martin Dupont"),
            device("+33600000002", "Martin"),
            device("+33600000003", "Paul", email="martin@example.com"),
            device("+33600000004", "Zoe"),
        ]
    )
    phones = [c.phone for c in repository.search("Martin")]
    assert phones[0] == "+33600000002"
    assert phones[1] == "+33600000001"
    assert "+33600000004" not in phones


def test_short_query_falls_back_to_substring(repository):
    repository.add_many([device("+33600000001", "Chloe"), device("+33600000002", "Bob")])
    assert [c.phone for c in repository.search("ch")] == ["+33600000001"]
    assert repository.search("   ") == []


def test_search_cache_hits_and_invalidation(repository, clock):
    repository.add(device("+33600000001", "Alice"))
    repository.search("alice")
    repository.search("alice")
    assert repository.metrics["cache_hits"] == 1

    repository.add(device("+33600000002", "Alice Bis"))
    results = repository.search("alice")
    assert len(results) == 2
    assert repository.metrics["cache_hits"] == 1

    clock.advance(121)
    repository.search("alice")
    assert repository.metrics["cache_misses"] == 3


def test_paginate(repository):
    for i in range(5):
        repository.add(device(f"+3360000000{i}", f"Name {4 - i}", added_at=T0 + timedelta(days=i)))

    page = repository.paginate(page=2, page_size=2, sort_key="name")
    assert [c.display_name for c in page.contacts] == ["Name 2", "Name 3"]
    assert page.total_count == 5
    assert page.total_pages == 3
    assert page.has_next_page and page.has_prev_page

    newest = repository.paginate(1, 1, "date").contacts[0]
    assert newest.phone == "+33600000004"

    with pytest.raises(ValueError):
        repository.paginate(0, 10)
    with pytest.raises(ValueError):
        repository.paginate(1, 10, "age")


def test_events_are_delivered_in_order_and_isolated(repository):
    seen = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    repository.subscribe(broken)
    unsubscribe = repository.subscribe(lambda e: seen.append(e.kind))

    repository.add(device("+33600000001", "Alice"))
    repository.add(device("+33600000001", "Alice B"))
    repository.remove("+33600000001")
    unsubscribe()
    repository.add(device("+33600000002", "Bob"))

    assert seen == [ChangeKind.ADD, ChangeKind.UPDATE, ChangeKind.REMOVE]


def test_update_rejects_phone_change_and_demotion(repository):
    repository.add(curated("+33600000001", "Alice"))
    with pytest.raises(InvariantViolation):
        repository.update("+33600000001", {"phone": "+33600000002"})
    with pytest.raises(InvariantViolation):
        repository.update("+33600000001", {"source": Source.DEVICE, "details": DeviceDetails()})
    assert repository.update("+33699999999", {"display_name": "x"}) is None


def test_demote_to_device_clears_remote_metadata(repository):
    invitation = Invitation(id="i1", sent_at=T0)
    repository.add(
        Contact(
            phone="+33600000001",
            display_name="Alice",
            source=Source.INVITED,
            details=InvitedDetails(invitation),
            remote_id="7",
            remote_doc_ref="doc-7",
            content_hash="abc",
        )
    )
    demoted = repository.demote_to_device("+33600000001", DeviceDetails(raw_ref="r1"))
    assert demoted.source is Source.DEVICE
    assert demoted.details.raw_ref == "r1"
    assert (demoted.remote_id, demoted.remote_doc_ref, demoted.content_hash) == (None, None, None)


def test_batch_commit_emits_one_bulk_event(repository, store):
    events = []
    repository.subscribe(events.append)

    repository.begin_batch()
    repository.add(device("+33600000001", "Alice"))
    repository.add(device("+33600000002", "Bob"))
    assert store.collections == {}
    event = repository.commit_batch()

    assert [e.kind for e in events] == [ChangeKind.BULK_UPDATE]
    assert event.phones == ("+33600000001", "+33600000002")
    assert len(store.collections["device"]) == 2


def test_batch_rollback_restores_snapshot(repository):
    repository.add(device("+33600000001", "Alice"))
    repository.begin_batch()
    with pytest.raises(InvariantViolation):
        repository.begin_batch()
    repository.add(device("+33600000002", "Bob"))
    repository.update("+33600000001", {"display_name": "Changed"})
    repository.rollback_batch()

    assert repository.count() == 1
    assert repository.get_by_phone("+33600000001").display_name == "Alice"
    assert repository.search("bob") == []
    assert_indexes_consistent(repository)


def test_flush_writes_collections_per_source_and_load_reads_them(store, clock):
    repo = InMemoryContactRepository(store, clock=clock)
    repo.add(device("+33600000001", "Alice"))
    repo.add(curated("+33600000002", "Bob"))
    repo.add(
        Contact(
            phone="+33600000003",
            display_name="Carol",
            source=Source.REGISTERED,
            details=RegisteredDetails(handle="carol", reward_points=12),
        )
    )
    assert store.collections[METADATA_COLLECTION]["count"] == 3
    assert [r["phone"] for r in store.collections["curated"]] == ["+33600000002"]

    reloaded = InMemoryContactRepository(store, clock=clock)
    events = []
    reloaded.subscribe(events.append)
    report = reloaded.load()

    assert report.loaded == 3 and report.error is None
    assert events[0].kind is ChangeKind.LOAD
    assert reloaded.get_by_phone("+33600000003").details.reward_points == 12
    assert reloaded.search("carol")[0].phone == "+33600000003"


def test_load_of_empty_store_requests_scan(repository):
    events = []
    repository.subscribe(events.append)
    assert repository.load().loaded == 0
    assert events[0].kind is ChangeKind.SCAN_NEEDED


def test_load_failure_starts_empty_and_reports(store):
    store.write(METADATA_COLLECTION, {"schema_version": 99})
    repo = InMemoryContactRepository(store)
    report = repo.load()
    assert report.loaded == 0
    assert "schema version" in report.error
    assert repo.load_error == report.error


@pytest.mark.parametrize(
    "collection,value,message",
    [
        (METADATA_COLLECTION, [1], "Corrupt contacts metadata"),
        ("curated", {"phone": "+33600000001"}, "Corrupt curated collection"),
        ("device", ["x"], "Corrupt device record"),
        ("device", [{"phone": "+33600000001", "source": "device", "details": "x"}], "Corrupt details"),
    ],
)
def test_load_of_wrongly_shaped_collections_starts_empty(store, collection, value, message):
    store.write("device", [{"phone": "+33600000009", "display_name": "Kept", "source": "device"}])
    store.write(collection, value)
    repo = InMemoryContactRepository(store)
    events = []
    repo.subscribe(events.append)

    report = repo.load()

    assert report.loaded == 0
    assert message in report.error
    assert repo.load_error == report.error
    assert repo.count() == 0
    assert events[0].kind is ChangeKind.SCAN_NEEDED


def test_write_failure_keeps_changes_in_memory():
    repo = InMemoryContactRepository(FailingStore())
    repo.add(device("+33600000001", "Alice"))
    assert repo.count() == 1
    assert repo.dirty
    with pytest.raises(StorageError):
        repo.flush()


def test_batch_commit_announces_changes_even_when_flush_fails():
    repo = InMemoryContactRepository(FailingStore())
    events = []
    repo.subscribe(events.append)

    repo.begin_batch()
    repo.add(curated("+33600000001", "Alice"))
    repo.add(curated("+33600000002", "Bob"))
    with pytest.raises(StorageError, match="disk full"):
        repo.commit_batch()

    assert [e.kind for e in events] == [ChangeKind.BULK_UPDATE]
    assert events[0].phones == ("+33600000001", "+33600000002")
    assert not repo.in_batch
    assert repo.count() == 2
    assert repo.dirty
