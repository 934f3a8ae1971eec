"""REST surface tests. The manager is injected, so no backend or settings are needed."""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from bobcontacts.application import OPERATION_IN_PROGRESS, SyncResult

pytestmark = pytest.mark.unit

UPLOAD = {
    "contacts": [
        {"id": "r1", "name": "Alice Martin", "given_name": "Alice", "phone_numbers": ["06 12 34 56 78"], "emails": ["alice@example.com"]},
        {"id": "r2", "given_name": "Bob", "family_name": "Smith", "phone_numbers": ["+1 (415) 555-2671"]},
        {"id": "r3", "name": "No Phone"},
    ]
}


@pytest.fixture
def client(manager, device):
    with TestClient(create_app(manager, device)) as c:
        yield c


@pytest.fixture
def uploaded(client):
    r = client.post("/device/contacts", json=UPLOAD)
    assert r.status_code == 200
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_not_ready_without_manager():
    r = TestClient(create_app()).get("/contacts")
    assert r.status_code == 503


def test_upload_scans_device(uploaded):
    assert uploaded == {"total": 2, "has_permission": True, "errors": []}


def test_upload_without_permission(client):
    r = client.post("/device/contacts", json={"contacts": [], "permission_granted": False})
    assert r.status_code == 200
    assert r.json()["has_permission"] is False


def test_list_search_and_get(client, uploaded):
    page = client.get("/contacts", params={"page_size": 1}).json()
    assert page["total_count"] == 2
    assert page["total_pages"] == 2
    assert page["has_next_page"] is True
    assert page["contacts"][0]["display_name"] == "Alice Martin"

    found = client.get("/contacts/search", params={"q": "smith"}).json()
    assert [c["phone"] for c in found] == ["+14155552671"]

    alice = client.get("/contacts/+33612345678").json()
    assert alice["source"] == "device"
    assert alice["details"]["has_email"] is True

    assert client.get("/contacts/+33000000000").status_code == 404
    assert client.get("/contacts", params={"sort": "age"}).status_code == 400


def test_import_push_and_detect(client, uploaded, backend):
    backend.seed_user("+14155552671", username="bob")

    r = client.post("/contacts/import", json={"all": True, "push": True, "detect": True})

    assert r.status_code == 200
    body = r.json()
    assert body["imported"] == 2
    assert body["sync"]["created"] == 2
    assert body["detection"]["total_found"] == 1
    assert client.get("/contacts/+14155552671").json()["source"] == "registered"


def test_busy_manager_answers_conflict(client, manager, monkeypatch):
    async def busy(**kwargs):
        return SyncResult(errors=[OPERATION_IN_PROGRESS])

    monkeypatch.setattr(manager, "push", busy)
    r = client.post("/sync/push", json={"force_sync": True})
    assert r.status_code == 409


def test_block_and_unblock(client, uploaded):
    client.post("/contacts/import", json={"identifiers": ["0612345678"]})
    assert client.post("/sync/block").json() == {"sync_blocked": True}

    r = client.post("/sync/detect")
    assert r.status_code == 200
    assert r.json()["errors"] == ["Synchronization is blocked; unblock it before syncing again."]

    assert client.post("/sync/unblock").json() == {"sync_blocked": False}
    assert client.post("/sync/push").json()["created"] == 1


def test_invitation_endpoints(client, uploaded):
    r = client.post("/contacts/+14155552671/invitation", json={"channel": "whatsapp", "message": "Join"})
    assert r.status_code == 200
    assert r.json()["contact"]["source"] == "invited"
    assert r.json()["contact"]["details"]["invitation"]["channel"] == "whatsapp"

    r = client.delete("/contacts/+14155552671/invitation")
    assert r.status_code == 200
    assert r.json()["contact"]["source"] == "curated"

    assert client.delete("/contacts/+14155552671/invitation").status_code == 400


def test_delete_contact(client, uploaded):
    r = client.delete("/contacts/+33612345678")
    assert r.status_code == 200
    assert r.json()["restored_as_device"] is True
    assert client.delete("/contacts/unknown").status_code == 404


def test_stats_and_wipe(client, uploaded, backend):
    backend.seed_contact("+33699999999")

    stats = client.get("/stats").json()
    assert stats["stats"]["total"] == 2
    assert stats["summary"].startswith("2 contacts known")

    wipe = client.post("/remote/wipe").json()
    assert wipe["deleted"] == 1
    assert wipe["percentage"] == 100
    assert client.post("/sync/detect").json()["errors"]
