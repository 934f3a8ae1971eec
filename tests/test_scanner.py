import pytest

from bobcontacts.application import ContactsScanner, RawDeviceContact
from bobcontacts.application.scanner import PERMISSION_DENIED, build_full_name, to_device_contact
from bobcontacts.domain import Source
from bobcontacts.infrastructure import UploadedDeviceSource
from conftest import raw

pytestmark = pytest.mark.unit


def test_build_full_name_prefers_name():
    assert build_full_name(RawDeviceContact(name=" Alice M ", given_name="A")) == "Alice M"
    assert build_full_name(RawDeviceContact(given_name="Alice", family_name="Martin")) == "Alice Martin"
    assert build_full_name(RawDeviceContact()) == ""


def test_to_device_contact():
    contact = to_device_contact(
        RawDeviceContact(
            id="r1",
            given_name="Alice",
            family_name="Martin",
            phone_numbers=["", "06 12 34 56 78", "0712345678"],
            emails=[" alice@example.com "],
        )
    )
    assert contact.phone == "+33612345678"
    assert contact.id == "r1"
    assert contact.display_name == "Alice Martin"
    assert contact.email == "alice@example.com"
    assert contact.source is Source.DEVICE
    assert contact.details.raw_ref == "r1"
    assert contact.details.has_email and contact.details.is_complete


def test_to_device_contact_rejects_unusable_records():
    assert to_device_contact(RawDeviceContact(name="No Phone")) is None
    assert to_device_contact(RawDeviceContact(name="Short", phone_numbers=["12345"])) is None
    assert to_device_contact(RawDeviceContact(phone_numbers=["0612345678"])) is None


def test_generated_id_uses_phone():
    contact = to_device_contact(raw("Bob", "0612345678"))
    assert contact.id == "device_+33612345678"


async def test_scan_dedupes_and_sorts():
    source = UploadedDeviceSource(
        [
            raw("zoe", "0612345678"),
            raw("Alice", "06 12 34 56 78"),
            raw("Bob", "+1 415 555 2671"),
            raw("Nobody", "123"),
        ]
    )
    result = await ContactsScanner(source).scan()

    assert result.has_permission
    assert result.total == 2
    assert [c.display_name for c in result.contacts] == ["Bob", "zoe"]


async def test_scan_without_permission():
    result = await ContactsScanner(UploadedDeviceSource()).scan()
    assert result.has_permission is False
    assert result.errors == [PERMISSION_DENIED]
    assert result.contacts == []


class BrokenSource:
    async def request_permission(self):
        return True

    async def fetch_raw_contacts(self):
        raise OSError("address book unavailable")


async def test_scan_failure_is_reported():
    result = await ContactsScanner(BrokenSource()).scan()
    assert result.has_permission is False
    assert result.errors == ["address book unavailable"]
