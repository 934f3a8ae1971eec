"""Device scanner: turns raw address-book records into device Contacts."""

import logging

from bobcontacts.application.dto import RawDeviceContact, ScanResult
from bobcontacts.application.ports import DeviceContactsSource
from bobcontacts.domain import Contact, DeviceDetails, Source, normalize_phone
from bobcontacts.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "Permission to read device contacts was denied."


def build_full_name(raw: RawDeviceContact) -> str:
    """Name first, then given + family names."""
    if raw.name and raw.name.strip():
        return raw.name.strip()
    parts = [p.strip() for p in (raw.given_name, raw.family_name) if p and p.strip()]
    return " ".join(parts)


def to_device_contact(raw: RawDeviceContact) -> Contact | None:
    """Build a device Contact from one raw record, or None if it is unusable."""
    first_phone = next((p for p in raw.phone_numbers if p and p.strip()), None)
    if first_phone is None:
        return None
    phone = normalize_phone(first_phone)
    if phone is None:
        return None
    full_name = build_full_name(raw)
    if not full_name:
        return None
    email = next((e.strip() for e in raw.emails if e and e.strip()), None)
    given_name = (raw.given_name or "").strip() or None
    kwargs = {"id": raw.id} if raw.id else {"id": f"device_{phone}"}
    return Contact(
        phone=phone,
        display_name=full_name,
        given_name=given_name,
        email=email,
        source=Source.DEVICE,
        details=DeviceDetails(
            raw_ref=raw.id,
            has_email=email is not None,
            is_complete=given_name is not None,
        ),
        **kwargs,
    )


class ContactsScanner:
    """Reads the device address book through a DeviceContactsSource."""

    def __init__(self, source: DeviceContactsSource) -> None:
        self._source = source

    async def scan(self) -> ScanResult:
        try:
            if not await self._source.request_permission():
                raise PermissionDeniedError(PERMISSION_DENIED)
            raw_contacts = await self._source.fetch_raw_contacts()
        except PermissionDeniedError as exc:
            logger.warning("Device contacts scan refused: %s", exc)
            return ScanResult(has_permission=False, errors=[str(exc)])
        except Exception as exc:
            logger.exception("Device contacts scan failed")
            return ScanResult(has_permission=False, errors=[str(exc) or type(exc).__name__])

        contacts: list[Contact] = []
        seen: set[str] = set()
        for raw in raw_contacts:
            try:
                contact = to_device_contact(raw)
            except ValueError as exc:
                logger.warning("Skipping device contact %s: %s", raw.id or raw.name, exc)
                continue
            if contact is None or contact.phone in seen:
                continue
            seen.add(contact.phone)
            contacts.append(contact)

        contacts.sort(key=lambda c: (c.display_name.lower(), c.phone))
        logger.info("Device scan: %d valid contacts out of %d raw", len(contacts), len(raw_contacts))
        return ScanResult(contacts=contacts, total=len(contacts), has_permission=True)
