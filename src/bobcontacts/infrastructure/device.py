"""DeviceContactsSource fed with address-book records uploaded by the client."""

from bobcontacts.application.dto import RawDeviceContact


class UploadedDeviceSource:
    """Serves the last uploaded snapshot of the device address book.

    Permission is granted once a snapshot has been uploaded, unless the
    client reported that the address book is not readable.
    """

    def __init__(self, contacts: list[RawDeviceContact] | None = None, *, granted: bool | None = None) -> None:
        self._contacts = list(contacts or [])
        self._granted = granted if granted is not None else contacts is not None

    def upload(self, contacts: list[RawDeviceContact], *, granted: bool = True) -> None:
        self._contacts = list(contacts)
        self._granted = granted

    async def request_permission(self) -> bool:
        return self._granted

    async def fetch_raw_contacts(self) -> list[RawDeviceContact]:
        return list(self._contacts)
