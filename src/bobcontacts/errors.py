"""Error types shared by the contacts engine."""


class ContactsError(RuntimeError):
    """Base contacts engine error."""


class PermissionDeniedError(ContactsError):
    """Raised when the device address book cannot be read."""


class AuthenticationError(ContactsError):
    """Raised when the remote backend rejects or lacks a bearer token."""


class RemoteRequestError(ContactsError):
    """Raised when a remote backend request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Remote request failed ({status_code}): {message}")


class RemoteConflictError(RemoteRequestError):
    """Raised when the backend reports the record already exists (409)."""

    def __init__(self, message: str = "already exists") -> None:
        super().__init__(status_code=409, message=message)


class StorageError(ContactsError):
    """Raised when the local collection store cannot be read or written."""


class InvariantViolation(ContactsError):
    """Raised on programmer errors that would corrupt the contact store."""
