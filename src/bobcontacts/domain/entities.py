"""Domain entities: Contact and its per-source details."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(str, Enum):
    """Where a contact currently sits in its lifecycle."""

    DEVICE = "device"
    CURATED = "curated"
    INVITED = "invited"
    REGISTERED = "registered"


# Lifecycle order; merges keep the higher rank.
SOURCE_RANK = {
    Source.DEVICE: 0,
    Source.CURATED: 1,
    Source.INVITED: 2,
    Source.REGISTERED: 3,
}

NETWORK_SOURCES = frozenset({Source.CURATED, Source.INVITED, Source.REGISTERED})


class InvitationStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


PENDING_INVITATION_STATUSES = frozenset(
    {InvitationStatus.SENT, InvitationStatus.DELIVERED, InvitationStatus.READ}
)


class InvitationChannel(str, Enum):
    SMS = "sms"
    WHATSAPP = "whatsapp"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class DeviceDetails:
    """Address-book data for a contact that only lives on the device."""

    raw_ref: str | None = None
    has_email: bool = False
    is_complete: bool = False


@dataclass(frozen=True)
class CuratedDetails:
    """A device contact the user added to their network.

    is_registered is tri-state: None until detection has run.
    """

    imported_at: datetime = field(default_factory=utcnow)
    is_registered: bool | None = None


@dataclass(frozen=True)
class RegisteredDetails:
    """Account data for a contact that has an account on the backend."""

    handle: str = ""
    reward_points: int = 0
    tier: str = "beginner"
    is_online: bool = False
    last_active_at: datetime | None = None
    relationship_status: str = "friend"


@dataclass(frozen=True)
class Invitation:
    id: str
    status: InvitationStatus = InvitationStatus.SENT
    sent_at: datetime = field(default_factory=utcnow)
    channel: InvitationChannel = InvitationChannel.SMS
    remote_ref: str | None = None
    responded_at: datetime | None = None
    message: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_INVITATION_STATUSES


@dataclass(frozen=True)
class InvitedDetails:
    invitation: Invitation


Details = DeviceDetails | CuratedDetails | RegisteredDetails | InvitedDetails

_DETAILS_FOR_SOURCE = {
    Source.DEVICE: DeviceDetails,
    Source.CURATED: CuratedDetails,
    Source.REGISTERED: RegisteredDetails,
    Source.INVITED: InvitedDetails,
}


@dataclass(frozen=True)
class Contact:
    """
    One person, whatever source it came from.
    The normalized phone is the business key: the store holds at most one
    Contact per phone, and sources are states of that single entity.
    """

    phone: str
    display_name: str = ""
    source: Source = Source.DEVICE
    details: Details = field(default_factory=DeviceDetails)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    given_name: str | None = None
    email: str | None = None
    avatar_ref: str | None = None
    added_at: datetime = field(default_factory=utcnow)
    remote_id: str | None = None
    remote_doc_ref: str | None = None
    content_hash: str | None = None

    def __post_init__(self):
        if not self.phone or not self.phone.strip():
            raise ValueError("Contact phone must be non-empty.")
        source = Source(self.source)
        object.__setattr__(self, "source", source)
        expected = _DETAILS_FOR_SOURCE[source]
        if not isinstance(self.details, expected):
            raise ValueError(
                f"Contact with source {source.value!r} requires {expected.__name__}, "
                f"got {type(self.details).__name__}."
            )

    @property
    def is_registered(self) -> bool | None:
        if self.source is Source.REGISTERED:
            return True
        if self.source is Source.INVITED:
            return False
        if self.source is Source.CURATED:
            return self.details.is_registered
        return None

    @property
    def invitation(self) -> Invitation | None:
        if isinstance(self.details, InvitedDetails):
            return self.details.invitation
        return None

    @property
    def in_network(self) -> bool:
        return self.source in NETWORK_SOURCES

    @property
    def rank(self) -> int:
        return SOURCE_RANK[self.source]


def merge_contacts(existing: Contact, incoming: Contact) -> Contact:
    """Merge two records for the same phone without ever demoting.

    The higher-ranked source (and its details) wins; on equal rank the incoming
    details win. Identity and creation date stay with the existing record, and
    missing descriptive or sync fields are filled from either side.
    """
    if existing.phone != incoming.phone:
        raise ValueError("Only contacts sharing a phone can be merged.")
    if incoming.rank >= existing.rank:
        source, details = incoming.source, incoming.details
    else:
        source, details = existing.source, existing.details
    return replace(
        existing,
        source=source,
        details=details,
        display_name=incoming.display_name or existing.display_name,
        given_name=incoming.given_name or existing.given_name,
        email=incoming.email or existing.email,
        avatar_ref=incoming.avatar_ref or existing.avatar_ref,
        remote_id=existing.remote_id or incoming.remote_id,
        remote_doc_ref=existing.remote_doc_ref or incoming.remote_doc_ref,
        content_hash=existing.content_hash or incoming.content_hash,
    )
