"""Domain layer: entities and value objects. No dependencies on outer layers."""

from bobcontacts.domain.entities import (
    NETWORK_SOURCES,
    SOURCE_RANK,
    Contact,
    CuratedDetails,
    DeviceDetails,
    Invitation,
    InvitationChannel,
    InvitationStatus,
    InvitedDetails,
    RegisteredDetails,
    Source,
    merge_contacts,
)
from bobcontacts.domain.phone import (
    MIN_PHONE_LENGTH,
    country_calling_code,
    normalize_phone,
    parse_full_name,
    region_for_phone,
)

__all__ = [
    "MIN_PHONE_LENGTH",
    "NETWORK_SOURCES",
    "SOURCE_RANK",
    "Contact",
    "CuratedDetails",
    "DeviceDetails",
    "Invitation",
    "InvitationChannel",
    "InvitationStatus",
    "InvitedDetails",
    "RegisteredDetails",
    "Source",
    "country_calling_code",
    "merge_contacts",
    "normalize_phone",
    "parse_full_name",
    "region_for_phone",
]
