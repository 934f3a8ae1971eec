"""JSON-file implementation of CollectionStore, plus Contact record mapping.
One file per named collection (device, curated, registered, invited, metadata).
Writes go through a temporary file and an atomic rename.
"""

import json
import os
import tempfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from bobcontacts.domain import (
    Contact,
    CuratedDetails,
    DeviceDetails,
    Invitation,
    InvitationChannel,
    InvitationStatus,
    InvitedDetails,
    RegisteredDetails,
    Source,
)
from bobcontacts.errors import StorageError

SCHEMA_VERSION = 3
METADATA_COLLECTION = "metadata"
CONTACT_COLLECTIONS = tuple(source.value for source in Source)


def _datetime_to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _iso_to_datetime(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


class JsonCollectionStore:
    """Stores each collection as ``<directory>/<name>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self._directory / f"{name}.json"

    def read(self, name: str) -> Any | None:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read collection {name!r}: {exc}") from exc

    def write(self, name: str, value: Any) -> None:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Could not write collection {name!r}: {exc}") from exc

    def delete(self, name: str) -> None:
        try:
            self._path(name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete collection {name!r}: {exc}") from exc


class MemoryCollectionStore:
    """CollectionStore kept in a dict; used when no data directory is configured."""

    def __init__(self) -> None:
        self.collections: dict[str, Any] = {}

    def read(self, name: str) -> Any | None:
        value = self.collections.get(name)
        return json.loads(json.dumps(value)) if value is not None else None

    def write(self, name: str, value: Any) -> None:
        self.collections[name] = json.loads(json.dumps(value))

    def delete(self, name: str) -> None:
        self.collections.pop(name, None)


def _details_to_record(contact: Contact) -> dict[str, Any]:
    d = contact.details
    if isinstance(d, DeviceDetails):
        return {"raw_ref": d.raw_ref, "has_email": d.has_email, "is_complete": d.is_complete}
    if isinstance(d, CuratedDetails):
        return {"imported_at": _datetime_to_iso(d.imported_at), "is_registered": d.is_registered}
    if isinstance(d, RegisteredDetails):
        return {
            "handle": d.handle,
            "reward_points": d.reward_points,
            "tier": d.tier,
            "is_online": d.is_online,
            "last_active_at": _datetime_to_iso(d.last_active_at),
            "relationship_status": d.relationship_status,
        }
    inv = d.invitation
    return {
        "invitation": {
            "id": inv.id,
            "remote_ref": inv.remote_ref,
            "status": inv.status.value,
            "sent_at": _datetime_to_iso(inv.sent_at),
            "responded_at": _datetime_to_iso(inv.responded_at),
            "channel": inv.channel.value,
            "message": inv.message,
        }
    }


def _record_to_details(source: Source, record: dict[str, Any]):
    if source is Source.DEVICE:
        return DeviceDetails(
            raw_ref=record.get("raw_ref"),
            has_email=bool(record.get("has_email")),
            is_complete=bool(record.get("is_complete")),
        )
    if source is Source.CURATED:
        imported_at = _iso_to_datetime(record.get("imported_at"))
        if imported_at is None:
            return CuratedDetails(is_registered=record.get("is_registered"))
        return CuratedDetails(imported_at=imported_at, is_registered=record.get("is_registered"))
    if source is Source.REGISTERED:
        return RegisteredDetails(
            handle=record.get("handle") or "",
            reward_points=int(record.get("reward_points") or 0),
            tier=record.get("tier") or "beginner",
            is_online=bool(record.get("is_online")),
            last_active_at=_iso_to_datetime(record.get("last_active_at")),
            relationship_status=record.get("relationship_status") or "friend",
        )
    inv = record.get("invitation") or {}
    invitation = Invitation(
        id=str(inv.get("id") or ""),
        remote_ref=inv.get("remote_ref"),
        status=InvitationStatus(inv.get("status") or InvitationStatus.SENT.value),
        channel=InvitationChannel(inv.get("channel") or InvitationChannel.SMS.value),
        responded_at=_iso_to_datetime(inv.get("responded_at")),
        message=inv.get("message"),
    )
    sent_at = _iso_to_datetime(inv.get("sent_at"))
    if sent_at is not None:
        invitation = replace(invitation, sent_at=sent_at)
    return InvitedDetails(invitation=invitation)


def contact_to_record(contact: Contact) -> dict[str, Any]:
    return {
        "id": contact.id,
        "phone": contact.phone,
        "display_name": contact.display_name,
        "given_name": contact.given_name,
        "email": contact.email,
        "avatar_ref": contact.avatar_ref,
        "added_at": _datetime_to_iso(contact.added_at),
        "source": contact.source.value,
        "details": _details_to_record(contact),
        "remote_id": contact.remote_id,
        "remote_doc_ref": contact.remote_doc_ref,
        "content_hash": contact.content_hash,
    }


def record_to_contact(record: dict[str, Any]) -> Contact:
    source = Source(record["source"])
    details = record.get("details") or {}
    if not isinstance(details, dict):
        raise StorageError(f"Corrupt details for contact {record.get('phone')!r}")
    kwargs: dict[str, Any] = {}
    added_at = _iso_to_datetime(record.get("added_at"))
    if added_at is not None:
        kwargs["added_at"] = added_at
    if record.get("id"):
        kwargs["id"] = record["id"]
    return Contact(
        phone=record["phone"],
        display_name=record.get("display_name") or "",
        source=source,
        details=_record_to_details(source, details),
        given_name=record.get("given_name"),
        email=record.get("email"),
        avatar_ref=record.get("avatar_ref"),
        remote_id=record.get("remote_id"),
        remote_doc_ref=record.get("remote_doc_ref"),
        content_hash=record.get("content_hash"),
        **kwargs,
    )
