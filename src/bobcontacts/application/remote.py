"""Records exchanged with the remote contact-management backend."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bobcontacts.domain.phone import normalize_phone


class _RemoteRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int | str | None = None
    document_id: str | None = Field(default=None, alias="documentId")

    @property
    def ref(self) -> str | None:
        """Identifier to address the record with (document id first)."""
        if self.document_id:
            return self.document_id
        if self.id is not None and str(self.id).strip():
            return str(self.id)
        return None


class RemoteContact(_RemoteRecord):
    """A contact record stored on the backend."""

    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    telephone: str | None = None
    email: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p and p.strip()).strip()

    @property
    def normalized_phone(self) -> str | None:
        return normalize_phone(self.telephone)


class RemoteAccount(_RemoteRecord):
    """Summary of a registered user account."""

    username: str = ""
    telephone: str | None = None
    email: str | None = None
    reward_points: int = Field(default=0, alias="rewardPoints")
    tier: str = "beginner"
    is_online: bool = Field(default=False, alias="isOnline")
    last_active_at: datetime | None = Field(default=None, alias="lastActiveAt")
    avatar: str | None = None

    @field_validator("reward_points", mode="before")
    @classmethod
    def _coerce_points(cls, value: Any) -> int:
        if value is None or isinstance(value, bool):
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @property
    def normalized_phone(self) -> str | None:
        return normalize_phone(self.telephone)


class RemoteInvitation(_RemoteRecord):
    telephone: str | None = None
    name: str | None = None
    status: str = "sent"
    channel: str = "sms"
    sent_at: datetime | None = Field(default=None, alias="sentAt")
    responded_at: datetime | None = Field(default=None, alias="respondedAt")
    message: str | None = None

    @property
    def normalized_phone(self) -> str | None:
        return normalize_phone(self.telephone)


class RemotePage(BaseModel):
    """One page of a paginated listing."""

    items: list[Any] = Field(default_factory=list)
    page: int = 1
    page_size: int = 100
    page_count: int | None = None
    total: int | None = None

    @property
    def has_more(self) -> bool:
        if self.page_count is not None:
            return self.page < self.page_count
        return len(self.items) >= self.page_size
