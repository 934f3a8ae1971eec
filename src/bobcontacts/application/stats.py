"""Pure statistics over a snapshot of contacts."""

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from bobcontacts.domain import Contact, InvitationStatus, RegisteredDetails, Source, region_for_phone
from bobcontacts.domain.entities import utcnow

VERY_COMPLETE_SCORE = 80
MINIMAL_SCORE = 40


@dataclass(frozen=True)
class TemporalStats:
    added_today: int = 0
    added_this_week: int = 0
    added_this_month: int = 0
    last_added_at: datetime | None = None


@dataclass(frozen=True)
class ContactsStats:
    total: int = 0
    device_count: int = 0
    network_count: int = 0
    registered_count: int = 0
    invited_count: int = 0
    curated_only_count: int = 0
    unregistered_in_network: int = 0
    available_device_count: int = 0
    pending_invitations: int = 0
    accepted_invitations: int = 0
    with_email: int = 0
    complete: int = 0
    curation_rate: int = 0
    registered_rate: int = 0
    by_source: dict[str, int] = field(default_factory=dict)
    geographic: dict[str, int] = field(default_factory=dict)
    temporal: TemporalStats = field(default_factory=TemporalStats)
    calculated_at: datetime | None = None


@dataclass(frozen=True)
class InvitationStats:
    total: int = 0
    accepted: int = 0
    declined: int = 0
    pending: int = 0
    acceptance_rate: int = 0
    last_sent_at: datetime | None = None


@dataclass(frozen=True)
class QualityMetrics:
    average_score: int = 0
    very_complete: int = 0
    minimal: int = 0
    with_avatar: int = 0
    potential_duplicates: int = 0


@dataclass(frozen=True)
class StatsReport:
    stats: ContactsStats
    quality: QualityMetrics
    invitations: InvitationStats
    summary: str


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half up; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return math.floor(part * 100 / whole + 0.5)


def _is_complete(contact: Contact) -> bool:
    if contact.source is Source.DEVICE and contact.details.is_complete:
        return True
    return bool(contact.display_name and contact.given_name and contact.email)


def _has_email(contact: Contact) -> bool:
    return bool(contact.email and contact.email.strip())


def calculate_temporal_stats(contacts: Iterable[Contact], *, now: datetime) -> TemporalStats:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)
    added_today = added_week = added_month = 0
    last: datetime | None = None
    for contact in contacts:
        added = contact.added_at
        if added is None:
            continue
        if added >= today:
            added_today += 1
        if added >= week_start:
            added_week += 1
        if added >= month_start:
            added_month += 1
        if last is None or added > last:
            last = added
    return TemporalStats(
        added_today=added_today,
        added_this_week=added_week,
        added_this_month=added_month,
        last_added_at=last,
    )


def calculate_stats(contacts: Iterable[Contact], *, now: datetime | None = None) -> ContactsStats:
    """Counts, rates and distributions for one snapshot.

    network_count always equals registered + invited + curated-only because
    each contact has exactly one source.
    """
    contacts = list(contacts)
    now = now or utcnow()
    by_source = Counter(c.source for c in contacts)
    device = by_source[Source.DEVICE]
    curated = by_source[Source.CURATED]
    invited = by_source[Source.INVITED]
    registered = by_source[Source.REGISTERED]
    network = sum(1 for c in contacts if c.in_network)
    total = len(contacts)

    invitations = [c.invitation for c in contacts if c.invitation is not None]
    geographic = Counter(region_for_phone(c.phone) for c in contacts)

    return ContactsStats(
        total=total,
        device_count=device,
        network_count=network,
        registered_count=registered,
        invited_count=invited,
        curated_only_count=curated,
        unregistered_in_network=network - registered,
        available_device_count=sum(
            1 for c in contacts if c.source is Source.DEVICE and not c.remote_id
        ),
        pending_invitations=sum(1 for i in invitations if i.is_pending),
        accepted_invitations=sum(1 for i in invitations if i.status is InvitationStatus.ACCEPTED),
        with_email=sum(1 for c in contacts if _has_email(c)),
        complete=sum(1 for c in contacts if _is_complete(c)),
        curation_rate=percent(network, total),
        registered_rate=percent(registered, network),
        by_source={source.value: by_source[source] for source in Source},
        geographic=dict(sorted(geographic.items())),
        temporal=calculate_temporal_stats(contacts, now=now),
        calculated_at=now,
    )


def calculate_invitation_stats(contacts: Iterable[Contact]) -> InvitationStats:
    invitations = [c.invitation for c in contacts if c.invitation is not None]
    accepted = sum(1 for i in invitations if i.status is InvitationStatus.ACCEPTED)
    return InvitationStats(
        total=len(invitations),
        accepted=accepted,
        declined=sum(1 for i in invitations if i.status is InvitationStatus.DECLINED),
        pending=sum(1 for i in invitations if i.is_pending),
        acceptance_rate=percent(accepted, len(invitations)),
        last_sent_at=max((i.sent_at for i in invitations), default=None),
    )


def quality_score(contact: Contact) -> int:
    """Completeness score out of 100."""
    score = 0
    if contact.display_name and contact.display_name.strip():
        score += 15
    if contact.given_name and contact.given_name.strip():
        score += 15
    if len(contact.phone) > 8:
        score += 25
    if contact.email and "@" in contact.email:
        score += 20
    if contact.avatar_ref:
        score += 10
    if contact.is_registered:
        score += 10
    if isinstance(contact.details, RegisteredDetails) and contact.details.handle:
        score += 5
    return score


def calculate_quality_metrics(contacts: Iterable[Contact]) -> QualityMetrics:
    contacts = list(contacts)
    scores = [quality_score(c) for c in contacts]
    digits = Counter("".join(ch for ch in c.phone if ch.isdigit()) for c in contacts)
    return QualityMetrics(
        average_score=math.floor(sum(scores) / len(scores) + 0.5) if scores else 0,
        very_complete=sum(1 for s in scores if s >= VERY_COMPLETE_SCORE),
        minimal=sum(1 for s in scores if s <= MINIMAL_SCORE),
        with_avatar=sum(1 for c in contacts if c.avatar_ref),
        potential_duplicates=sum(n - 1 for n in digits.values() if n > 1),
    )


def summarize(stats: ContactsStats, quality: QualityMetrics, invitations: InvitationStats) -> str:
    lines = [
        f"{stats.total} contacts known",
        f"{stats.network_count} contacts in your network ({stats.curation_rate}%)",
        f"{stats.registered_count} contacts are registered ({stats.registered_rate}%)",
    ]
    if stats.available_device_count:
        lines.append(f"{stats.available_device_count} device contacts available to add")
    if invitations.total:
        lines.append(f"{invitations.total} invitations sent")
        lines.append(f"{invitations.acceptance_rate}% acceptance rate")
    lines.append(f"Average quality score: {quality.average_score}/100")
    if quality.potential_duplicates:
        lines.append(f"{quality.potential_duplicates} potential duplicates detected")
    return "\n".join(lines)


def generate_report(contacts: Iterable[Contact], *, now: datetime | None = None) -> StatsReport:
    contacts = list(contacts)
    stats = calculate_stats(contacts, now=now)
    quality = calculate_quality_metrics(contacts)
    invitations = calculate_invitation_stats(contacts)
    return StatsReport(
        stats=stats,
        quality=quality,
        invitations=invitations,
        summary=summarize(stats, quality, invitations),
    )
