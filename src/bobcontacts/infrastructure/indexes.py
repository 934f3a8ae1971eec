"""Search index maintenance as pure functions over (old, new) contact pairs.

Four indexes map a key to the set of phones carrying it:
tokens (name/email/phone words), exact names, email domains and country
calling codes. Keys are a deterministic function of a contact, so removing a
contact only has to visit the buckets its own keys point at.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from bobcontacts.domain import Contact
from bobcontacts.domain.phone import country_calling_code

MIN_TOKEN_LENGTH = 2
UNKNOWN_COUNTRY = "unknown"

Buckets = dict[str, set[str]]


@dataclass(frozen=True)
class IndexKeys:
    tokens: frozenset[str] = frozenset()
    names: frozenset[str] = frozenset()
    email_domains: frozenset[str] = frozenset()
    countries: frozenset[str] = frozenset()


@dataclass
class SearchIndexes:
    tokens: Buckets = field(default_factory=dict)
    names: Buckets = field(default_factory=dict)
    email_domains: Buckets = field(default_factory=dict)
    countries: Buckets = field(default_factory=dict)

    def clear(self) -> None:
        self.tokens.clear()
        self.names.clear()
        self.email_domains.clear()
        self.countries.clear()

    def sizes(self) -> dict[str, int]:
        return {
            "tokens": len(self.tokens),
            "names": len(self.names),
            "email_domains": len(self.email_domains),
            "countries": len(self.countries),
        }


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return [word for word in text.lower().split() if len(word) >= MIN_TOKEN_LENGTH]


def email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def country_key(phone: str) -> str:
    return country_calling_code(phone) or UNKNOWN_COUNTRY


def index_keys(contact: Contact | None) -> IndexKeys:
    if contact is None or not contact.phone:
        return IndexKeys()
    full_name = f"{contact.display_name} {contact.given_name or ''}".strip()
    tokens: set[str] = set()
    for term in (contact.display_name, contact.given_name, contact.email, contact.phone, full_name):
        tokens.update(tokenize(term))
    names = {
        name.strip().lower()
        for name in (contact.display_name, contact.given_name)
        if name and name.strip()
    }
    domain = email_domain(contact.email)
    return IndexKeys(
        tokens=frozenset(tokens),
        names=frozenset(names),
        email_domains=frozenset({domain} if domain else ()),
        countries=frozenset({country_key(contact.phone)}),
    )


@dataclass(frozen=True)
class IndexDelta:
    phone_removed: str | None
    removed: IndexKeys
    phone_added: str | None
    added: IndexKeys


def index_delta(old: Contact | None, new: Contact | None) -> IndexDelta:
    """Describe the bucket changes needed to go from ``old`` to ``new``."""
    return IndexDelta(
        phone_removed=old.phone if old is not None else None,
        removed=index_keys(old),
        phone_added=new.phone if new is not None else None,
        added=index_keys(new),
    )


def _discard(buckets: Buckets, keys: Iterable[str], phone: str) -> None:
    for key in keys:
        phones = buckets.get(key)
        if phones is None:
            continue
        phones.discard(phone)
        if not phones:
            del buckets[key]


def _add(buckets: Buckets, keys: Iterable[str], phone: str) -> None:
    for key in keys:
        buckets.setdefault(key, set()).add(phone)


def apply_delta(indexes: SearchIndexes, delta: IndexDelta) -> None:
    if delta.phone_removed is not None:
        phone = delta.phone_removed
        _discard(indexes.tokens, delta.removed.tokens, phone)
        _discard(indexes.names, delta.removed.names, phone)
        _discard(indexes.email_domains, delta.removed.email_domains, phone)
        _discard(indexes.countries, delta.removed.countries, phone)
    if delta.phone_added is not None:
        phone = delta.phone_added
        _add(indexes.tokens, delta.added.tokens, phone)
        _add(indexes.names, delta.added.names, phone)
        _add(indexes.email_domains, delta.added.email_domains, phone)
        _add(indexes.countries, delta.added.countries, phone)


def build_indexes(contacts: Iterable[Contact]) -> SearchIndexes:
    indexes = SearchIndexes()
    for contact in contacts:
        apply_delta(indexes, index_delta(None, contact))
    return indexes


def dangling_phones(indexes: SearchIndexes, store: Mapping[str, Contact]) -> set[str]:
    """Phones referenced by some bucket but absent from the store."""
    referenced: set[str] = set()
    for buckets in (indexes.tokens, indexes.names, indexes.email_domains, indexes.countries):
        for phones in buckets.values():
            referenced.update(phones)
    return referenced - set(store)
