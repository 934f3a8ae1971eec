"""Phone number normalization to the business key used across every source."""

import re

import phonenumbers

# Shorter results are not dialable numbers; the scanner drops them.
MIN_PHONE_LENGTH = 8

_NOT_DIALABLE = re.compile(r"[^\d+]")
_REPEATED_PLUS = re.compile(r"\++")
_FRENCH_TRUNK_DIGITS = "123456789"


def clean_phone(raw: str | None) -> str:
    """Keep digits and '+', collapsing runs of '+' into one."""
    if not raw:
        return ""
    cleaned = _NOT_DIALABLE.sub("", str(raw))
    return _REPEATED_PLUS.sub("+", cleaned)


def normalize_phone(raw: str | None) -> str | None:
    """Return the canonical phone key, or None if the number is unusable.

    Numbers already in international form ('+' prefix) are kept as they are.
    A 10-digit French national number (0 followed by 1-9) is rewritten to
    +33. Anything else keeps its cleaned digits: no country code is guessed.
    """
    cleaned = clean_phone(raw)
    if not cleaned:
        return None
    if (
        not cleaned.startswith("+")
        and len(cleaned) == 10
        and cleaned[0] == "0"
        and cleaned[1] in _FRENCH_TRUNK_DIGITS
    ):
        cleaned = "+33" + cleaned[1:]
    if len(cleaned) < MIN_PHONE_LENGTH:
        return None
    return cleaned


def phone_variants(phone: str) -> list[str]:
    """Alternative spellings of a phone, for remote lookups of legacy records."""
    candidates = [
        phone,
        clean_phone(phone),
        re.sub(r"^\+33", "0", phone),
        re.sub(r"^0", "+33", phone),
        re.sub(r"^\+", "", phone),
        re.sub(r"^\+", "00", phone),
    ]
    out: list[str] = []
    for candidate in candidates:
        if candidate and len(candidate) > 5 and candidate not in out:
            out.append(candidate)
    return out


def country_calling_code(phone: str | None) -> str | None:
    """Return the '+<code>' prefix of an international number, else None."""
    if not phone or not phone.startswith("+"):
        return None
    try:
        parsed = phonenumbers.parse(phone, None)
    except phonenumbers.NumberParseException:
        return None
    if not parsed.country_code:
        return None
    return f"+{parsed.country_code}"


def region_for_phone(phone: str | None) -> str:
    """ISO region of the number's calling code ('FR', 'US', ...) or 'unknown'."""
    code = country_calling_code(phone)
    if code is None:
        return "unknown"
    region = phonenumbers.region_code_for_country_code(int(code[1:]))
    if not region or region == phonenumbers.UNKNOWN_REGION:
        return "unknown"
    return region


def parse_full_name(full_name: str | None) -> tuple[str, str]:
    """Split a free-text name into (given, family).

    "Family - Given" uses the dash as separator; one word is a family name;
    otherwise the last word is the family name and the rest the given name.
    """
    cleaned = (full_name or "").strip()
    if not cleaned:
        return "", ""
    if " - " in cleaned:
        parts = cleaned.split(" - ")
        family = parts[0].strip()
        given = parts[1].strip() if len(parts) > 1 else ""
        return given, family
    parts = cleaned.split()
    if len(parts) == 1:
        return "", parts[0]
    return " ".join(parts[:-1]), parts[-1]
