"""Phone number normalization for outbound SMS.

Facility contacts are captured as a free-form, comma-separated string
("0701234567, +256701234567, 256701234567"). Before every send the list is
rewritten to canonical international form and de-duplicated. Tokens that
are not recognised are forwarded untouched; the gateway is the validator.
"""

import re
from functools import lru_cache

DEFAULT_COUNTRY_CODE = "256"

_WHITESPACE = re.compile(r"\s+")
_TELEPHONE = re.compile(r"^\+?\d{7,15}$")


@lru_cache(maxsize=8)
def _patterns(country_code: str) -> tuple[re.Pattern, re.Pattern, re.Pattern]:
    cc = re.escape(country_code)
    return (
        re.compile(r"^07\d{8}$"),
        re.compile(rf"^\+{cc}7\d{{8}}$"),
        re.compile(rf"^{cc}7\d{{8}}$"),
    )


def split_phones(raw: str | None) -> list[str]:
    """Split a comma-separated list, dropping blanks and inner whitespace."""
    if not raw:
        return []
    tokens = (_WHITESPACE.sub("", part) for part in raw.split(","))
    return [t for t in tokens if t]


def normalize_phone(token: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    local, canonical, bare = _patterns(country_code)
    if canonical.match(token):
        return token
    if local.match(token):
        return f"+{country_code}{token[1:]}"
    if bare.match(token):
        return f"+{token}"
    return token


def normalize_phones(raw: str | None, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Canonical, duplicate-free, comma-joined recipient list.

    Total and idempotent: never raises, and normalizing an already
    normalized string returns it unchanged.
    """
    normalized = (normalize_phone(t, country_code) for t in split_phones(raw))
    return ",".join(dict.fromkeys(normalized))


def is_valid_telephone(value: str | None) -> bool:
    """Loose international-or-local check used by the release form."""
    return bool(_TELEPHONE.match(_WHITESPACE.sub("", value or "")))
