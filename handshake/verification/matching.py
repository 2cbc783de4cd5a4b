"""
Identity Matching

The counterparty types their name and phone into a web form. Both are
untrusted and unformatted, and both are compared against what the recorder
typed on their phone. Matching is exact after normalization.

DESIGN DECISION: No fuzzy matching. A confirmation is a financially
significant statement; "Ravi Kummar" is not "Ravi Kumar".
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")

DEFAULT_PHONE_DIGITS = 10


def normalize_name(name: Optional[str]) -> str:
    """Trim surrounding whitespace and fold case. Inner spacing is kept."""
    return (name or "").strip().casefold()


def names_match(asserted: Optional[str], recorded: Optional[str]) -> bool:
    asserted_norm = normalize_name(asserted)
    if not asserted_norm:
        return False
    return asserted_norm == normalize_name(recorded)


def normalize_phone(phone: Optional[str], digits: int = DEFAULT_PHONE_DIGITS) -> str:
    """
    Reduce a phone number to its national significant number.

    Strips every non-digit, then keeps the last `digits` digits, which drops
    a leading country code ("+91 ...") or trunk prefix ("0...").

        >>> normalize_phone("+91 98765-43210")
        '9876543210'
        >>> normalize_phone("098765 43210")
        '9876543210'

    The result never grows under re-normalization, so the function is
    idempotent.
    """
    stripped = _NON_DIGITS.sub("", phone or "")
    if len(stripped) > digits:
        return stripped[-digits:]
    return stripped


def phones_match(
    asserted: Optional[str],
    recorded: Optional[str],
    digits: int = DEFAULT_PHONE_DIGITS,
) -> bool:
    """
    Compare two phone numbers after normalization.

    A loan recorded without a phone skips the check entirely; that is a
    product decision, since many family loans are noted down with a name
    only.
    """
    recorded_norm = normalize_phone(recorded, digits)
    if not recorded_norm:
        return True
    return normalize_phone(asserted, digits) == recorded_norm
