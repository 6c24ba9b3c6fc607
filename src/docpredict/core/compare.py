"""Canonicalizing comparison of predicted and provided values.

Spreadsheet exports spell the same value many ways: ``"25%"`` and ``"0.25"``,
``""`` and ``"0"``, ``"No Reporting"`` in any casing. Agreement between a
prediction and the value the document carried is decided on canonical forms:

* missing or whitespace-only → ``"Blank"``
* ``"No Reporting"`` (case-insensitive) → ``""``
* numeric strings (optionally signed, optionally ending in ``%`` which
  divides by 100) and numbers → :class:`~decimal.Decimal`; numeric zero →
  ``"Blank"``
* anything else → the stripped string

Examples:
    >>> compare("25%", "0.25")
    True
    >>> compare("", "0")
    True
    >>> compare("no reporting", "No Reporting")
    True
    >>> compare("A", "a")
    False
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

BLANK = "Blank"
NO_REPORTING = "no reporting"

_NUMERIC = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)(%?)$")


def canonicalize(value: Any) -> str | Decimal:
    """Return the canonical form used for agreement checks."""
    if value is None:
        return BLANK

    if isinstance(value, bool):
        value = str(value)

    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return str(value)
        return BLANK if number == 0 else number.normalize()

    text = str(value).strip()
    if not text:
        return BLANK

    if text.lower() == NO_REPORTING:
        return ""

    match = _NUMERIC.match(text)
    if match:
        number = Decimal(text.rstrip("%"))
        if match.group(3):
            number = number / 100
        return BLANK if number == 0 else number.normalize()

    return text


def compare(a: Any, b: Any) -> bool:
    """True when both values canonicalize to the same thing."""
    return canonicalize(a) == canonicalize(b)


def canonical_key(value: Any) -> str:
    """String form of :func:`canonicalize` for storage keys; equal iff :func:`compare` is true."""
    return repr(canonicalize(value))


__all__ = ["BLANK", "canonical_key", "canonicalize", "compare"]
