"""ISO 6346 container number validation.

A container number is 4 letters (3 owner code letters plus the equipment
category) followed by a 6 digit serial and one check digit, e.g.
``MSCU6639870``. The check digit is computed from the first 10 characters.
"""

import re
import string
from typing import Iterable

from .errors import CheckDigitError, FormatError

CONTAINER_NUMBER_RE = re.compile(r"^[A-Z]{4}[0-9]{7}$")
PREFIX_RE = re.compile(r"^[A-Z]{4}[0-9]{6}$")


def _build_letter_map() -> dict[str, int]:
    values = {}
    value = 10
    for letter in string.ascii_uppercase:
        if value % 11 == 0:
            value += 1
        values[letter] = value
        value += 1
    return values


# A=10, B=12 ... Z=38; 11, 22 and 33 are never used.
LETTER_MAP = _build_letter_map()


def normalize_container_number(raw: str) -> str:
    return "".join((raw or "").split()).upper()


def compute_check_digit(prefix: str) -> int:
    """Return the check digit for the 10 leading characters of a number.

    Case and whitespace are ignored. Raises ``ValueError`` unless the prefix
    is 4 letters followed by 6 digits.
    """
    prefix = normalize_container_number(prefix)
    if not PREFIX_RE.match(prefix):
        raise ValueError(f"check digit needs 4 letters followed by 6 digits, got {prefix!r}")
    total = 0
    for position, char in enumerate(prefix):
        value = LETTER_MAP[char] if char.isalpha() else int(char)
        total += value * (2**position)
    return total % 11 % 10


def normalize(raw: str) -> str | FormatError | CheckDigitError:
    """Normalize and validate ``raw``.

    Returns the canonical 11 character number, or the error describing why it
    is not valid. Never raises for bad input.
    """
    number = normalize_container_number(raw)
    if not CONTAINER_NUMBER_RE.match(number):
        return FormatError(f"'{raw}' is not 4 letters followed by 7 digits")
    expected = compute_check_digit(number[:10])
    if int(number[10]) != expected:
        return CheckDigitError(
            f"check digit of {number} should be {expected}",
            expected=expected,
        )
    return number


def is_valid_iso6346(raw: str) -> bool:
    return isinstance(normalize(raw), str)


def validate_many(raws: Iterable[str]) -> list[str | FormatError | CheckDigitError]:
    return [normalize(raw) for raw in raws]


def equipment_category(number: str) -> str:
    return normalize_container_number(number)[3:4]


def format_display(number: str) -> str:
    """``MSCU6639870`` -> ``MSCU663987-0``. The stored form has no hyphen."""
    number = normalize_container_number(number)
    if len(number) != 11:
        return number
    return f"{number[:10]}-{number[10]}"
