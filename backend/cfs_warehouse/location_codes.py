"""Warehouse location addressing and code generation.

A location is addressed either by row/bay/slot (RBS zones) or by a free
custom label (CUSTOM zones). All codes are a projection of the zone code and
the addressing:

    RBS     GE + R01/B02/S03  ->  location_code R01B02S03, absolute GER-R01B02S03
    CUSTOM  DG + DOCK1        ->  location_code DOCK1,     absolute DG-DOCK1
"""

import re
from dataclasses import dataclass
from typing import Mapping

from .errors import BadLabelFormatError, BadRbsFormatError, MissingFieldError, UnknownZoneTypeError

ZONE_TYPE_RBS = "RBS"
ZONE_TYPE_CUSTOM = "CUSTOM"
ZONE_TYPES = (ZONE_TYPE_RBS, ZONE_TYPE_CUSTOM)

CUSTOM_LABEL_MAX_LENGTH = 20
CUSTOM_LABEL_RE = re.compile(r"^[A-Z0-9]+$")
RBS_PART_RE = re.compile(r"([A-Z]?)([0-9]+)")

# field name -> required leading letter
RBS_FIELDS = (("row", "R"), ("bay", "B"), ("slot", "S"))


@dataclass(frozen=True)
class RbsAddress:
    row: str
    bay: str
    slot: str


@dataclass(frozen=True)
class CustomAddress:
    label: str


LocationAddressing = RbsAddress | CustomAddress


@dataclass(frozen=True)
class LocationCodes:
    location_code: str
    absolute_code: str
    display_code: str


def format_rbs_part(prefix: str, index: int) -> str:
    """``format_rbs_part("R", 1) == "R01"``"""
    return f"{prefix}{index:02d}"


def parse_rbs_part(field: str, prefix: str, value) -> str | MissingFieldError | BadRbsFormatError:
    if value is None or str(value).strip() == "":
        return MissingFieldError(field, f"{field} is required")
    match = RBS_PART_RE.fullmatch(str(value).strip().upper())
    if not match or match.group(1) not in ("", prefix):
        return BadRbsFormatError(field, f"{field} must look like {prefix}01, got '{value}'")
    # "1", "R1" and "R01" all mean R01
    return prefix + match.group(2).zfill(2)


def parse_custom_label(value) -> str | MissingFieldError | BadLabelFormatError:
    label = str(value or "").strip().upper()
    if not label:
        return MissingFieldError("custom_label", "custom_label is required")
    if len(label) > CUSTOM_LABEL_MAX_LENGTH:
        return BadLabelFormatError(
            "custom_label", f"custom_label must not exceed {CUSTOM_LABEL_MAX_LENGTH} characters"
        )
    if not CUSTOM_LABEL_RE.match(label):
        return BadLabelFormatError("custom_label", "custom_label may only contain letters and digits")
    return label


def parse_addressing(zone_type: str, fields: Mapping):
    """Build the addressing for ``zone_type`` from loosely typed ``fields``.

    RBS fields are read from ``row``/``bay``/``slot`` (``rbs_row`` etc. are
    accepted too), CUSTOM from ``custom_label``. The zone type is case
    insensitive. Returns the first field error instead of raising.
    """
    zone_type = str(zone_type or "").strip().upper()
    if zone_type == ZONE_TYPE_RBS:
        parts = []
        for field, prefix in RBS_FIELDS:
            raw = fields.get(field)
            if raw is None:
                raw = fields.get(f"rbs_{field}")
            part = parse_rbs_part(field, prefix, raw)
            if not isinstance(part, str):
                return part
            parts.append(part)
        return RbsAddress(*parts)
    if zone_type == ZONE_TYPE_CUSTOM:
        label = parse_custom_label(fields.get("custom_label"))
        if not isinstance(label, str):
            return label
        return CustomAddress(label)
    return UnknownZoneTypeError("zone_type", f"zone type must be one of {', '.join(ZONE_TYPES)}")


def codes_for(zone_code: str, address: LocationAddressing) -> LocationCodes:
    match address:
        case RbsAddress(row=row, bay=bay, slot=slot):
            location_code = f"{row}{bay}{slot}"
            absolute_code = f"{zone_code}R-{location_code}"
        case CustomAddress(label=label):
            location_code = label
            absolute_code = f"{zone_code}-{label}"
        case _:
            raise TypeError(f"unsupported addressing {address!r}")
    return LocationCodes(location_code, absolute_code, absolute_code)


def compute_codes(zone_code: str, zone_type: str, fields: Mapping):
    address = parse_addressing(zone_type, fields)
    if not isinstance(address, (RbsAddress, CustomAddress)):
        return address
    return codes_for(zone_code, address)


def preview_codes(zone_code: str | None, zone_type: str | None, fields: Mapping) -> LocationCodes | None:
    """Codes for a half filled form, or None while there is nothing to show."""
    if not zone_code:
        return None
    codes = compute_codes(zone_code, zone_type, fields)
    return codes if isinstance(codes, LocationCodes) else None
