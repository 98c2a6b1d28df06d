"""Bulk generation of RBS locations from a row x bay x slot matrix.

The layout request has the wire shape::

    {"rows": [{"bays": [{"slotsCount": 3}, {"slotsCount": 2}]}]}

Rows, bays and slots are numbered from 1 in that nesting order, so the
matrix above yields R01B01S01..S03 then R01B02S01..S02.
"""

from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, Mapping, Sequence

from . import config
from .errors import LayoutValidationError
from .location_codes import RbsAddress, codes_for, format_rbs_part


@dataclass(frozen=True)
class LocationCreateRequest:
    zone_code: str
    row_index: int
    bay_index: int
    slot_index: int
    rbs_row: str
    rbs_bay: str
    rbs_slot: str
    location_code: str
    absolute_code: str
    display_code: str
    status: str = "active"


@dataclass(frozen=True)
class LayoutPreview:
    codes: list[str]
    total: int


def _is_list(value) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _slot_counts(rows: Sequence[Mapping]) -> list[list] | LayoutValidationError:
    """Slot counts per row and bay; bays that are not objects count as ``None``."""
    if not _is_list(rows) or not rows:
        return LayoutValidationError("Add at least one row.")
    matrix = []
    for row_number, row in enumerate(rows, start=1):
        if row is not None and not isinstance(row, Mapping):
            return LayoutValidationError(f"Row {row_number} must be an object with bays.")
        bays = (row or {}).get("bays") or []
        if not _is_list(bays):
            return LayoutValidationError(f"Row {row_number} bays must be a list.")
        matrix.append([bay.get("slotsCount") if isinstance(bay, Mapping) else None for bay in bays])
    return matrix


def _valid_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_layout(rows: Sequence[Mapping], max_locations: int | None = None) -> int | LayoutValidationError:
    """Return the number of locations the layout describes, or the first problem."""
    if max_locations is None:
        max_locations = config.LAYOUT_MAX_LOCATIONS
    matrix = _slot_counts(rows)
    if isinstance(matrix, LayoutValidationError):
        return matrix
    for row_number, bays in enumerate(matrix, start=1):
        if not bays:
            return LayoutValidationError(f"Row {row_number} needs at least one bay.")
    for row_number, bays in enumerate(matrix, start=1):
        for bay_number, count in enumerate(bays, start=1):
            if not _valid_count(count):
                return LayoutValidationError(
                    f"Slot count of row {row_number} bay {bay_number} must be 1 or greater."
                )
    total = sum(sum(bays) for bays in matrix)
    if total == 0:
        return LayoutValidationError("Add at least one slot.")
    if total > max_locations:
        return LayoutValidationError(f"Layout would create {total} locations, the limit is {max_locations}.")
    return total


def iter_layout(zone_code: str, rows: Sequence[Mapping]) -> Iterator[LocationCreateRequest]:
    """Lazily walk the matrix. Expects a layout that passed ``validate_layout``."""
    for row_index, bays in enumerate(_slot_counts(rows)):
        rbs_row = format_rbs_part("R", row_index + 1)
        for bay_index, slots_count in enumerate(bays):
            rbs_bay = format_rbs_part("B", bay_index + 1)
            for slot_index in range(slots_count):
                rbs_slot = format_rbs_part("S", slot_index + 1)
                codes = codes_for(zone_code, RbsAddress(rbs_row, rbs_bay, rbs_slot))
                yield LocationCreateRequest(
                    zone_code=zone_code,
                    row_index=row_index,
                    bay_index=bay_index,
                    slot_index=slot_index,
                    rbs_row=rbs_row,
                    rbs_bay=rbs_bay,
                    rbs_slot=rbs_slot,
                    location_code=codes.location_code,
                    absolute_code=codes.absolute_code,
                    display_code=codes.display_code,
                )


def expand(
    zone_code: str,
    rows: Sequence[Mapping],
    max_locations: int | None = None,
) -> list[LocationCreateRequest] | LayoutValidationError:
    total = validate_layout(rows, max_locations)
    if isinstance(total, LayoutValidationError):
        return total
    return list(iter_layout(zone_code, rows))


def preview(
    zone_code: str,
    rows: Sequence[Mapping],
    limit: int | None = None,
    max_locations: int | None = None,
) -> LayoutPreview | LayoutValidationError:
    if limit is None:
        limit = config.LAYOUT_PREVIEW_SIZE
    total = validate_layout(rows, max_locations)
    if isinstance(total, LayoutValidationError):
        return total
    codes = [req.absolute_code for req in islice(iter_layout(zone_code, rows), limit)]
    return LayoutPreview(codes=codes, total=total)


def find_conflicts(requests: Iterable[LocationCreateRequest], existing_location_codes: Iterable[str]) -> list[str]:
    """Absolute codes of requests whose location code already exists in the zone."""
    existing = set(existing_location_codes)
    return [req.absolute_code for req in requests if req.location_code in existing]
