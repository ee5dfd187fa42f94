"""Compact storage-bin encoding for the cabinet/row/column grid.

Locations are stored as segment-tagged triples such as ``("cab1", "row2",
"col3")``. Older records carry a single string (``"cab1-row2-col3"``) or bare
numbers (``"1,2,3"``); :func:`decode` reads all of them.
"""

from __future__ import annotations

import re
from typing import Iterator, NamedTuple, Optional, Sequence, Tuple, Union

from stockroom.errors import OutOfRangeError, UnparseableLocationError


CABINET_RANGE = (1, 5)
ROW_RANGE = (1, 6)
COLUMN_RANGE = (1, 4)

PLACEHOLDER = "-"

LocationTuple = Tuple[str, str, str]
LocationValue = Union[str, Sequence[str], None]

_TAGGED_PATTERN = re.compile(r"cab\s*(\d+)\s*[-,]\s*row\s*(\d+)\s*[-,]\s*col\s*(\d+)", re.I)
_BARE_PATTERN = re.compile(r"^\s*(\d+)\s*[,\s]\s*(\d+)\s*[,\s]\s*(\d+)\s*$")
_SEGMENT_PATTERNS = {
    "cabinet": re.compile(r"cab\s*(\d+)", re.I),
    "row": re.compile(r"row\s*(\d+)", re.I),
    "col": re.compile(r"col\s*(\d+)", re.I),
}
_TRAILING_NUMBER = re.compile(r"(\d+)\s*$")


class GridPosition(NamedTuple):
    cabinet: Optional[int]
    row: Optional[int]
    col: Optional[int]

    @property
    def is_complete(self) -> bool:
        return None not in self


def _check_bound(field: str, value: object, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise OutOfRangeError(field, value, low, high)
    if value < low or value > high:
        raise OutOfRangeError(field, value, low, high)
    return value


def validate(position: Sequence[object]) -> GridPosition:
    """Return ``position`` as a :class:`GridPosition` if it lies inside the grid."""

    cabinet, row, col = position
    return GridPosition(
        _check_bound("cabinet", cabinet, CABINET_RANGE),
        _check_bound("row", row, ROW_RANGE),
        _check_bound("column", col, COLUMN_RANGE),
    )


def encode(cabinet: int, row: int, col: int) -> LocationTuple:
    cabinet, row, col = validate((cabinet, row, col))
    return (f"cab{cabinet}", f"row{row}", f"col{col}")


def _segment_number(segment: object) -> Optional[int]:
    if segment is None:
        return None
    match = _TRAILING_NUMBER.search(str(segment))
    if not match:
        return None
    return int(match.group(1))


def decode(value: LocationValue) -> GridPosition:
    """Read a stored triple or a legacy string into a :class:`GridPosition`.

    Grid bounds are not enforced here so legacy data stays readable. Segments
    that are missing from a partial legacy string come back as ``None``.
    """

    if value is None:
        raise UnparseableLocationError(value)

    if isinstance(value, (list, tuple)):
        if len(value) == 3:
            position = GridPosition(*(_segment_number(segment) for segment in value))
            if all(segment is None for segment in position):
                raise UnparseableLocationError(value)
            return position
        if len(value) == 1:
            return decode(value[0])
        raise UnparseableLocationError(value)

    text = str(value).strip()
    if not text:
        raise UnparseableLocationError(value)

    match = _TAGGED_PATTERN.search(text)
    if match:
        return GridPosition(*(int(group) for group in match.groups()))

    match = _BARE_PATTERN.match(text)
    if match:
        return GridPosition(*(int(group) for group in match.groups()))

    segments = {
        name: pattern.search(text) for name, pattern in _SEGMENT_PATTERNS.items()
    }
    if any(segments.values()):
        return GridPosition(
            *(
                int(found.group(1)) if found else None
                for found in segments.values()
            )
        )

    raise UnparseableLocationError(value)


def try_decode(value: LocationValue) -> Optional[GridPosition]:
    try:
        return decode(value)
    except UnparseableLocationError:
        return None


def normalize(value: LocationValue) -> LocationTuple:
    """Re-encode any accepted location form into the stored triple.

    Raises :class:`UnparseableLocationError` for unreadable input and
    :class:`OutOfRangeError` for partial or out-of-bounds positions.
    """

    if isinstance(value, GridPosition):
        return encode(*value)
    return encode(*decode(value))


def label(value: LocationValue) -> str:
    if value is None or (isinstance(value, (list, tuple)) and not value):
        return ""

    position = value if isinstance(value, GridPosition) else try_decode(value)
    if position is None:
        if isinstance(value, (list, tuple)):
            return ", ".join(str(part) for part in value)
        return str(value)

    cabinet, row, col = (
        PLACEHOLDER if part is None else str(part) for part in position
    )
    return f"Cab {cabinet} · Row {row} · Col {col}"


def grid_positions(cabinet: int | None = None) -> Iterator[GridPosition]:
    """Yield every bin of the grid, or of one cabinet, in storage order."""

    if cabinet is None:
        cabinets = range(CABINET_RANGE[0], CABINET_RANGE[1] + 1)
    else:
        cabinets = [_check_bound("cabinet", cabinet, CABINET_RANGE)]

    for cab in cabinets:
        for row in range(ROW_RANGE[0], ROW_RANGE[1] + 1):
            for col in range(COLUMN_RANGE[0], COLUMN_RANGE[1] + 1):
                yield GridPosition(cab, row, col)
