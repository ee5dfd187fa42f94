"""Bulk item import from tabular data.

Rows are parsed into :class:`ImportRow` records, validated field by field and
split into a valid bucket and an error bucket before anything is written.
Writes happen one row at a time; a row that fails to save is recorded and
skipped, and rows already saved stay in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping

from flask import current_app
from werkzeug.datastructures import FileStorage

from stockroom.errors import OutOfRangeError, StockroomError
from stockroom.models import MAX_COUNT, MAX_PRICE
from stockroom.services.items import ItemDraft, ItemStore
from stockroom.utils import location_code
from stockroom.utils.csv_schema import ITEMS_CSV_HEADERS, ITEMS_HEADER_ALIASES, resolve_import_mappings
from stockroom.utils.tabular_import import csv_dict_rows, parse_tabular_upload, read_tabular_file


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

NUMERIC_FIELDS: tuple[tuple[str, bool], ...] = (
    ("on_hand", True),
    ("quantity", True),
    ("retail_price", False),
)
NUMERIC_LIMITS = {"on_hand": MAX_COUNT, "quantity": MAX_COUNT, "retail_price": MAX_PRICE}
TEXT_FIELDS = ("description", "supplier", "count_date", "count_person", "delivery_date")
LOCATION_SEPARATOR = ";"


@dataclass(frozen=True)
class ImportRow:
    """One data row as read from the file; every field is optional text."""

    row_number: int
    name: str | None = None
    description: str | None = None
    supplier: str | None = None
    supplier_url: str | None = None
    location: str | None = None
    on_hand: str | None = None
    quantity: str | None = None
    retail_price: str | None = None
    count_date: str | None = None
    count_person: str | None = None
    delivery_date: str | None = None

    @classmethod
    def from_mapping(
        cls,
        row_number: int,
        values: Mapping[str, Any],
        mappings: Mapping[str, str] | None = None,
    ) -> "ImportRow":
        if mappings is None:
            mappings = resolve_import_mappings(values.keys(), ITEMS_CSV_HEADERS, ITEMS_HEADER_ALIASES)
        cells: dict[str, str | None] = {}
        for field_name, header in mappings.items():
            value = values.get(header)
            cells[field_name] = None if value is None else str(value)
        return cls(row_number=row_number, **cells)


@dataclass(frozen=True)
class ParsedRow:
    row_number: int
    draft: ItemDraft
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RowError:
    row_number: int
    errors: tuple[str, ...]
    row: ImportRow
    warnings: tuple[str, ...] = ()


@dataclass
class ImportBatch:
    valid_rows: list[ParsedRow] = field(default_factory=list)
    error_rows: list[RowError] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid_rows) + len(self.error_rows)


@dataclass(frozen=True)
class ImportFailure:
    row_number: int
    name: str
    message: str


@dataclass
class ImportResult:
    total: int = 0
    imported: int = 0
    created_ids: list[str] = field(default_factory=list)
    failures: list[ImportFailure] = field(default_factory=list)


def parse_number(raw: str | None) -> Decimal | None:
    """Return ``None`` for a blank cell; raise ``ValueError`` for non-numbers."""

    text = "" if raw is None else str(raw).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"{text!r} is not a number") from exc
    if not number.is_finite():
        raise ValueError(f"{text!r} is not a number")
    return number


def _check_numeric(name: str, raw: str | None, whole: bool) -> tuple[Any, str | None]:
    try:
        number = parse_number(raw)
    except ValueError:
        return None, f"{name} must be a non-negative number"
    if number is None:
        return None, None
    if number < 0:
        return None, f"{name} must be a non-negative number"
    if number > NUMERIC_LIMITS[name]:
        return None, f"{name} must be at most {NUMERIC_LIMITS[name]}"
    if whole:
        if number != number.to_integral_value():
            return None, f"{name} must be a whole number"
        return int(number), None
    return number, None


def parse_locations(raw: str | None, row_number: int) -> tuple[list[list[str]], list[str]]:
    """Decode a semicolon-separated location cell, dropping what cannot be read."""

    locations: list[list[str]] = []
    warnings: list[str] = []
    if not raw:
        return locations, warnings

    for part in (piece.strip() for piece in str(raw).split(LOCATION_SEPARATOR)):
        if not part:
            continue
        position = location_code.try_decode(part)
        if position is None or not position.is_complete:
            warnings.append(f"Could not parse location {part!r}")
            continue
        try:
            encoded = list(location_code.encode(*position))
        except OutOfRangeError as exc:
            warnings.append(f"Location {part!r} dropped: {exc}")
            continue
        if encoded not in locations:
            locations.append(encoded)

    for warning in warnings:
        logger.warning("Row %s: %s", row_number, warning)
    return locations, warnings


def _text(value: str | None) -> str:
    return (value or "").strip()


def classify_row(row: ImportRow) -> ParsedRow | RowError:
    errors: list[str] = []
    name = _text(row.name)
    if not name:
        errors.append("Name is required")

    numbers: dict[str, Any] = {}
    for field_name, whole in NUMERIC_FIELDS:
        value, error = _check_numeric(field_name, getattr(row, field_name), whole)
        if error:
            errors.append(error)
        numbers[field_name] = value

    locations, warnings = parse_locations(row.location, row.row_number)

    if errors:
        return RowError(
            row_number=row.row_number,
            errors=tuple(errors),
            row=row,
            warnings=tuple(warnings),
        )

    draft = ItemDraft(
        name=name,
        supplier_url=_text(row.supplier_url) or None,
        location=locations,
        **numbers,
        **{field_name: _text(getattr(row, field_name)) for field_name in TEXT_FIELDS},
    )
    return ParsedRow(row_number=row.row_number, draft=draft, warnings=tuple(warnings))


def best_effort_draft(error: RowError, placeholder_name: str) -> ItemDraft:
    """Coerce a rejected row into a draft: fill the name, drop bad numbers."""

    row = error.row
    numbers: dict[str, Any] = {}
    for field_name, whole in NUMERIC_FIELDS:
        try:
            number = parse_number(getattr(row, field_name))
        except ValueError:
            number = None
        if number is not None and number > NUMERIC_LIMITS[field_name]:
            number = None
        if number is not None and whole and number != number.to_integral_value():
            number = None
        if number is not None and whole:
            number = int(number)
        numbers[field_name] = number

    locations, _ = parse_locations(row.location, row.row_number)
    return ItemDraft(
        name=_text(row.name) or placeholder_name,
        supplier_url=_text(row.supplier_url) or None,
        location=locations,
        **numbers,
        **{field_name: _text(getattr(row, field_name)) for field_name in TEXT_FIELDS},
    )


class ImportPipeline:
    def __init__(self, item_store: ItemStore | None = None):
        self.item_store = item_store or ItemStore()

    def parse_batch(self, source: str | Iterable[Mapping[str, Any] | ImportRow]) -> ImportBatch:
        """Classify CSV text, or an iterable of row mappings, into buckets."""

        if isinstance(source, str):
            headers, numbered_rows = csv_dict_rows(source)
            mappings = resolve_import_mappings(headers, ITEMS_CSV_HEADERS, ITEMS_HEADER_ALIASES)
            rows = [
                ImportRow.from_mapping(row_number, values, mappings)
                for row_number, values in numbered_rows
            ]
        else:
            headers = []
            rows = []
            for index, values in enumerate(source, start=2):
                if isinstance(values, ImportRow):
                    rows.append(values)
                    continue
                for key in values:
                    if key not in headers:
                        headers.append(key)
                rows.append(ImportRow.from_mapping(index, values))

        batch = ImportBatch(headers=list(headers))
        for row in rows:
            outcome = classify_row(row)
            if isinstance(outcome, RowError):
                batch.error_rows.append(outcome)
            else:
                batch.valid_rows.append(outcome)

        logger.info(
            "Parsed import batch: %s valid rows, %s error rows",
            len(batch.valid_rows),
            len(batch.error_rows),
        )
        return batch

    def parse_upload(self, file_storage: FileStorage) -> ImportBatch:
        return self.parse_batch(parse_tabular_upload(file_storage))

    def parse_file(self, path: str) -> ImportBatch:
        return self.parse_batch(read_tabular_file(path))

    def import_valid(
        self, batch: ImportBatch, progress: ProgressCallback | None = None
    ) -> ImportResult:
        rows = [(parsed.row_number, parsed.draft) for parsed in batch.valid_rows]
        return self._import_rows(rows, progress)

    def import_all(
        self, batch: ImportBatch, progress: ProgressCallback | None = None
    ) -> ImportResult:
        placeholder = current_app.config.get(
            "STOCKROOM_IMPORT_PLACEHOLDER_NAME", "Untitled Item"
        )
        rows = [(parsed.row_number, parsed.draft) for parsed in batch.valid_rows]
        rows.extend(
            (error.row_number, best_effort_draft(error, placeholder))
            for error in batch.error_rows
        )
        return self._import_rows(rows, progress)

    def _import_rows(
        self,
        rows: list[tuple[int, ItemDraft]],
        progress: ProgressCallback | None,
    ) -> ImportResult:
        result = ImportResult(total=len(rows))
        for row_number, draft in rows:
            try:
                item = self.item_store.create(draft)
            except Exception as exc:
                # one bad row never stops the rest of the file
                logger.warning(
                    "Failed to import row %s (%s): %s",
                    row_number,
                    draft.name,
                    exc,
                    exc_info=not isinstance(exc, StockroomError),
                )
                result.failures.append(
                    ImportFailure(row_number=row_number, name=draft.name, message=str(exc))
                )
                continue

            result.imported += 1
            result.created_ids.append(item.id)
            if progress is not None:
                progress(result.imported, result.total)

        logger.info(
            "Imported %s of %s rows (%s failed)",
            result.imported,
            result.total,
            len(result.failures),
        )
        return result


