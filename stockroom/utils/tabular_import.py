"""Turn spreadsheet uploads into CSV text for the item import pipeline."""

from __future__ import annotations

import csv
import io
import os
import zipfile
from typing import BinaryIO, Callable, Iterable

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from werkzeug.datastructures import FileStorage


class TabularImportError(ValueError):
    """The file is missing, of an unsupported type, or cannot be read."""


SUPPORTED_EXTENSIONS = (".csv", ".tsv", ".xlsx")


def _write_csv(rows: Iterable[Iterable[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return buffer.getvalue()


def _decode(data: bytes, kind: str) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TabularImportError(f"{kind} files must be UTF-8 encoded.") from exc


def _read_csv(data: bytes) -> str:
    return _decode(data, "CSV")


def _read_tsv(data: bytes) -> str:
    text = _decode(data, "TSV")
    return _write_csv(csv.reader(io.StringIO(text), delimiter="\t"))


def _read_xlsx(data: bytes) -> str:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise TabularImportError("The XLSX file could not be opened.") from exc
    try:
        # only the active sheet is imported
        return _write_csv(workbook.active.iter_rows(values_only=True))
    finally:
        workbook.close()


_READERS: dict[str, Callable[[bytes], str]] = {
    ".csv": _read_csv,
    ".tsv": _read_tsv,
    ".xlsx": _read_xlsx,
}


def read_tabular(stream: BinaryIO, filename: str) -> str:
    """Return CSV text for ``stream``, choosing the reader by file extension."""

    extension = os.path.splitext(filename)[1].lower()
    reader = _READERS.get(extension)
    if reader is None:
        raise TabularImportError(
            f"Unsupported file type. Upload one of: {', '.join(SUPPORTED_EXTENSIONS)}."
        )
    return reader(stream.read())


def parse_tabular_upload(file_storage: FileStorage | None) -> str:
    if file_storage is None or not file_storage.filename:
        raise TabularImportError("No file uploaded.")
    return read_tabular(file_storage.stream, file_storage.filename)


def read_tabular_file(path: str) -> str:
    with open(path, "rb") as handle:
        return read_tabular(handle, os.path.basename(path))


def csv_dict_rows(csv_text: str) -> tuple[list[str], list[tuple[int, dict[str, str]]]]:
    """Return headers and numbered data rows, skipping rows with no content.

    Row numbers match the spreadsheet view: the header is row 1.
    """

    reader = csv.DictReader(io.StringIO(csv_text))
    headers = list(reader.fieldnames or [])
    rows: list[tuple[int, dict[str, str]]] = []
    for row_number, row in enumerate(reader, start=2):
        cells = {
            header: "" if value is None else str(value)
            for header, value in row.items()
            if header is not None
        }
        if any(value.strip() for value in cells.values()):
            rows.append((row_number, cells))
    return headers, rows
