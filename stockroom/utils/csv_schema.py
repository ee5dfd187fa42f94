"""Item import columns and the header spellings accepted for each."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

# field name -> alternative header spellings seen in supplier and count sheets
ITEMS_IMPORT_FIELDS: dict[str, tuple[str, ...]] = {
    "name": ("item", "item_name"),
    "description": ("desc", "item_description"),
    "supplier": ("vendor", "supplier_name", "vendor_name"),
    "supplier_url": ("url", "link", "vendor_url"),
    "location": ("locations", "bin", "location_code"),
    "on_hand": ("onhand", "in_stock"),
    "quantity": ("qty", "total_quantity"),
    "retail_price": ("price", "unit_price"),
    "count_date": ("counted_on", "last_count"),
    "count_person": ("counted_by",),
    "delivery_date": ("delivered_on", "expected_delivery"),
}

ITEMS_CSV_HEADERS = list(ITEMS_IMPORT_FIELDS)
ITEMS_HEADER_ALIASES: dict[str, Iterable[str]] = dict(ITEMS_IMPORT_FIELDS)

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_header(value: str) -> str:
    """``" On-Hand "`` and ``"on_hand"`` both become ``"on_hand"``."""

    return _SEPARATORS.sub("_", str(value).strip().lower())


def resolve_import_mappings(
    headers: Iterable[str],
    import_fields: Iterable[str],
    aliases: Mapping[str, Iterable[str]],
) -> dict[str, str]:
    """Map each import field to the header that names it, if any.

    The field's own name wins over its aliases; among duplicate headers the
    first one in the file is used.
    """

    by_key: dict[str, str] = {}
    for header in headers:
        by_key.setdefault(normalize_header(header), header)

    resolved: dict[str, str] = {}
    for field_name in import_fields:
        for candidate in (field_name, *aliases.get(field_name, ())):
            header = by_key.get(normalize_header(candidate))
            if header is not None:
                resolved[field_name] = header
                break
    return resolved
