"""Filtering and grid projections over item snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app, has_app_context

from stockroom.utils import location_code
from stockroom.utils.suppliers import is_same_supplier


ItemSnapshot = dict[str, Any]

DEFAULT_LOW_STOCK_THRESHOLD = 10


@dataclass
class ItemFilter:
    search: str = ""
    locations: list[str] = field(default_factory=list)
    suppliers: list[str] = field(default_factory=list)
    supplier_url: str | None = None
    low_stock_only: bool = False
    low_stock_threshold: int | None = None  # falls back to STOCKROOM_LOW_STOCK_THRESHOLD


def _location_labels(item: ItemSnapshot) -> list[str]:
    return [location_code.label(entry) for entry in item.get("location") or []]


def _positions(item: ItemSnapshot) -> list[location_code.GridPosition]:
    positions = []
    for entry in item.get("location") or []:
        position = location_code.try_decode(entry)
        if position is not None:
            positions.append(position)
    return positions


def _low_stock_threshold(item_filter: ItemFilter) -> int:
    if item_filter.low_stock_threshold is not None:
        return item_filter.low_stock_threshold
    if has_app_context():
        return int(
            current_app.config.get("STOCKROOM_LOW_STOCK_THRESHOLD", DEFAULT_LOW_STOCK_THRESHOLD)
        )
    return DEFAULT_LOW_STOCK_THRESHOLD


def _matches_search(item: ItemSnapshot, needle: str) -> bool:
    haystacks = [
        item.get("name") or "",
        item.get("description") or "",
        item.get("supplier") or "",
        *_location_labels(item),
    ]
    return any(needle in value.lower() for value in haystacks)


def filter_items(items: Iterable[ItemSnapshot], item_filter: ItemFilter) -> list[ItemSnapshot]:
    result = list(items)

    if item_filter.search:
        needle = item_filter.search.lower()
        result = [item for item in result if _matches_search(item, needle)]

    if item_filter.locations:
        wanted = {location_code.label(value) for value in item_filter.locations}
        result = [
            item for item in result if wanted.intersection(_location_labels(item))
        ]

    if item_filter.suppliers:
        result = [item for item in result if item.get("supplier") in item_filter.suppliers]

    if item_filter.supplier_url:
        result = [
            item
            for item in result
            if is_same_supplier(item.get("supplier_url"), item_filter.supplier_url)
        ]

    if item_filter.low_stock_only:
        threshold = _low_stock_threshold(item_filter)
        result = [
            item
            for item in result
            if item.get("on_hand") is not None
            and item["on_hand"] < threshold
        ]

    return result


def available_locations(items: Iterable[ItemSnapshot]) -> list[str]:
    labels = {label for item in items for label in _location_labels(item) if label}
    return sorted(labels)


def available_suppliers(items: Iterable[ItemSnapshot]) -> list[str]:
    return sorted({item["supplier"] for item in items if item.get("supplier")})


def items_at(items: Iterable[ItemSnapshot], cabinet: int, row: int, col: int) -> list[ItemSnapshot]:
    target = location_code.validate((cabinet, row, col))
    return [item for item in items if target in _positions(item)]


def planogram(
    items: Iterable[ItemSnapshot], cabinet: int
) -> dict[tuple[int, int], list[ItemSnapshot]]:
    """Return every (row, col) bin of ``cabinet`` with the items stored there."""

    grid: dict[tuple[int, int], list[ItemSnapshot]] = {
        (position.row, position.col): [] for position in location_code.grid_positions(cabinet)
    }
    for item in items:
        seen: set[tuple[int, int]] = set()
        for position in _positions(item):
            key = (position.row, position.col)
            if position.cabinet != cabinet or key not in grid or key in seen:
                continue
            seen.add(key)
            grid[key].append(item)
    return grid
