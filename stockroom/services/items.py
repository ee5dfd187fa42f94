from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

from flask import current_app

from stockroom.errors import ItemIdCollisionError, ItemNotFoundError, ValidationError
from stockroom.models import MAX_COUNT, MAX_PRICE, Item
from stockroom.services.item_feed import SnapshotCallback, Subscription, get_item_feed
from stockroom.services.sequence import build_item_id, next_suffix
from stockroom.services.store import (
    get_document,
    read_only,
    run_transaction,
    serves_other_threads,
)
from stockroom.utils import location_code
from stockroom.utils.dates import to_storage_date


logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


@dataclass
class ItemDraft:
    name: str
    description: str = ""
    supplier: str = ""
    supplier_url: str | None = None
    on_hand: int | None = None
    quantity: int | None = None
    retail_price: Decimal | float | None = None
    count_date: str = ""
    count_person: str = ""
    delivery_date: str = ""
    location: list = field(default_factory=list)


EDITABLE_FIELDS = frozenset(entry.name for entry in fields(ItemDraft))
COUNT_FIELDS = ("on_hand", "quantity")
TEXT_FIELDS = ("description", "supplier", "count_person")
DATE_FIELDS = ("count_date", "delivery_date")


def _to_decimal(field_name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number") from exc
    if not number.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    return number


def clean_count(field_name: str, value: Any) -> int | None:
    """Return a non-negative whole number, clamping negatives to zero."""

    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = _to_decimal(field_name, value)
    if number != number.to_integral_value():
        raise ValidationError(f"{field_name} must be a whole number")
    if number > MAX_COUNT:
        raise ValidationError(f"{field_name} must be at most {MAX_COUNT}")
    return max(0, int(number))


def clean_price(value: Any) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = _to_decimal("retail_price", value)
    if number > MAX_PRICE:
        raise ValidationError(f"retail_price must be at most {MAX_PRICE}")
    return max(Decimal("0"), number).quantize(_CENTS, rounding=ROUND_HALF_UP)


def clean_locations(values: Iterable[Any] | None) -> list[list[str]]:
    """Normalize stored locations, dropping repeats of the same bin."""

    cleaned: list[list[str]] = []
    for value in values or []:
        encoded = list(location_code.normalize(value))
        if encoded not in cleaned:
            cleaned.append(encoded)
    return cleaned


def _clean_field(name: str, value: Any) -> Any:
    if name == "name":
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValidationError("Item name is required")
        return text
    if name in COUNT_FIELDS:
        return clean_count(name, value)
    if name == "retail_price":
        return clean_price(value)
    if name in DATE_FIELDS:
        return to_storage_date(value)
    if name == "supplier_url":
        text = "" if value is None else str(value).strip()
        return text or None
    if name == "location":
        if isinstance(value, (str, bytes)):
            raise ValidationError("location must be a list of locations")
        return clean_locations(value)
    return "" if value is None else str(value)


def _as_mapping(values: ItemDraft | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(values, ItemDraft):
        return asdict(values)
    return dict(values)


class ItemStore:
    """Create, read, edit and delete inventory items."""

    def prepare_draft(self, draft: ItemDraft | Mapping[str, Any]) -> dict[str, Any]:
        values = _as_mapping(draft)
        unknown = set(values) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")
        if "name" not in values:
            raise ValidationError("Item name is required")
        defaults = asdict(ItemDraft(name=values["name"]))
        defaults.update(values)
        return {name: _clean_field(name, value) for name, value in defaults.items()}

    def prepare_patch(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(patch)
        unknown = set(values) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}"
            )
        return {name: _clean_field(name, value) for name, value in values.items()}

    def create(self, draft: ItemDraft | Mapping[str, Any]) -> Item:
        values = self.prepare_draft(draft)
        attempts = int(current_app.config.get("STOCKROOM_ID_COLLISION_ATTEMPTS", 3))

        item_id = None
        for _ in range(max(1, attempts)):
            # A drawn suffix is spent even when the write below fails.
            item_id = build_item_id(values["name"], next_suffix())

            def _insert(session, item_id=item_id) -> Item:
                if get_document(session, Item, item_id) is not None:
                    raise ItemIdCollisionError(item_id)
                item = Item(id=item_id, **values)
                session.add(item)
                return item

            try:
                item = run_transaction(_insert, label=f"create_item:{item_id}")
            except ItemIdCollisionError:
                logger.warning("Item id %s already taken; drawing a new suffix", item_id)
                continue

            logger.info("Created item %s (%s)", item_id, values["name"])
            return item

        raise ItemIdCollisionError(item_id)

    def get(self, item_id: str) -> Item | None:
        return read_only(
            lambda session: get_document(session, Item, item_id), label="get_item"
        )

    def list_items(self) -> list[Item]:
        return read_only(
            lambda session: session.query(Item).order_by(Item.name, Item.id).all(),
            label="list_items",
        )

    def fetch_many(
        self, item_ids: Iterable[str], concurrency: int | None = None
    ) -> dict[str, dict | None]:
        """Fetch item snapshots with at most ``concurrency`` reads in flight."""

        unique_ids = list(dict.fromkeys(item_ids))
        if not unique_ids:
            return {}
        if concurrency is None:
            concurrency = int(current_app.config.get("STOCKROOM_FETCH_CONCURRENCY", 5))

        if not serves_other_threads():
            snapshots = {}
            for item_id in unique_ids:
                item = self.get(item_id)
                snapshots[item_id] = item.to_dict() if item is not None else None
            return snapshots

        app = current_app._get_current_object()

        def _fetch(item_id: str) -> dict | None:
            with app.app_context():
                item = self.get(item_id)
                return item.to_dict() if item is not None else None

        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
            return dict(zip(unique_ids, executor.map(_fetch, unique_ids)))

    def update(self, item_id: str, patch: Mapping[str, Any]) -> None:
        values = self.prepare_patch(patch)
        if not values:
            return

        def _apply(session) -> None:
            item = get_document(session, Item, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            for name, value in values.items():
                setattr(item, name, value)

        run_transaction(_apply, label=f"update_item:{item_id}")
        logger.info("Updated item %s fields: %s", item_id, ", ".join(sorted(values)))

    def delete(self, item_id: str) -> bool:
        def _delete(session) -> bool:
            item = get_document(session, Item, item_id)
            if item is None:
                return False
            session.delete(item)
            return True

        deleted = run_transaction(_delete, label=f"delete_item:{item_id}")
        if deleted:
            logger.info("Deleted item %s", item_id)
        else:
            logger.warning("Attempted to delete non-existent item %s", item_id)
        return deleted

    def add_location(self, item_id: str, location: Any) -> bool:
        """Add a bin to the item; a bin the item already holds is left alone."""

        target = location_code.decode(location_code.normalize(location))

        def _add(session) -> bool:
            item = get_document(session, Item, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            current = [list(entry) if isinstance(entry, (list, tuple)) else entry
                       for entry in (item.location or [])]
            if any(location_code.try_decode(entry) == target for entry in current):
                return False
            item.location = current + [list(location_code.encode(*target))]
            return True

        return run_transaction(_add, label=f"add_location:{item_id}")

    def remove_location(self, item_id: str, location: Any) -> bool:
        target = location_code.decode(location_code.normalize(location))

        def _remove(session) -> bool:
            item = get_document(session, Item, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            current = list(item.location or [])
            kept = [entry for entry in current if location_code.try_decode(entry) != target]
            if len(kept) == len(current):
                return False
            item.location = kept
            return True

        return run_transaction(_remove, label=f"remove_location:{item_id}")

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        return get_item_feed().subscribe(callback)

    def stream(self, timeout: float | None = None):
        return get_item_feed().stream(timeout=timeout)
