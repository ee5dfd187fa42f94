"""Checkout and return of stock against per-user ledgers.

Each operation is one optimistic transaction spanning the item row and the
user's ledger row. Availability is read inside that transaction, so a
checkout that lost a race re-reads the committed stock before deciding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from stockroom.errors import (
    ExcessReturnError,
    InsufficientStockError,
    ItemNotFoundError,
    NoActiveCheckoutError,
    ValidationError,
)
from stockroom.models import CheckoutLedgerEntry, Item
from stockroom.services.items import ItemStore
from stockroom.services.store import get_document, read_only, run_transaction


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    user_id: str
    item_id: str
    qty: int
    updated_at: datetime | None


@dataclass(frozen=True)
class CheckedOutItem:
    entry: LedgerSnapshot
    item: dict[str, Any] | None  # None once the item has been deleted


def _snapshot(entry: CheckoutLedgerEntry, qty: int | None = None) -> LedgerSnapshot:
    return LedgerSnapshot(
        user_id=entry.user_id,
        item_id=entry.item_id,
        qty=entry.qty if qty is None else qty,
        updated_at=entry.updated_at,
    )


def _require_quantity(qty: Any) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError("Quantity must be a whole number.")
    if qty <= 0:
        raise ValidationError("Quantity must be greater than 0.")
    return qty


def _require_key(name: str, value: Any) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{name} is required.")
    return text


class CheckoutManager:
    def __init__(self, item_store: ItemStore | None = None):
        self.item_store = item_store or ItemStore()

    def checkout(self, user_id: str, item_id: str, qty: int) -> LedgerSnapshot:
        user_id = _require_key("User", user_id)
        item_id = _require_key("Item", item_id)
        qty = _require_quantity(qty)

        def _checkout(session) -> LedgerSnapshot:
            item = get_document(session, Item, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)

            available = item.on_hand or 0
            if available < qty:
                raise InsufficientStockError(item_id, qty, available)

            now = datetime.utcnow()
            entry = get_document(session, CheckoutLedgerEntry, (user_id, item_id))
            if entry is None:
                entry = CheckoutLedgerEntry(
                    user_id=user_id, item_id=item_id, qty=qty, updated_at=now
                )
                session.add(entry)
            else:
                entry.qty = entry.qty + qty
                entry.updated_at = now

            item.on_hand = available - qty
            return _snapshot(entry)

        snapshot = run_transaction(_checkout, label=f"checkout:{user_id}:{item_id}")
        logger.info(
            "User %s checked out %s of %s (now holds %s)",
            user_id,
            qty,
            item_id,
            snapshot.qty,
        )
        return snapshot

    def return_item(self, user_id: str, item_id: str, qty: int) -> LedgerSnapshot | None:
        """Return stock; yields the remaining ledger entry, or None once cleared."""

        user_id = _require_key("User", user_id)
        item_id = _require_key("Item", item_id)
        qty = _require_quantity(qty)

        def _return(session) -> LedgerSnapshot | None:
            entry = get_document(session, CheckoutLedgerEntry, (user_id, item_id))
            if entry is None:
                raise NoActiveCheckoutError(user_id, item_id)
            if qty > entry.qty:
                raise ExcessReturnError(item_id, qty, entry.qty)

            item = get_document(session, Item, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)

            item.on_hand = (item.on_hand or 0) + qty
            if qty == entry.qty:
                session.delete(entry)
                return None

            entry.qty = entry.qty - qty
            entry.updated_at = datetime.utcnow()
            return _snapshot(entry)

        remaining = run_transaction(_return, label=f"return:{user_id}:{item_id}")
        logger.info(
            "User %s returned %s of %s (still holds %s)",
            user_id,
            qty,
            item_id,
            remaining.qty if remaining else 0,
        )
        return remaining

    return_ = return_item

    def checked_out(self, user_id: str) -> list[LedgerSnapshot]:
        user_id = _require_key("User", user_id)

        def _load(session) -> list[LedgerSnapshot]:
            entries = (
                session.query(CheckoutLedgerEntry)
                .filter(CheckoutLedgerEntry.user_id == user_id)
                .order_by(CheckoutLedgerEntry.updated_at.desc(), CheckoutLedgerEntry.item_id)
                .all()
            )
            return [_snapshot(entry) for entry in entries]

        return read_only(_load, label=f"checked_out:{user_id}")

    def checked_out_with_items(
        self, user_id: str, concurrency: int | None = None
    ) -> list[CheckedOutItem]:
        entries = self.checked_out(user_id)
        details = self.item_store.fetch_many(
            [entry.item_id for entry in entries], concurrency=concurrency
        )
        return [CheckedOutItem(entry=entry, item=details.get(entry.item_id)) for entry in entries]
