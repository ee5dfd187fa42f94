import os
import sys
import threading
from datetime import datetime, timedelta

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockroom import create_app
from stockroom.errors import (
    ExcessReturnError,
    InsufficientStockError,
    ItemNotFoundError,
    NoActiveCheckoutError,
    StoreUnavailableError,
    TransactionRejectedError,
    ValidationError,
)
from stockroom.extensions import db
from stockroom.models import CheckoutLedgerEntry, Item
from stockroom.services.checkout import CheckoutManager
from stockroom.services.items import ItemStore


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'checkout.db'}",
            "STOCKROOM_TXN_MAX_ATTEMPTS": 50,
            "STOCKROOM_TXN_RETRY_BACKOFF": 0,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def store(app):
    return ItemStore()


@pytest.fixture
def manager(store):
    return CheckoutManager(store)


def _on_hand(item_id):
    return db.session.get(Item, item_id, populate_existing=True).on_hand


def _ledger(user_id, item_id):
    return db.session.get(CheckoutLedgerEntry, (user_id, item_id), populate_existing=True)


def test_checkout_moves_stock_into_the_ledger(store, manager):
    item = store.create({"name": "Drill Bit", "on_hand": 10})

    first = manager.checkout("alice", item.id, 3)
    second = manager.checkout("alice", item.id, 2)

    assert first.qty == 3
    assert second.qty == 5
    assert _on_hand(item.id) == 5
    assert _ledger("alice", item.id).qty == 5


def test_checkout_rejects_more_than_available(store, manager):
    item = store.create({"name": "Drill Bit", "on_hand": 2})

    with pytest.raises(InsufficientStockError) as excinfo:
        manager.checkout("alice", item.id, 3)

    assert excinfo.value.available == 2
    assert excinfo.value.requested == 3
    assert _on_hand(item.id) == 2
    assert _ledger("alice", item.id) is None


def test_unknown_stock_counts_as_none_available(store, manager):
    item = store.create({"name": "Mystery Box"})

    with pytest.raises(InsufficientStockError) as excinfo:
        manager.checkout("alice", item.id, 1)
    assert excinfo.value.available == 0


def test_checkout_of_missing_item(manager):
    with pytest.raises(ItemNotFoundError):
        manager.checkout("alice", "missing1", 1)


@pytest.mark.parametrize("qty", [0, -1, 1.5, True, "2"])
def test_quantity_must_be_a_positive_whole_number(store, manager, qty):
    item = store.create({"name": "Drill Bit", "on_hand": 10})

    with pytest.raises(ValidationError):
        manager.checkout("alice", item.id, qty)
    with pytest.raises(ValidationError):
        manager.return_item("alice", item.id, qty)
    assert _on_hand(item.id) == 10


def test_blank_user_is_rejected(store, manager):
    item = store.create({"name": "Drill Bit", "on_hand": 10})

    with pytest.raises(ValidationError):
        manager.checkout("  ", item.id, 1)


def test_partial_and_full_return(store, manager):
    item = store.create({"name": "Tape", "on_hand": 6})
    manager.checkout("bob", item.id, 4)

    remaining = manager.return_item("bob", item.id, 1)
    assert remaining.qty == 3
    assert _on_hand(item.id) == 3

    assert manager.return_("bob", item.id, 3) is None
    assert _on_hand(item.id) == 6
    assert _ledger("bob", item.id) is None


def test_return_preconditions(store, manager):
    item = store.create({"name": "Tape", "on_hand": 6})

    with pytest.raises(NoActiveCheckoutError):
        manager.return_item("bob", item.id, 1)

    manager.checkout("bob", item.id, 2)
    with pytest.raises(ExcessReturnError) as excinfo:
        manager.return_item("bob", item.id, 3)

    assert excinfo.value.checked_out == 2
    assert isinstance(excinfo.value, TransactionRejectedError)
    assert _ledger("bob", item.id).qty == 2
    assert _on_hand(item.id) == 4


def test_return_of_deleted_item_leaves_ledger_untouched(store, manager):
    item_id = store.create({"name": "Tape", "on_hand": 6}).id
    manager.checkout("bob", item_id, 2)
    store.delete(item_id)

    with pytest.raises(ItemNotFoundError):
        manager.return_item("bob", item_id, 1)
    assert _ledger("bob", item_id).qty == 2


def test_checked_out_lists_most_recent_first(store, manager):
    older = store.create({"name": "Older", "on_hand": 5})
    newer = store.create({"name": "Newer", "on_hand": 5})
    other = store.create({"name": "Other", "on_hand": 5})
    manager.checkout("carol", older.id, 1)
    manager.checkout("carol", newer.id, 2)
    manager.checkout("dave", other.id, 1)

    now = datetime.utcnow()
    _ledger("carol", older.id).updated_at = now - timedelta(hours=1)
    _ledger("carol", newer.id).updated_at = now
    db.session.commit()

    entries = manager.checked_out("carol")

    assert [(entry.item_id, entry.qty) for entry in entries] == [(newer.id, 2), (older.id, 1)]
    assert manager.checked_out("nobody") == []


def test_checked_out_with_items_keeps_orphaned_entries(store, manager):
    kept_id = store.create({"name": "Kept", "on_hand": 5}).id
    gone_id = store.create({"name": "Gone", "on_hand": 5}).id
    manager.checkout("erin", kept_id, 1)
    manager.checkout("erin", gone_id, 1)
    store.delete(gone_id)

    details = {
        entry.entry.item_id: entry.item
        for entry in manager.checked_out_with_items("erin", concurrency=2)
    }

    assert details[kept_id]["name"] == "Kept"
    assert details[gone_id] is None


def test_concurrent_checkouts_never_oversell(app, store, manager):
    item_id = store.create({"name": "Battery", "on_hand": 10}).id
    outcomes = []
    lock = threading.Lock()

    def _worker(user_id):
        with app.app_context():
            try:
                CheckoutManager().checkout(user_id, item_id, 3)
                outcome = "ok"
            except InsufficientStockError:
                outcome = "short"
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                outcome = repr(exc)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_worker, args=(f"user{index}",)) for index in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["ok", "ok", "ok", "short", "short"]
    assert _on_hand(item_id) == 1
    total_out = sum(
        entry.qty
        for entry in CheckoutLedgerEntry.query.filter_by(item_id=item_id).all()
    )
    assert total_out == 9


def test_concurrent_checkouts_and_returns_keep_stock_and_ledger_in_step(app, store, manager):
    item_id = store.create({"name": "Torch", "on_hand": 20}).id
    returners = [f"returner{index}" for index in range(4)]
    borrowers = [f"borrower{index}" for index in range(4)]
    checked_out = {user_id: 0 for user_id in returners + borrowers}
    returned = {user_id: 0 for user_id in returners + borrowers}
    for user_id in returners:
        manager.checkout(user_id, item_id, 2)
        checked_out[user_id] += 2
    failures = []
    lock = threading.Lock()

    def _return_one(user_id):
        with app.app_context():
            try:
                CheckoutManager().return_item(user_id, item_id, 1)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                with lock:
                    failures.append(repr(exc))
                return
        with lock:
            returned[user_id] += 1

    def _borrow(user_id):
        with app.app_context():
            try:
                CheckoutManager().checkout(user_id, item_id, 4)
            except InsufficientStockError:
                return
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                with lock:
                    failures.append(repr(exc))
                return
        with lock:
            checked_out[user_id] += 4

    threads = [threading.Thread(target=_return_one, args=(user_id,)) for user_id in returners]
    threads += [threading.Thread(target=_borrow, args=(user_id,)) for user_id in borrowers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    total_out = sum(checked_out.values())
    total_back = sum(returned.values())
    assert total_back == 4
    assert _on_hand(item_id) == 20 - total_out + total_back
    assert _on_hand(item_id) >= 0

    ledger_total = sum(
        entry.qty
        for entry in CheckoutLedgerEntry.query.filter_by(item_id=item_id).all()
    )
    assert ledger_total == total_out - total_back
    for user_id in returners + borrowers:
        entry = _ledger(user_id, item_id)
        held = entry.qty if entry is not None else 0
        assert held == checked_out[user_id] - returned[user_id]


@pytest.fixture
def memory_app():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def test_in_memory_store_refuses_other_threads(memory_app):
    manager = CheckoutManager(ItemStore())
    item_id = manager.item_store.create({"name": "Fuse", "on_hand": 10}).id
    outcomes = []
    lock = threading.Lock()

    def _worker(user_id):
        with memory_app.app_context():
            try:
                CheckoutManager().checkout(user_id, item_id, 3)
                outcome = "ok"
            except StoreUnavailableError:
                outcome = "refused"
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                outcome = repr(exc)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_worker, args=(f"user{index}",)) for index in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes == ["refused"] * 5
    assert _on_hand(item_id) == 10
    assert CheckoutLedgerEntry.query.count() == 0

    manager.checkout("owner", item_id, 3)
    assert _on_hand(item_id) == 7
    [held] = manager.checked_out_with_items("owner")
    assert held.entry.qty == 3
    assert held.item["on_hand"] == 7
