import os
import sys
import threading

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockroom import create_app
from stockroom.extensions import db
from stockroom.services.sequence import ITEM_COUNTER, build_item_id, current_value, next_suffix


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'sequence.db'}",
            "STOCKROOM_TXN_MAX_ATTEMPTS": 50,
            "STOCKROOM_TXN_RETRY_BACKOFF": 0,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def test_next_suffix_starts_at_one_and_increments(app):
    assert current_value() == 0
    assert [next_suffix() for _ in range(3)] == [1, 2, 3]
    assert current_value(ITEM_COUNTER) == 3


def test_counters_are_independent(app):
    assert next_suffix("items") == 1
    assert next_suffix("labels") == 1
    assert next_suffix("items") == 2
    assert current_value("labels") == 1


def test_concurrent_callers_receive_distinct_values(app):
    results = []
    errors = []
    lock = threading.Lock()

    def _worker():
        with app.app_context():
            try:
                values = [next_suffix() for _ in range(5)]
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)
                return
        with lock:
            results.extend(values)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(results) == list(range(1, 21))
    assert current_value() == 20


def test_build_item_id_strips_everything_but_letters_and_digits():
    assert build_item_id("Red Valve", 42) == "redvalve42"
    assert build_item_id("  3/4\" Hex-Nut (SS) ", 7) == "34hexnutss7"
    assert build_item_id("Ünïcode", 1) == "ncode1"
