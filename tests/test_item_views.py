import os
import sys

import pytest
from flask import Flask

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockroom.errors import OutOfRangeError
from stockroom.services.item_views import (
    ItemFilter,
    available_locations,
    available_suppliers,
    filter_items,
    items_at,
    planogram,
)


@pytest.fixture
def items():
    return [
        {
            "id": "redvalve1",
            "name": "Red Valve",
            "description": "brass",
            "supplier": "Grainger",
            "supplier_url": "https://www.grainger.com/product/1",
            "on_hand": 3,
            "location": [["cab1", "row1", "col1"]],
        },
        {
            "id": "bluecap2",
            "name": "Blue Cap",
            "description": "",
            "supplier": "Uline",
            "supplier_url": "https://uline.com/caps",
            "on_hand": 25,
            "location": [["cab1", "row1", "col1"], ["cab2", "row3", "col2"]],
        },
        {
            "id": "gasket3",
            "name": "Gasket",
            "description": "rubber",
            "supplier": "",
            "supplier_url": None,
            "on_hand": None,
            "location": ["cab1-row2-col1"],
        },
    ]


def _ids(result):
    return [item["id"] for item in result]


def test_search_matches_text_fields_and_location_labels(items):
    assert _ids(filter_items(items, ItemFilter(search="VALVE"))) == ["redvalve1"]
    assert _ids(filter_items(items, ItemFilter(search="rubber"))) == ["gasket3"]
    assert _ids(filter_items(items, ItemFilter(search="cab 2"))) == ["bluecap2"]


def test_location_filter_accepts_any_stored_form(items):
    result = filter_items(items, ItemFilter(locations=["1,1,1"]))
    assert _ids(result) == ["redvalve1", "bluecap2"]

    result = filter_items(items, ItemFilter(locations=[["cab1", "row2", "col1"]]))
    assert _ids(result) == ["gasket3"]


def test_supplier_filters(items):
    assert _ids(filter_items(items, ItemFilter(suppliers=["Uline"]))) == ["bluecap2"]
    result = filter_items(items, ItemFilter(supplier_url="https://grainger.com/other"))
    assert _ids(result) == ["redvalve1"]


def test_low_stock_filter_skips_unknown_counts(items):
    result = filter_items(items, ItemFilter(low_stock_only=True, low_stock_threshold=10))
    assert _ids(result) == ["redvalve1"]


def test_low_stock_threshold_defaults_to_app_config(items):
    app = Flask(__name__)
    app.config["STOCKROOM_LOW_STOCK_THRESHOLD"] = 30

    with app.app_context():
        result = filter_items(items, ItemFilter(low_stock_only=True))

    assert _ids(result) == ["redvalve1", "bluecap2"]
    assert _ids(filter_items(items, ItemFilter(low_stock_only=True))) == ["redvalve1"]


def test_filters_combine(items):
    result = filter_items(items, ItemFilter(search="cap", locations=["cab1-row1-col1"]))
    assert _ids(result) == ["bluecap2"]


def test_available_locations_and_suppliers(items):
    assert available_locations(items) == [
        "Cab 1 · Row 1 · Col 1",
        "Cab 1 · Row 2 · Col 1",
        "Cab 2 · Row 3 · Col 2",
    ]
    assert available_suppliers(items) == ["Grainger", "Uline"]


def test_items_at_checks_bounds(items):
    assert _ids(items_at(items, 1, 1, 1)) == ["redvalve1", "bluecap2"]
    assert items_at(items, 5, 6, 4) == []
    with pytest.raises(OutOfRangeError):
        items_at(items, 1, 7, 1)


def test_planogram_covers_every_bin_of_the_cabinet(items):
    grid = planogram(items, 1)

    assert len(grid) == 24
    assert list(grid)[0] == (1, 1)
    assert _ids(grid[(1, 1)]) == ["redvalve1", "bluecap2"]
    assert _ids(grid[(2, 1)]) == ["gasket3"]
    assert grid[(3, 2)] == []

    assert _ids(planogram(items, 2)[(3, 2)]) == ["bluecap2"]
    with pytest.raises(OutOfRangeError):
        planogram(items, 0)
