from __future__ import annotations

import logging
import re

from stockroom.models import SequenceCounter
from stockroom.services.store import get_document, read_only, run_transaction


logger = logging.getLogger(__name__)

ITEM_COUNTER = "items"

_ID_STRIP_PATTERN = re.compile(r"[^a-z0-9]")


def next_suffix(counter: str = ITEM_COUNTER) -> int:
    """Atomically advance ``counter`` and return its new value.

    Concurrent callers race on the counter's version column; losers re-read
    and retry, so every caller receives a distinct value. A value handed out
    is never reused, even if the caller fails to use it.
    """

    def _advance(session) -> int:
        row = get_document(session, SequenceCounter, counter)
        if row is None:
            row = SequenceCounter(name=counter, value=0)
            session.add(row)
        row.value = (row.value or 0) + 1
        return row.value

    value = run_transaction(_advance, label=f"next_suffix:{counter}")
    logger.debug("Allocated %s suffix %s", counter, value)
    return value


def current_value(counter: str = ITEM_COUNTER) -> int:
    def _read(session) -> int:
        row = get_document(session, SequenceCounter, counter)
        return row.value if row is not None else 0

    return read_only(_read, label=f"current_value:{counter}")


def build_item_id(name: str, suffix: int) -> str:
    """``"Red Valve"`` and ``42`` become ``"redvalve42"``."""

    return _ID_STRIP_PATTERN.sub("", (name or "").lower()) + str(suffix)
