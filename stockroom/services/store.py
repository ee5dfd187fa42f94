"""Optimistic transactions over the Flask-SQLAlchemy session.

Every versioned model carries a ``version_id_col``; an UPDATE or DELETE that
finds a different version raises :class:`StaleDataError` at flush time. The
transaction body is then rolled back and re-run against fresh reads, so the
body must be a pure function of what it reads.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

from flask import Flask, current_app
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockroom.errors import StoreUnavailableError, TransactionConflictError, ValidationError
from stockroom.extensions import db


logger = logging.getLogger(__name__)

T = TypeVar("T")
CommitListener = Callable[[frozenset], None]

_CHANGED_MODELS_KEY = "stockroom.changed_models"
_LISTENERS_KEY = "stockroom.commit_listeners"
_OWNER_THREAD_KEY = "stockroom.connection_owner"

# SQLSTATE serialization_failure and deadlock_detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}
# SQLSTATE unique_violation
_DUPLICATE_KEY_SQLSTATES = {"23505"}


@event.listens_for(Session, "after_flush")
def _record_changed_models(session, flush_context) -> None:
    changed = session.info.setdefault(_CHANGED_MODELS_KEY, set())
    for instance in (*session.new, *session.dirty, *session.deleted):
        changed.add(type(instance))


def init_store(app: Flask) -> None:
    app.extensions.setdefault(_LISTENERS_KEY, [])
    if app.config.get("STOCKROOM_SINGLE_CONNECTION"):
        # every session shares one DBAPI connection, so only one thread may use it
        app.extensions[_OWNER_THREAD_KEY] = threading.get_ident()


def serves_other_threads(app: Flask | None = None) -> bool:
    """False when the store is pinned to the thread that created the app."""

    target = app or current_app
    return _OWNER_THREAD_KEY not in target.extensions


def _require_owner_thread(label: str) -> None:
    owner = current_app.extensions.get(_OWNER_THREAD_KEY)
    if owner is not None and owner != threading.get_ident():
        logger.error("Refused %s: the in-memory store belongs to another thread", label)
        raise StoreUnavailableError(
            "The in-memory inventory store only serves the thread that created it."
        )


def add_commit_listener(listener: CommitListener, app: Flask | None = None) -> CommitListener:
    target = app or current_app
    target.extensions.setdefault(_LISTENERS_KEY, []).append(listener)
    return listener


def remove_commit_listener(listener: CommitListener, app: Flask | None = None) -> None:
    target = app or current_app
    listeners = target.extensions.get(_LISTENERS_KEY, [])
    if listener in listeners:
        listeners.remove(listener)


def _notify_commit_listeners(changed: frozenset) -> None:
    if not changed:
        return
    for listener in list(current_app.extensions.get(_LISTENERS_KEY, [])):
        try:
            listener(changed)
        except Exception:
            logger.exception("Commit listener %r failed", listener)


def _is_conflict(exc: OperationalError) -> bool:
    root = getattr(exc, "orig", None)
    sqlstate = getattr(root, "pgcode", None) or getattr(root, "sqlstate", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    message = str(root or exc).lower()
    return "database is locked" in message or "deadlock" in message


def _is_duplicate_key(exc: IntegrityError) -> bool:
    root = getattr(exc, "orig", None)
    sqlstate = getattr(root, "pgcode", None) or getattr(root, "sqlstate", None)
    if sqlstate in _DUPLICATE_KEY_SQLSTATES:
        return True
    message = str(root or exc).lower()
    return "unique constraint" in message or "duplicate" in message


def get_document(session, model, key: Any):
    """Load ``model`` by primary key, bypassing any cached identity."""

    return session.get(model, key, populate_existing=True)


def run_transaction(
    work: Callable[[Any], T],
    *,
    max_attempts: int | None = None,
    label: str | None = None,
) -> T:
    """Run ``work(session)`` and commit, retrying on write conflicts.

    Errors raised by ``work`` itself roll the transaction back and propagate
    unchanged. Conflicts are retried up to ``max_attempts`` times before
    :class:`TransactionConflictError` is raised; any other database failure
    is reported as :class:`StoreUnavailableError` without a retry.
    """

    label = label or getattr(work, "__name__", "transaction")
    _require_owner_thread(label)
    session = db.session
    if max_attempts is None:
        max_attempts = int(current_app.config.get("STOCKROOM_TXN_MAX_ATTEMPTS", 10))
    backoff = float(current_app.config.get("STOCKROOM_TXN_RETRY_BACKOFF", 0) or 0)

    for attempt in range(1, max_attempts + 1):
        session.info.pop(_CHANGED_MODELS_KEY, None)
        try:
            result = work(session)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if not _is_duplicate_key(exc):
                # CHECK, NOT NULL and similar breaches fail the same way on every retry
                detail = str(getattr(exc, "orig", exc))
                logger.warning("Transaction %s broke a store constraint: %s", label, detail)
                raise ValidationError(f"The store rejected the change: {detail}") from exc
            logger.info(
                "Transaction %s raced on a duplicate key on attempt %s/%s",
                label,
                attempt,
                max_attempts,
            )
        except StaleDataError as exc:
            session.rollback()
            logger.info(
                "Transaction %s conflicted on attempt %s/%s: %s",
                label,
                attempt,
                max_attempts,
                exc.__class__.__name__,
            )
        except OperationalError as exc:
            session.rollback()
            if not _is_conflict(exc):
                logger.exception("Store unavailable during transaction %s", label)
                raise StoreUnavailableError(
                    "The inventory store is unavailable. Try again."
                ) from exc
            logger.info(
                "Transaction %s hit a locked database on attempt %s/%s",
                label,
                attempt,
                max_attempts,
            )
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Store error during transaction %s", label)
            raise StoreUnavailableError(
                "The inventory store is unavailable. Try again."
            ) from exc
        except Exception:
            session.rollback()
            raise
        else:
            changed = frozenset(session.info.pop(_CHANGED_MODELS_KEY, ()))
            _notify_commit_listeners(changed)
            return result

        if backoff and attempt < max_attempts:
            time.sleep(backoff * attempt)

    logger.warning("Transaction %s gave up after %s attempts", label, max_attempts)
    raise TransactionConflictError(label, max_attempts)


def read_only(work: Callable[[Any], T], *, label: str | None = None) -> T:
    """Run a read-only ``work(session)`` and map store failures."""

    _require_owner_thread(label or getattr(work, "__name__", "read"))
    session = db.session
    try:
        return work(session)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Store error during read %s", label or getattr(work, "__name__", "read"))
        raise StoreUnavailableError("The inventory store is unavailable. Try again.") from exc
