from flask import Flask
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import Config

from . import models  # registers the inventory tables on db.Model.metadata
from .cli import register_cli
from .extensions import db
from .services.item_feed import ItemFeed
from .services.store import init_store
from .utils.logging import configure_logging


def _share_in_memory_database(app: Flask) -> None:
    # every session must see the same in-memory database; one connection
    # cannot isolate concurrent transactions, so the store pins it to this thread
    if not app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///:memory:"):
        return
    engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
    engine_options.setdefault("connect_args", {}).setdefault("check_same_thread", False)
    engine_options.setdefault("poolclass", StaticPool)
    app.config["STOCKROOM_SINGLE_CONNECTION"] = True


def _prepare_schema(app: Flask) -> str | None:
    """Create missing tables; return a user-facing message if that failed."""

    with app.app_context():
        try:
            with db.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            db.create_all()
        except OperationalError as exc:
            details = str(getattr(exc, "orig", exc)).strip()
            app.logger.error(
                "Inventory database unreachable at startup%s",
                f": {details}" if details else "",
                exc_info=app.debug,
            )
            message = (
                "Unable to reach the inventory database. Start the database "
                "service or point STOCKROOM_DB_URL at a reachable one."
            )
            return f"{message} (Error: {details})" if details else message
        except SQLAlchemyError:
            app.logger.exception("Inventory schema could not be created")
            return "The inventory schema could not be created. Review the logs for details."
        finally:
            db.session.remove()
    return None


def create_app(config_override=None):
    app = Flask(__name__)

    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)
    _share_in_memory_database(app)

    configure_logging(app)

    db.init_app(app)
    init_store(app)
    ItemFeed(app)
    register_cli(app)

    error_message = _prepare_schema(app)
    app.config["DATABASE_AVAILABLE"] = error_message is None
    app.config["DATABASE_ERROR"] = error_message

    return app
