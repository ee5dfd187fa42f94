import click
from flask import g

from .errors import StockroomError
from .extensions import db
from .services.checkout import CheckoutManager
from .services.item_import import ImportPipeline
from .services.item_views import planogram
from .services.items import ItemStore
from .utils import location_code
from .utils.tabular_import import TabularImportError


def register_cli(app):
    @app.cli.command("init-db")
    def init_db() -> None:
        """Create any missing inventory tables."""
        db.create_all()
        click.echo("Inventory tables are ready.")

    @app.cli.command("import-items")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--all", "import_all", is_flag=True, help="Also import rows that failed validation.")
    @click.option("--operator", default=None, help="Name recorded in the log for this run.")
    def import_items(path: str, import_all: bool, operator: str | None) -> None:
        """Import items from a CSV, TSV, or XLSX file."""
        g.operator = operator
        pipeline = ImportPipeline()
        try:
            batch = pipeline.parse_file(path)
        except TabularImportError as exc:
            raise click.ClickException(str(exc)) from exc

        click.echo(f"Valid rows: {len(batch.valid_rows)}")
        click.echo(f"Rows with errors: {len(batch.error_rows)}")
        for error in batch.error_rows:
            click.echo(f"  row {error.row_number}: {'; '.join(error.errors)}")

        def _progress(imported: int, total: int) -> None:
            click.echo(f"Imported {imported}/{total}")

        if import_all:
            result = pipeline.import_all(batch, progress=_progress)
        else:
            result = pipeline.import_valid(batch, progress=_progress)

        for failure in result.failures:
            click.echo(f"  row {failure.row_number} ({failure.name}) failed: {failure.message}")
        click.echo(f"Imported {result.imported} of {result.total} rows.")

    @app.cli.command("checkout")
    @click.argument("user_id")
    @click.argument("item_id")
    @click.argument("qty", type=int)
    def checkout(user_id: str, item_id: str, qty: int) -> None:
        """Check out QTY units of ITEM_ID for USER_ID."""
        g.operator = user_id
        try:
            entry = CheckoutManager().checkout(user_id, item_id, qty)
        except StockroomError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"{user_id} now holds {entry.qty} of {item_id}.")

    @app.cli.command("return")
    @click.argument("user_id")
    @click.argument("item_id")
    @click.argument("qty", type=int)
    def return_item(user_id: str, item_id: str, qty: int) -> None:
        """Return QTY units of ITEM_ID held by USER_ID."""
        g.operator = user_id
        try:
            remaining = CheckoutManager().return_item(user_id, item_id, qty)
        except StockroomError as exc:
            raise click.ClickException(str(exc)) from exc
        held = remaining.qty if remaining else 0
        click.echo(f"{user_id} now holds {held} of {item_id}.")

    @app.cli.command("checked-out")
    @click.argument("user_id")
    def checked_out(user_id: str) -> None:
        """List what USER_ID currently has checked out."""
        try:
            entries = CheckoutManager().checked_out_with_items(user_id)
        except StockroomError as exc:
            raise click.ClickException(str(exc)) from exc
        if not entries:
            click.echo(f"{user_id} has nothing checked out.")
            return
        for entry in entries:
            name = entry.item["name"] if entry.item else "(deleted item)"
            click.echo(f"{entry.entry.item_id}\t{entry.entry.qty}\t{name}")

    @app.cli.command("planogram")
    @click.argument("cabinet", type=int)
    def show_planogram(cabinet: int) -> None:
        """Print the bins of CABINET with the items stored in each."""
        try:
            items = [item.to_dict() for item in ItemStore().list_items()]
            grid = planogram(items, cabinet)
        except StockroomError as exc:
            raise click.ClickException(str(exc)) from exc
        for (row, col), entries in grid.items():
            names = ", ".join(item["name"] for item in entries) or "-"
            click.echo(f"{location_code.label((cabinet, row, col))}: {names}")
