"""Command line interface for the packaged service."""

from __future__ import annotations

from typing import Optional

import typer
import uvicorn

from . import queries, records
from .config import Settings, get_settings
from .database import get_session_factory, init_database, session_scope
from .exceptions import StockLedgerError
from .identity import SYSTEM_ACTOR
from .logging_config import configure_logging
from .operations import StockService

app = typer.Typer(help="Manage and run the inventory ledger service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _resolve_settings() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    init_database()
    return settings


def _service(settings: Settings) -> StockService:
    return StockService.from_settings(settings, get_session_factory())


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Start the FastAPI service using Uvicorn."""

    settings = _resolve_settings()

    uvicorn.run(
        "inventory_ledger.app:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=log_level or settings.log_level,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Create the database tables."""

    settings = _resolve_settings()
    typer.echo(f"Database initialised at {settings.database_url}")


@app.command()
def show_config() -> None:
    """Print out the effective configuration."""

    settings = get_settings()
    typer.echo(f"Database: {settings.database_url}")
    typer.echo(f"API prefix: {settings.api_prefix}")
    typer.echo(f"Max attempts: {settings.max_attempts}")
    typer.echo(f"Lock timeout: {settings.lock_timeout}s")
    typer.echo(f"Strict reservations: {settings.strict_reservations}")


@app.command("create-record")
def create_record(
    product_id: str = typer.Argument(..., help="Product identifier from the catalog"),
    on_hand: int = typer.Option(0, "--on-hand", min=0, help="Opening on-hand quantity"),
    location: Optional[str] = typer.Option(None, help="Bin or shelf label"),
    reorder_level: int = typer.Option(0, min=0, help="Low-stock threshold"),
) -> None:
    """Start tracking inventory for a product."""

    settings = _resolve_settings()
    try:
        result = _service(settings).create(
            product_id, on_hand, SYSTEM_ACTOR, location=location, reorder_level=reorder_level
        )
    except StockLedgerError as exc:
        typer.secho(f"{exc.code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    typer.secho(
        f"Created inventory record {result.record.product_id} (id={result.record.id}, on_hand={on_hand})",
        fg=typer.colors.GREEN,
    )


@app.command()
def adjust(
    product_id: str = typer.Argument(..., help="Product identifier"),
    delta: int = typer.Argument(..., help="Signed quantity change"),
    reason: str = typer.Option("manual", help="Reason code recorded in the ledger"),
    reference: Optional[str] = typer.Option(None, help="Idempotency key"),
) -> None:
    """Apply a manual stock adjustment."""

    settings = _resolve_settings()
    try:
        result = _service(settings).adjust(product_id, delta, reason, SYSTEM_ACTOR, reference=reference)
    except StockLedgerError as exc:
        typer.secho(f"{exc.code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    record = result.record
    suffix = " (replayed)" if result.replayed else ""
    typer.secho(
        f"{record.product_id}: on_hand={record.quantity_on_hand} reserved={record.quantity_reserved}{suffix}",
        fg=typer.colors.GREEN,
    )


@app.command("list-inventory")
def list_inventory_cmd(
    low_stock: bool = typer.Option(False, "--low-stock", help="Only records at or below their reorder level"),
    include_inactive: bool = typer.Option(False, "--all", help="Include deactivated records"),
) -> None:
    """Display inventory records stored in the database."""

    _resolve_settings()
    with session_scope() as session:
        active = None if include_inactive else True
        if low_stock:
            items = queries.low_stock(session, limit=1000)
        else:
            items = queries.list_inventory(session, active=active, limit=1000)
        if not items:
            typer.echo("No inventory records found.")
            return
        _print_header(f"Inventory records ({records.count_records(session, active=active)} total)")
        for item in items:
            typer.echo(
                f"- {item.product_id} | on_hand={item.quantity_on_hand} | reserved={item.quantity_reserved}"
                f" | available={item.available} | active={item.is_active} | v{item.version}"
            )


@app.command()
def reconcile(
    product_id: Optional[str] = typer.Argument(None, help="Limit the check to one product"),
) -> None:
    """Replay the movement ledger and compare it with stored quantities."""

    _resolve_settings()
    mismatches = 0
    with session_scope() as session:
        try:
            reports = [queries.reconcile(session, product_id)] if product_id else queries.reconcile_all(session)
            _print_header("Ledger reconciliation")
            for report in reports:
                colour = typer.colors.GREEN if report.consistent else typer.colors.RED
                mismatches += 0 if report.consistent else 1
                typer.secho(
                    f"- {report.product_id}: record={report.on_hand}/{report.reserved} "
                    f"ledger={report.ledger_on_hand}/{report.ledger_reserved} "
                    f"movements={report.movement_count}",
                    fg=colour,
                )
        except StockLedgerError as exc:
            typer.secho(f"{exc.code}: {exc.message}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
    if mismatches:
        typer.secho(f"{mismatches} product(s) out of balance", fg=typer.colors.RED)
        raise typer.Exit(code=2)


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
