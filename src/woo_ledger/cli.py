"""Command-line entry points for operating the ledger."""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path

import click
from dotenv import load_dotenv
from sqlalchemy import text

load_dotenv(Path.cwd() / ".env")

from woo_ledger.config.constants import (  # noqa: E402
    OPTIONAL_ENV_VARS,
    RECONCILIATION_REPORT_FILE,
    REQUIRED_ENV_VARS,
    SYNC_MODES,
    SYNC_RESOURCES,
)
from woo_ledger.config.settings import settings  # noqa: E402
from woo_ledger.core.exceptions import OrderNotFoundError  # noqa: E402
from woo_ledger.core.logger import setup_logger  # noqa: E402
from woo_ledger.core.monitoring import init_monitoring  # noqa: E402
from woo_ledger.db import (  # noqa: E402
    OutboxRepository,
    SyncStateRepository,
    create_tables,
    get_engine,
    get_session_factory,
)
from woo_ledger.services import queries  # noqa: E402

logger = setup_logger(__name__)


async def _run_with_db(database_url: str, work):
    """Run `work(session_factory)` against a fresh engine, disposing it afterwards."""
    engine = get_engine(database_url)
    try:
        await create_tables(engine)
        return await work(get_session_factory(engine))
    finally:
        await engine.dispose()


def _run(ctx: click.Context, work):
    return asyncio.run(_run_with_db(ctx.obj["database_url"], work))


def _parse_date(value):
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise click.BadParameter(f"Invalid date '{value}', expected YYYY-MM-DD")


def _print_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--database-url",
    default=None,
    help="Database URL (defaults to DATABASE_URL from the environment)",
)
@click.pass_context
def cli(ctx, database_url):
    """WooCommerce order ledger and profit analytics."""
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url or settings.database_url
    init_monitoring(settings.glitchtip_dsn, settings.environment, with_fastapi=False)


@cli.command("verify-env")
def verify_env():
    """Check that required environment variables are set."""
    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]

    for name in REQUIRED_ENV_VARS:
        click.echo(f"  {'✗' if name in missing else '✓'} {name}")
    for name in OPTIONAL_ENV_VARS:
        click.echo(f"  {'✓' if os.getenv(name) else '-'} {name} (optional)")

    if missing:
        click.echo(f"Missing required variables: {', '.join(missing)}", err=True)
        raise SystemExit(1)
    click.echo("Environment OK")


async def _check_database(session_factory) -> dict:
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
        return await queries.table_counts(session)


@cli.command()
@click.pass_context
def healthcheck(ctx):
    """Verify database connectivity and print row counts."""
    try:
        counts = _run(ctx, _check_database)
    except Exception as e:
        logger.error(f"Healthcheck failed: {e}", exc_info=True)
        click.echo(f"Database unreachable: {e}", err=True)
        raise SystemExit(1)

    click.echo("Database OK")
    for table, count in counts.items():
        click.echo(f"  {table:<16} {count}")


@cli.command()
@click.pass_context
def diagnose(ctx):
    """Print configuration, sync state, outbox and table diagnostics."""

    async def _diagnose(session_factory):
        counts = await _check_database(session_factory)
        async with session_factory() as session:
            states = await SyncStateRepository(session).all()
            outbox = await OutboxRepository(session).counts_by_status()
        return counts, states, outbox

    try:
        counts, states, outbox = _run(ctx, _diagnose)
    except Exception as e:
        logger.error(f"Diagnostics failed: {e}", exc_info=True)
        click.echo(f"Database unreachable: {e}", err=True)
        raise SystemExit(1)

    click.echo("Integrations:")
    click.echo(f"  WooCommerce: {'configured' if settings.woocommerce_config() else 'not configured'}")
    click.echo(f"  Shippo:      {'configured' if settings.shippo_config() else 'not configured'}")
    click.echo(f"  Scheduler:   {'enabled' if settings.scheduler_enabled else 'disabled'}")

    click.echo("Tables:")
    for table, count in counts.items():
        click.echo(f"  {table:<16} {count}")

    click.echo("Sync state:")
    if not states:
        click.echo("  never synced")
    for state in states:
        line = f"  {state.resource:<10} last={state.last_successful_sync} count={state.last_sync_count}"
        if state.last_error:
            line += f" error={state.last_error}"
        click.echo(line)

    click.echo("Shipping outbox:")
    if not outbox:
        click.echo("  empty")
    for status, count in sorted(outbox.items()):
        click.echo(f"  {status:<10} {count}")


@cli.command()
@click.option("--mode", type=click.Choice(SYNC_MODES), default="incremental", show_default=True)
@click.option(
    "--resource",
    "resources",
    type=click.Choice(SYNC_RESOURCES),
    multiple=True,
    help="Limit to a resource (repeatable); all resources by default",
)
@click.pass_context
def sync(ctx, mode, resources):
    """Pull products, coupons and orders from WooCommerce."""
    from woo_ledger.api.woocommerce_client import WooCommerceClient
    from woo_ledger.services.sync_service import SyncOptions, WooCommerceSyncService

    woo_config = settings.woocommerce_config()
    if woo_config is None:
        raise click.ClickException("WooCommerce credentials are not configured")

    async def _sync(session_factory):
        client = WooCommerceClient(woo_config)
        try:
            service = WooCommerceSyncService(client, session_factory, settings.sync_config())
            return await service.sync(SyncOptions(mode=mode, resources=resources or SYNC_RESOURCES))
        finally:
            await client.close()

    result = _run(ctx, _sync)
    for resource in (result.products, result.coupons, result.orders):
        if resource is None:
            continue
        click.echo(
            f"{resource.resource:<10} fetched={resource.fetched} synced={resource.synced} "
            f"skipped={resource.skipped} errors={resource.errors} dropped_lines={resource.dropped_lines}"
        )

    if not result.success:
        click.echo(f"Sync failed: {result.error}", err=True)
        raise SystemExit(1)
    click.echo("Sync completed")


@cli.command("import-csv")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def import_csv(ctx, directory):
    """Load the spreadsheet CSV export in DIRECTORY into the ledger."""
    from woo_ledger.services.csv_importer import CsvImporter, summarize

    summary = _run(ctx, lambda session_factory: CsvImporter(session_factory).run(directory))
    for line in summarize(summary):
        click.echo(line)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=RECONCILIATION_REPORT_FILE,
    show_default=True,
)
@click.pass_context
def reconcile(ctx, directory, report_path):
    """Compare ledger totals against the CSV export in DIRECTORY."""
    from woo_ledger.services.ledger_reconciliation import format_report
    from woo_ledger.services.ledger_reconciliation import reconcile as run_reconciliation

    report = _run(
        ctx,
        lambda session_factory: run_reconciliation(session_factory, directory, report_path),
    )
    for line in format_report(report):
        click.echo(line)
    click.echo(f"Report written to {report_path}")

    if not report.passed:
        raise SystemExit(1)


@cli.command("export-orders")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--status", default=None, help="Only orders with this status")
@click.option("--from", "date_from", default=None, help="Earliest order date (YYYY-MM-DD)")
@click.option("--to", "date_to", default=None, help="Latest order date (YYYY-MM-DD)")
@click.pass_context
def export_orders(ctx, output, status, date_from, date_to):
    """Write orders to a CSV file."""
    filters = queries.OrderFilters(
        status=status,
        date_from=_parse_date(date_from),
        date_to=_parse_date(date_to),
    )

    async def _export(session_factory):
        async with session_factory() as session:
            return await queries.export_orders_csv(session, filters)

    content = _run(ctx, _export)
    output.write_text(content, encoding="utf-8")
    rows = max(len(content.splitlines()) - 1, 0)
    click.echo(f"Exported {rows} orders to {output}")


@cli.command()
@click.argument("term")
@click.option("--limit", default=10, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def search(ctx, term, limit):
    """Search orders, products and expenses."""

    async def _search(session_factory):
        async with session_factory() as session:
            return await queries.search_all(session, term, limit=limit)

    _print_json(_run(ctx, _search))


@cli.command("update-status")
@click.argument("order")
@click.argument("status")
@click.pass_context
def update_status(ctx, order, status):
    """Manually set the status of ORDER."""

    async def _update(session_factory):
        async with session_factory() as session:
            return await queries.update_order_status(session, order, status)

    try:
        updated = _run(ctx, _update)
    except OrderNotFoundError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="STATUS")

    click.echo(f"{updated['order_number']} -> {updated['order_status']}")


@cli.command()
def serve():
    """Run the API server."""
    from woo_ledger.main import run

    run()


if __name__ == "__main__":
    cli()
