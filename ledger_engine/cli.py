"""
Command line interface for database management and manual ledger runs.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from alembic import command
from alembic.config import Config

from ledger_engine.core.config import Settings
from ledger_engine.core.database import DatabaseManager, build_engine, build_session_maker
from ledger_engine.core.exceptions import LedgerEngineException
from ledger_engine.core.logging import setup_logging, get_logger
from ledger_engine.models import JobType
from ledger_engine.services.engine import LedgerEngine
from ledger_engine.services.notifier import LoggingNotifier

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Referral ledger engine commands")
wallets_app = typer.Typer(help="Wallet pool commands")
app.add_typer(wallets_app, name="wallets")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value}")


@asynccontextmanager
async def _ledger_engine():
    config = Settings()
    setup_logging(config=config)
    engine = build_engine(config.database_url)
    try:
        yield LedgerEngine(build_session_maker(engine), notifier=LoggingNotifier(), config=config), engine
    finally:
        await engine.dispose()


def _run(coro):
    try:
        return asyncio.run(coro)
    except LedgerEngineException as e:
        console.print(f"[red]{e.code}[/red]: {e.message}")
        sys.exit(1)


@app.command()
def init():
    """Initialize database with tables."""
    async def _init():
        async with _ledger_engine() as (_, engine):
            await DatabaseManager(engine).create_tables()
        console.print("Database initialized successfully!")

    _run(_init())


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    """Reset database (drop all tables)."""
    if not yes and not typer.confirm("Are you sure you want to drop all tables?"):
        console.print("Operation cancelled")
        return

    async def _reset():
        async with _ledger_engine() as (_, engine):
            await DatabaseManager(engine).drop_tables()
        console.print("All tables dropped!")

    _run(_reset())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, revision)
    console.print(f"Database upgraded to: {revision}")


@app.command()
def health():
    """Check database health."""
    async def _health():
        async with _ledger_engine() as (_, engine):
            return await DatabaseManager(engine).health_check()

    if _run(_health()):
        console.print("Database is healthy!")
    else:
        console.print("Database health check failed!")
        sys.exit(1)


def _print_results(results):
    table = Table(title="Run results")
    table.add_column("Job", style="cyan")
    table.add_column("Date")
    table.add_column("Outcome", style="green")
    table.add_column("Processed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Total", justify="right")
    for r in results:
        table.add_row(
            r.job_type,
            r.process_date.isoformat(),
            r.outcome.value if r.reason is None else f"{r.outcome.value} ({r.reason})",
            str(r.processed),
            str(r.skipped + r.completed),
            str(r.errors),
            str(r.total_amount),
        )
    console.print(table)


def _run_job(job_type: str, process_date: Optional[str], catchup: bool, actor: Optional[str]):
    run_date = _parse_date(process_date)

    async def _job():
        async with _ledger_engine() as (ledger, _):
            if catchup:
                return await ledger.run_with_catchup(job_type, run_date, "manual", actor)
            return [await ledger.run_job(job_type, run_date, "manual", actor)]

    _print_results(_run(_job()))


@app.command("run-accrual")
def run_accrual(
    process_date: Optional[str] = typer.Option(None, "--date", help="Business date YYYY-MM-DD"),
    catchup: bool = typer.Option(False, help="Also run missed dates"),
    actor: Optional[str] = typer.Option(None, help="Actor id recorded on the run")
):
    """Run daily benefit accrual."""
    _run_job(JobType.DAILY_BENEFITS.value, process_date, catchup, actor)


@app.command("run-unlock")
def run_unlock(
    process_date: Optional[str] = typer.Option(None, "--date", help="Business date YYYY-MM-DD"),
    catchup: bool = typer.Option(False, help="Also run missed dates"),
    actor: Optional[str] = typer.Option(None, help="Actor id recorded on the run")
):
    """Run commission unlock."""
    _run_job(JobType.COMMISSION_UNLOCK.value, process_date, catchup, actor)


@app.command()
def runs(
    job_type: JobType = typer.Argument(..., help="daily_benefits or commission_unlock"),
    days: int = typer.Option(7, help="How many days back to show")
):
    """Show recent processing runs."""
    async def _runs():
        async with _ledger_engine() as (ledger, _):
            end = ledger.today()
            return await ledger.get_run_status(job_type.value, end - timedelta(days=days - 1), end)

    records = _run(_runs())

    table = Table(title=f"{job_type.value} runs")
    table.add_column("Date", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Processed", justify="right")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Total", justify="right")
    table.add_column("Duration ms", justify="right")
    table.add_column("Attempts", justify="right")
    for r in records:
        table.add_row(
            r.process_date.isoformat(),
            r.status,
            str(r.processed_count),
            str(r.error_count),
            str(r.total_amount),
            str(r.duration_ms or ""),
            str(r.attempt_count),
        )
    console.print(table)


@app.command("force-restart")
def force_restart(
    job_type: JobType = typer.Argument(...),
    process_date: str = typer.Argument(..., help="Business date YYYY-MM-DD"),
    actor: Optional[str] = typer.Option(None, help="Actor id recorded on the run")
):
    """Release a run stuck in processing."""
    run_date = _parse_date(process_date)

    async def _restart():
        async with _ledger_engine() as (ledger, _):
            return await ledger.ledger.force_restart(run_date, job_type.value, actor)

    record = _run(_restart())
    console.print(f"Run {record.job_type} {record.process_date} is now {record.status}")


@app.command()
def upcoming(days: int = typer.Option(7, help="Look-ahead window in days")):
    """Show pending commissions unlocking soon."""
    async def _upcoming():
        async with _ledger_engine() as (ledger, _):
            return await ledger.commissions.upcoming_unlocks(ledger.today(), days)

    table = Table(title="Upcoming unlocks")
    table.add_column("Date", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Total", justify="right")
    for row in _run(_upcoming()):
        table.add_row(row["unlock_date"], str(row["count"]), row["total_amount"])
    console.print(table)


@app.command()
def schedule():
    """Run the cron scheduler in the foreground."""
    from ledger_engine.scheduler.main import main

    asyncio.run(main())


@app.command()
def serve(host: Optional[str] = None, port: Optional[int] = None):
    """Serve the admin API with uvicorn."""
    import uvicorn

    from ledger_engine.api.main import create_app

    config = Settings()
    uvicorn.run(create_app(config=config), host=host or config.host, port=port or config.port)


@wallets_app.command("add")
def wallets_add(
    address: str,
    network: str = typer.Option(..., help="e.g. BEP20"),
    currency: str = typer.Option(..., help="e.g. USDT"),
    label: Optional[str] = None
):
    """Add a wallet to the rotation pool."""
    async def _add():
        async with _ledger_engine() as (ledger, _):
            return await ledger.wallets.add_wallet(address, network, currency, label)

    wallet = _run(_add())
    console.print(f"Wallet {wallet.id} added ({wallet.network}/{wallet.currency})")


@wallets_app.command("disable")
def wallets_disable(wallet_id: int):
    """Take a wallet out of rotation."""
    async def _disable():
        async with _ledger_engine() as (ledger, _):
            return await ledger.wallets.disable_wallet(wallet_id)

    _run(_disable())
    console.print(f"Wallet {wallet_id} disabled")


@wallets_app.command("list")
def wallets_list(network: Optional[str] = None, currency: Optional[str] = None):
    """List wallets with their rotation counters."""
    async def _list():
        async with _ledger_engine() as (ledger, _):
            return await ledger.wallets.list_wallets(network, currency)

    table = Table(title="Wallets")
    table.add_column("ID", justify="right")
    table.add_column("Address", style="cyan")
    table.add_column("Network")
    table.add_column("Currency")
    table.add_column("Status", style="green")
    table.add_column("Shown", justify="right")
    for w in _run(_list()):
        table.add_row(str(w.id), w.address, w.network, w.currency, w.status, str(w.shown_count))
    console.print(table)


@wallets_app.command("health")
def wallets_health(network: Optional[str] = None, currency: Optional[str] = None):
    """Show rotation health for a wallet pool."""
    async def _health():
        async with _ledger_engine() as (ledger, _):
            return await ledger.wallets.check_health(
                network or ledger.config.default_network,
                currency or ledger.config.default_currency
            )

    report = _run(_health()).to_dict()
    console.print(f"Status: {report['status']}")
    for issue in report["issues"]:
        console.print(f"  - {issue}")
    console.print(
        f"Available {report['available_wallets']}/{report['total_wallets']}, "
        f"rotation balance {report['rotation_balance']}"
    )


if __name__ == "__main__":
    app()
