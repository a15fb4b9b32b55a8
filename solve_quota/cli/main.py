"""
CLI interface for Solve Quota.

Provides command-line access to quota checks, entitlement grants and
usage statistics.
"""

import sys
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from solve_quota.config.loader import QuotaConfig, default_quota_config, load_quota_config
from solve_quota.core.calendar import usage_day
from solve_quota.core.entitlement import UNLIMITED
from solve_quota.core.errors import DependencyUnavailable, InputError
from solve_quota.core.identity import FileIdentityStore, Identity, resolve_identity
from solve_quota.core.ledger import DEFAULT_FEATURE
from solve_quota.factory import QuotaService, create_quota_service
from solve_quota.logging_config import setup_logging
from solve_quota.storage.repository import CounterRepository, initialize_schema, set_entitlement

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1       # Input or dependency error
EXIT_CODE_EXHAUSTED = 2  # Daily limit reached, nothing consumed

DEFAULT_IDENTITY_FILE = Path.home() / ".solve_quota" / "device.json"


def _config(ctx: typer.Context) -> QuotaConfig:
    return ctx.obj["config"]


def _service(ctx: typer.Context) -> QuotaService:
    return create_quota_service(_config(ctx))


def _identity(user: Optional[str], device: Optional[str], identity_file: Path) -> Identity:
    """Explicit ids win; otherwise fall back to this installation's device id."""
    if user or device:
        return Identity.from_request(user, device)
    return resolve_identity(None, FileIdentityStore(identity_file))


def _format_remaining(remaining: int) -> str:
    return "unlimited" if remaining == UNLIMITED else str(remaining)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML quota configuration file"
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database path (overrides the configuration)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Solve Quota CLI."""
    setup_logging(debug=verbose)

    try:
        config = load_quota_config(str(config_path)) if config_path else default_quota_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if db_path:
        config = replace(config, db_path=db_path)
    ctx.obj = {"config": config}

    if ctx.invoked_subcommand is None:
        console.print("Solve Quota - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the quota database."""
    try:
        initialize_schema(_config(ctx).db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except DependencyUnavailable as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def check(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Authenticated user id"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Anonymous device id"),
    feature: str = typer.Option(DEFAULT_FEATURE, "--feature", "-f", help="Metered feature"),
    identity_file: Path = typer.Option(DEFAULT_IDENTITY_FILE, "--identity-file", help="Device id store")
):
    """Show today's allowance for an identity without consuming it."""
    try:
        identity = _identity(user, device, identity_file)
        snapshot = _service(ctx).ledger.check(identity, feature)
    except InputError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except DependencyUnavailable as e:
        console.print(f"[red]Usage service unavailable:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    status = "[green]allowed[/]" if snapshot.allowed else "[yellow]exhausted[/]"
    console.print(f"\n[bold]{identity.key}[/bold] {feature}: {status}")
    console.print(f"Used today: {snapshot.used}/{snapshot.cap}")
    console.print(f"Remaining: {_format_remaining(snapshot.remaining)}")
    if snapshot.is_premium:
        console.print("Premium: yes")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def use(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Authenticated user id"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Anonymous device id"),
    feature: str = typer.Option(DEFAULT_FEATURE, "--feature", "-f", help="Metered feature"),
    identity_file: Path = typer.Option(DEFAULT_IDENTITY_FILE, "--identity-file", help="Device id store")
):
    """Consume one unit of today's allowance."""
    try:
        identity = _identity(user, device, identity_file)
        result = _service(ctx).ledger.use(identity, feature)
    except InputError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except DependencyUnavailable as e:
        console.print(f"[red]Usage service unavailable, nothing consumed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not result.success:
        console.print(f"[yellow]Daily {feature} limit reached[/] ({result.used}/{result.cap})")
        sys.exit(EXIT_CODE_EXHAUSTED)

    console.print(f"[green]✓[/] {feature} recorded for {identity.key}")
    console.print(f"Remaining: {_format_remaining(result.remaining)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def grant(ctx: typer.Context, user_id: str = typer.Argument(..., help="User to make premium")):
    """Mark a user as premium (unlimited usage)."""
    _set_premium(ctx, user_id, True)


@app.command()
def revoke(ctx: typer.Context, user_id: str = typer.Argument(..., help="User to return to the free tier")):
    """Return a user to the free tier."""
    _set_premium(ctx, user_id, False)


def _set_premium(ctx: typer.Context, user_id: str, is_premium: bool) -> None:
    db_path = _config(ctx).db_path
    try:
        initialize_schema(db_path)
        set_entitlement(user_id, is_premium, db_path)
    except (ValueError, DependencyUnavailable) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    label = "premium" if is_premium else "free"
    console.print(f"[green]✓[/] {user_id} is now {label}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    ctx: typer.Context,
    days: int = typer.Option(1, "--days", "-n", min=1, help="Number of usage days to include, ending today")
):
    """Show granted free-tier usage and estimated cost."""
    config = _config(ctx)
    until_day = usage_day(utc_offset_hours=config.utc_offset_hours)
    since_day = (date.fromisoformat(until_day) - timedelta(days=days - 1)).isoformat()

    try:
        result = CounterRepository(config.db_path).get_usage_stats(since_day, until_day)
    except DependencyUnavailable as e:
        console.print(f"[red]Usage service unavailable:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_stats(result)
    sys.exit(EXIT_CODE_PASS)


@app.command("device-id")
def device_id(
    identity_file: Path = typer.Option(DEFAULT_IDENTITY_FILE, "--identity-file", help="Device id store")
):
    """Print this installation's device id, creating it on first use."""
    try:
        identity = resolve_identity(None, FileIdentityStore(identity_file))
    except DependencyUnavailable as e:
        console.print(f"[red]Error reading device id:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(identity.value)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


def _display_stats(result: dict) -> None:
    """Display usage statistics as a table."""
    console.print(f"\n[bold]Usage {result['since_day']} to {result['until_day']}[/bold]")
    console.print("-" * 40)

    if not result["per_feature"]:
        console.print("\n[dim]No usage recorded for this period.[/]")
        return

    table = Table()
    table.add_column("Feature")
    table.add_column("Uses", justify="right")
    table.add_column("Estimated cost", justify="right")
    for feature, row in result["per_feature"].items():
        table.add_row(feature, str(row["uses"]), _format_currency(row["estimated_cost"]))
    console.print(table)

    console.print(f"Total uses: {result['total_uses']}")
    console.print(f"Total estimated cost: {_format_currency(result['total_cost'])}")
    console.print(f"Distinct identities: {result['distinct_identities']}")
    console.print(f"Counters at cap: {result['exhausted_counters']}")


if __name__ == "__main__":
    app()
