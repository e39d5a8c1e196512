"""
CLI interface for Token Ledger.

Provides command-line access to sources, usage logging, charts and
subscriptions.
"""

import logging
import sys
import uuid
from datetime import date, datetime
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from token_ledger.config.loader import LedgerConfig, resolve_config
from token_ledger.core.aggregation import build_series, current_period_total
from token_ledger.core.grouping import classify_source
from token_ledger.core.periods import Period, enumerate_buckets
from token_ledger.core.selection import (
    AggregateAll,
    AllInGroup,
    Selection,
    SingleSource,
)
from token_ledger.core.subscriptions import monthly_cost, total_monthly_cost
from token_ledger.storage.models import BillingCycle, Source, Subscription
from token_ledger.storage.repository import (
    UsageRepository,
    get_repository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PERIOD_HELP = "Bucket width: day, week or month"


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {escape(message)}")
    sys.exit(EXIT_CODE_FAIL)


def _context(ctx: typer.Context) -> Tuple[LedgerConfig, UsageRepository]:
    """Resolve config and repository for a command."""
    config = resolve_config(ctx.obj.get("config_path") if ctx.obj else None)
    return config, get_repository(config.database)


def _parse_day(value: Optional[str]) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def _selection(group: Optional[str], key: Optional[str]) -> Selection:
    if group and key:
        raise ValueError("Use either --group or --key, not both")
    if key:
        return SingleSource(key)
    if group:
        return AllInGroup(group)
    return AggregateAll()


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return f"{amount:,.0f}"
    return f"{amount:,.2f}"


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _key_fragment(key: str) -> str:
    """Keep only the last four characters of a key for display.

    Keys of four characters or fewer are masked completely.
    """
    return f"...{key[-4:]}" if len(key) > 4 else "****"


def _parse_cycle(cycle: str) -> BillingCycle:
    try:
        return BillingCycle(cycle.lower())
    except ValueError:
        raise ValueError(f"Unknown billing cycle {cycle!r}, must be monthly or yearly")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """Token Ledger CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = {"config_path": config}
    if ctx.invoked_subcommand is None:
        console.print("Token Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Token Ledger database."""
    try:
        config, _ = _context(ctx)
        initialize_schema(config.database)
        console.print(f"[green]✓[/] Database initialized at {config.database}")
    except Exception as e:
        _fail(f"initializing database: {e}")


@app.command("add-key")
def add_key(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name for the key"),
    model: str = typer.Option(..., "--model", "-m", help="Model the key is used with"),
    key: str = typer.Option(..., "--key", "-k", help="API key; only a fragment is stored"),
    group: Optional[str] = typer.Option(
        None,
        "--group",
        "-g",
        help="Provider group; derived from name and model when omitted"
    )
):
    """Register an API key as a usage source."""
    try:
        config, repository = _context(ctx)
        source = Source(
            source_id=uuid.uuid4().hex[:12],
            display_name=name,
            group_tag=group or classify_source(name, model, config.providers),
            model=model,
            key_fragment=_key_fragment(key),
            created_at=datetime.now()
        )
        repository.add_source(source)
        console.print(
            f"[green]✓[/] Added {source.display_name} "
            f"([bold]{source.source_id}[/], group {source.group_tag})"
        )
    except Exception as e:
        _fail(str(e))


@app.command()
def keys(
    ctx: typer.Context,
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Only this provider group")
):
    """List registered keys."""
    try:
        _, repository = _context(ctx)
        sources = repository.list_sources(group_tag=group)
    except Exception as e:
        _fail(str(e))

    if not sources:
        console.print("[dim]No keys registered.[/]")
        return

    table = Table(title="API Keys")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Group")
    table.add_column("Model")
    table.add_column("Key")
    for source in sources:
        table.add_row(
            source.source_id,
            source.display_name,
            source.group_tag,
            source.model,
            source.key_fragment
        )
    console.print(table)


@app.command("edit-key")
def edit_key(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., help="ID of the key to edit"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New display name"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="New model"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Replacement API key"),
    group: Optional[str] = typer.Option(
        None,
        "--group",
        "-g",
        help="Provider group; derived again from name and model when omitted"
    )
):
    """Change a registered key's name, model, key or group."""
    try:
        config, repository = _context(ctx)
        current = repository.get_source(source_id)
        if current is None:
            raise ValueError(f"Unknown key: {source_id}")
        new_name = name if name is not None else current.display_name
        new_model = model if model is not None else current.model
        source = Source(
            source_id=current.source_id,
            display_name=new_name,
            group_tag=group or classify_source(new_name, new_model, config.providers),
            model=new_model,
            key_fragment=_key_fragment(key) if key is not None else current.key_fragment,
            created_at=current.created_at
        )
        repository.update_source(source)
    except Exception as e:
        _fail(str(e))
    console.print(
        f"[green]✓[/] Updated {source.display_name} "
        f"([bold]{source.source_id}[/], group {source.group_tag})"
    )


@app.command("remove-key")
def remove_key(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., help="ID of the key to remove")
):
    """Remove a key and all of its usage."""
    try:
        _, repository = _context(ctx)
        removed = repository.delete_source(source_id)
    except Exception as e:
        _fail(str(e))
    if not removed:
        _fail(f"Unknown key: {source_id}")
    console.print(f"[green]✓[/] Removed {source_id} and its usage")


@app.command()
def log(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., help="ID of the key the usage belongs to"),
    amount: float = typer.Argument(..., help="Usage amount, e.g. tokens"),
    day: Optional[str] = typer.Option(None, "--date", "-d", help="Day as YYYY-MM-DD (default today)")
):
    """Add usage to a key's total for one day."""
    try:
        _, repository = _context(ctx)
        event = repository.record_usage(source_id, _parse_day(day), amount)
    except Exception as e:
        _fail(str(e))
    console.print(
        f"[green]✓[/] {event.day.isoformat()}: {_format_amount(event.amount)} "
        f"total for {event.source_id}"
    )


@app.command()
def chart(
    ctx: typer.Context,
    period: str = typer.Option("day", "--period", "-p", help=PERIOD_HELP),
    window: Optional[int] = typer.Option(None, "--window", "-w", help="Number of buckets"),
    group: Optional[str] = typer.Option(None, "--group", "-g", help="One series per key in this group"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Only this key")
):
    """Show bucketed usage and the current-period total."""
    try:
        config, repository = _context(ctx)
        parsed_period = Period.parse(period)
        selection = _selection(group, key)
        today = date.today()
        size = window if window is not None else config.window
        buckets = enumerate_buckets(today, parsed_period, size)

        sources = repository.list_sources()
        events = repository.fetch_usage_events(start=buckets[0].start, end=today)
        records = build_series(events, sources, selection, parsed_period, size, now=today)
        total = current_period_total(
            events, selection, parsed_period, now=today, sources=sources
        )
    except Exception as e:
        _fail(str(e))

    table = Table(title=f"{parsed_period.value.capitalize()} Usage")
    table.add_column("Period")
    series_names = records[0].series_names
    for name in series_names:
        table.add_column(name, justify="right")
    for record in records:
        table.add_row(record.label, *(_format_amount(value) for _, value in record))
    console.print(table)

    if not series_names:
        console.print("[dim]No keys match this selection.[/]")
    console.print(f"Total this {parsed_period.value} so far: [bold]{_format_amount(total)}[/]")


@app.command()
def total(
    ctx: typer.Context,
    period: str = typer.Option("day", "--period", "-p", help=PERIOD_HELP),
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Only keys in this group"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Only this key")
):
    """Show usage from the start of the current period through today."""
    try:
        _, repository = _context(ctx)
        parsed_period = Period.parse(period)
        selection = _selection(group, key)
        today = date.today()
        sources = repository.list_sources()
        events = repository.fetch_usage_events(end=today)
        amount = current_period_total(
            events, selection, parsed_period, now=today, sources=sources
        )
    except Exception as e:
        _fail(str(e))
    console.print(f"Total this {parsed_period.value} so far: [bold]{_format_amount(amount)}[/]")


@app.command("subs-add")
def subs_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Subscription name"),
    amount: float = typer.Argument(..., help="Charge per billing cycle"),
    cycle: str = typer.Option("monthly", "--cycle", help="monthly or yearly"),
    start: Optional[str] = typer.Option(None, "--start", help="Start date as YYYY-MM-DD"),
    category: Optional[str] = typer.Option(None, "--category"),
    notes: Optional[str] = typer.Option(None, "--notes")
):
    """Add a recurring expense."""
    try:
        _, repository = _context(ctx)
        subscription = Subscription(
            subscription_id=uuid.uuid4().hex[:12],
            name=name,
            amount=amount,
            billing_cycle=_parse_cycle(cycle),
            start_date=_parse_day(start),
            category=category,
            notes=notes,
            created_at=datetime.now()
        )
        repository.add_subscription(subscription)
    except Exception as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Added {subscription.name} ([bold]{subscription.subscription_id}[/])")


@app.command()
def subs(ctx: typer.Context):
    """List recurring expenses with their monthly total."""
    try:
        _, repository = _context(ctx)
        subscriptions = repository.list_subscriptions()
    except Exception as e:
        _fail(str(e))

    if not subscriptions:
        console.print("[dim]No subscriptions.[/]")
        return

    table = Table(title="Subscriptions")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Cycle")
    table.add_column("Amount", justify="right")
    table.add_column("Per month", justify="right")
    table.add_column("Category")
    for sub in subscriptions:
        table.add_row(
            sub.subscription_id,
            sub.name,
            sub.billing_cycle.value,
            _format_currency(sub.amount),
            _format_currency(monthly_cost(sub)),
            sub.category or ""
        )
    console.print(table)
    console.print(f"Monthly total: [bold]{_format_currency(total_monthly_cost(subscriptions))}[/]")


@app.command("subs-edit")
def subs_edit(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="ID of the subscription to edit"),
    name: Optional[str] = typer.Option(None, "--name"),
    amount: Optional[float] = typer.Option(None, "--amount", help="Charge per billing cycle"),
    cycle: Optional[str] = typer.Option(None, "--cycle", help="monthly or yearly"),
    start: Optional[str] = typer.Option(None, "--start", help="Start date as YYYY-MM-DD"),
    category: Optional[str] = typer.Option(None, "--category"),
    notes: Optional[str] = typer.Option(None, "--notes")
):
    """Change fields of a recurring expense."""
    try:
        _, repository = _context(ctx)
        current = repository.get_subscription(subscription_id)
        if current is None:
            raise ValueError(f"Unknown subscription: {subscription_id}")
        subscription = Subscription(
            subscription_id=current.subscription_id,
            name=name if name is not None else current.name,
            amount=amount if amount is not None else current.amount,
            billing_cycle=_parse_cycle(cycle) if cycle is not None else current.billing_cycle,
            start_date=_parse_day(start) if start is not None else current.start_date,
            category=category if category is not None else current.category,
            notes=notes if notes is not None else current.notes,
            created_at=current.created_at
        )
        repository.update_subscription(subscription)
    except Exception as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Updated {subscription.name} ([bold]{subscription_id}[/])")


@app.command("subs-remove")
def subs_remove(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="ID of the subscription to remove")
):
    """Remove a recurring expense."""
    try:
        _, repository = _context(ctx)
        removed = repository.delete_subscription(subscription_id)
    except Exception as e:
        _fail(str(e))
    if not removed:
        _fail(f"Unknown subscription: {subscription_id}")
    console.print(f"[green]✓[/] Removed {subscription_id}")


if __name__ == "__main__":
    app()
