"""
GrowthBank CLI

Operator commands for the coin engine:
- calculate: Preview the reward for a session
- balance / history / summary / leaderboard: Inspect the ledger
- rules: Manage decay rules
- decay: Trigger, predict and report on decay
- scheduler: Run the decay scheduler
"""

import asyncio
import json
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from growthbank import __version__
from growthbank.app import GrowthBank
from growthbank.config import GrowthBankConfig
from growthbank.decay.models import DecayKind, DecayScope
from growthbank.exceptions import GrowthBankError
from growthbank.ledger.models import ChangeKind, HistoryQuery
from growthbank.seeds import default_decay_rules
from growthbank.sessions.repository import InMemoryCatalog, InMemorySessionRepository

console = Console()
T = TypeVar("T")

_KIND_STYLES = {
    "earned": "green",
    "bonus": "bold green",
    "decayed": "yellow",
    "redeemed": "cyan",
    "penalty": "red",
}


def _output_json(data: object) -> None:
    """Print data as JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _output_yaml(data: object) -> None:
    """Print data as YAML to stdout."""
    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True))


def _emit(data: object, fmt: str) -> bool:
    """Write structured output; returns False when a table is wanted."""
    if fmt == "json":
        _output_json(data)
        return True
    if fmt == "yaml":
        _output_yaml(data)
        return True
    return False


def _format_datetime(dt: Optional[datetime]) -> str:
    if dt is None:
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _parse_date(ctx, param, value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}")


def _run(ctx: click.Context, fn: Callable[[GrowthBank], Awaitable[T]]) -> T:
    """Run ``fn`` against a connected GrowthBank, exiting 1 on engine errors."""
    obj = ctx.find_root().obj

    async def runner() -> T:
        bank = obj.get("bank")
        if bank is not None:
            await bank.storage.connect()
            return await fn(bank)
        async with GrowthBank(
            obj["config"], catalog=obj.get("catalog"), sessions=obj.get("sessions")
        ) as bank:
            return await fn(bank)

    try:
        return asyncio.run(runner())
    except GrowthBankError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


def format_option(func):
    func = click.option("--json", "json_flag", is_flag=True, help="Output as JSON (shorthand for --format json).")(func)
    return click.option(
        "--format", "fmt",
        type=click.Choice(["table", "json", "yaml"]),
        default="table",
        help="Output format (table, json, or yaml).",
    )(func)


@click.group()
@click.version_option(__version__, prog_name="growthbank")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="YAML configuration file.")
@click.option("--catalog", "catalog_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="YAML file with tasks and difficulties.")
@click.option("--sessions", "sessions_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="YAML file with logged sessions.")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
              default=None, help="Override the configured log level.")
@click.pass_context
def cli(ctx, config_path, catalog_path, sessions_path, log_level):
    """GrowthBank growth-coin engine.

    Inspect balances, manage decay rules and run decay cycles.
    """
    ctx.ensure_object(dict)
    try:
        if "config" not in ctx.obj:
            ctx.obj["config"] = GrowthBankConfig.load(config_path)
        if catalog_path:
            ctx.obj["catalog"] = InMemoryCatalog.from_yaml(catalog_path)
        if sessions_path:
            ctx.obj["sessions"] = InMemorySessionRepository.from_yaml(sessions_path)
    except GrowthBankError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    logging.basicConfig(
        level=log_level or ctx.obj["config"].log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -- Rewards and ledger ----------------------------------------------


@cli.command()
@click.argument("user_id")
@click.argument("task_id")
@click.argument("difficulty_id")
@click.option("--focus", "focus_minutes", type=int, default=0, help="Focus minutes.")
@click.option("--quantity", "result_quantity", type=int, default=0, help="Units completed.")
@click.option("--date", "session_date", callback=_parse_date, default=None,
              help="Session date (YYYY-MM-DD); defaults to today.")
@format_option
@click.pass_context
def calculate(ctx, user_id, task_id, difficulty_id, focus_minutes, result_quantity,
              session_date, fmt, json_flag):
    """Preview the coins a session would earn. Nothing is written."""
    if json_flag:
        fmt = "json"
    session_date = session_date or date.today()
    result = _run(ctx, lambda bank: bank.calculator.calculate(
        user_id, task_id, difficulty_id, focus_minutes, result_quantity, session_date
    ))
    if _emit(result.model_dump(mode="json"), fmt):
        return

    table = Table(title=f"Reward preview for {user_id}", box=box.ROUNDED)
    table.add_column("Part", style="cyan")
    table.add_column("Coins", justify="right")
    table.add_column("Detail", style="dim")
    table.add_row("Focus", str(result.focus_coins), f"{focus_minutes} min")
    table.add_row("Result", str(result.result_coins), f"{result_quantity} units")
    for bonus in result.bonuses:
        table.add_row(f"Bonus: {bonus.kind.value}", str(bonus.amount), bonus.reason)
    table.add_row("[bold]Total[/bold]", f"[bold]{result.total_coins}[/bold]", "")
    console.print(table)


@cli.command()
@click.argument("user_id")
@format_option
@click.pass_context
def balance(ctx, user_id, fmt, json_flag):
    """Show a user's current balance."""
    if json_flag:
        fmt = "json"
    value = _run(ctx, lambda bank: bank.ledger.current_balance(user_id))
    if not _emit({"user_id": user_id, "balance": value}, fmt):
        console.print(f"[bold]{user_id}[/bold]: {value} coins")


@cli.command()
@click.argument("user_id")
@click.option("--limit", type=click.IntRange(1, 100), default=20, help="Entries per page.")
@click.option("--offset", type=click.IntRange(min=0), default=0, help="Entries to skip.")
@click.option("--kind", type=click.Choice([k.value for k in ChangeKind]), default=None,
              help="Only this change kind.")
@click.option("--source", default=None, help="Only this source kind.")
@format_option
@click.pass_context
def history(ctx, user_id, limit, offset, kind, source, fmt, json_flag):
    """Show ledger history, newest first."""
    if json_flag:
        fmt = "json"
    query = HistoryQuery(
        limit=limit,
        offset=offset,
        change_kind=ChangeKind(kind) if kind else None,
        source_kind=source,
    )
    page = _run(ctx, lambda bank: bank.ledger.history(user_id, query))
    if _emit(page.model_dump(mode="json"), fmt):
        return

    table = Table(box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("When", style="dim")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Description")
    for entry in page.entries:
        style = _KIND_STYLES.get(entry.change_kind.value, "white")
        table.add_row(
            str(entry.sequence),
            _format_datetime(entry.created_at),
            f"[{style}]{entry.change_kind.value}[/{style}]",
            f"{entry.amount:+d}",
            str(entry.balance_after),
            entry.description,
        )
    console.print(table)
    console.print(f"\n  Showing {len(page.entries)} of {page.total}\n")


@cli.command()
@click.argument("user_id")
@click.option("--days", type=click.IntRange(min=1), default=30, help="Window in days.")
@format_option
@click.pass_context
def summary(ctx, user_id, days, fmt, json_flag):
    """Summarize earnings, spending and decay for a user."""
    if json_flag:
        fmt = "json"
    result = _run(ctx, lambda bank: bank.coins.summary(user_id, days))
    if _emit(result.model_dump(mode="json"), fmt):
        return

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value", justify="right")
    table.add_row("Balance", str(result.current_balance))
    table.add_row(f"Earned ({days}d)", str(result.total_earned))
    table.add_row(f"Spent ({days}d)", str(result.total_spent))
    table.add_row(f"Decayed ({days}d)", str(result.total_decayed))
    for source in result.earning_sources:
        table.add_row(f"  from {source.source}", f"{source.amount} ({source.count}x)")
    console.print(table)


@cli.command()
@click.option("--limit", type=click.IntRange(1, 100), default=10)
@format_option
@click.pass_context
def leaderboard(ctx, limit, fmt, json_flag):
    """Show the users with the highest balances."""
    if json_flag:
        fmt = "json"
    rows = _run(ctx, lambda bank: bank.coins.leaderboard(limit))
    if _emit([r.model_dump() for r in rows], fmt):
        return
    table = Table(box=box.ROUNDED)
    table.add_column("Rank", justify="right")
    table.add_column("User", style="cyan")
    table.add_column("Balance", justify="right")
    for row in rows:
        table.add_row(str(row.rank), row.user_id, str(row.balance))
    console.print(table)


# -- Decay rules -----------------------------------------------------


@cli.group()
def rules():
    """Manage decay rules."""
    pass


def _rule_rows(items: list) -> list[dict[str, Any]]:
    return [r.model_dump(mode="json") for r in items]


@rules.command("list")
@click.option("--active-only", is_flag=True, help="Hide inactive rules.")
@format_option
@click.pass_context
def list_rules(ctx, active_only, fmt, json_flag):
    """List decay rules by priority."""
    if json_flag:
        fmt = "json"
    items = _run(ctx, lambda bank: bank.rules.list(active_only=active_only))
    if _emit(_rule_rows(items), fmt):
        return

    table = Table(box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Threshold", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Scope")
    table.add_column("Priority", justify="right")
    table.add_column("Active")
    for rule in items:
        rate = (
            f"{rule.decay_rate:.0%}" if rule.decay_kind == DecayKind.PERCENTAGE
            else f"{rule.decay_rate:g} coins"
        )
        scope = rule.scope.value + (f"={rule.scope_value}" if rule.scope_value else "")
        if rule.is_urgent:
            scope += " [red](urgent)[/red]"
        table.add_row(
            rule.rule_id,
            rule.name,
            f"{rule.threshold_days}d",
            rate,
            scope,
            str(rule.priority),
            "[green]yes[/green]" if rule.is_active else "[dim]no[/dim]",
        )
    console.print(table)
    console.print(f"\n  Total rules: {len(items)}\n")


@rules.command("create")
@click.option("--id", "rule_id", default=None, help="Rule id; generated if omitted.")
@click.option("--name", required=True)
@click.option("--description", default="")
@click.option("--threshold", "threshold_days", type=int, required=True, help="Days before decay applies.")
@click.option("--rate", "decay_rate", type=float, required=True,
              help="Fraction (percentage rules) or coins (fixed rules).")
@click.option("--kind", "decay_kind", type=click.Choice([k.value for k in DecayKind]),
              default=DecayKind.PERCENTAGE.value)
@click.option("--scope", type=click.Choice([s.value for s in DecayScope]), default=DecayScope.ALL.value)
@click.option("--scope-value", default=None, help="Subject or task type for scoped rules.")
@click.option("--priority", type=int, default=0)
@click.option("--urgent", is_flag=True, help="Run this rule on the hourly lane.")
@click.option("--inactive", is_flag=True, help="Create the rule disabled.")
@click.pass_context
def create_rule(ctx, rule_id, name, description, threshold_days, decay_rate, decay_kind,
                scope, scope_value, priority, urgent, inactive):
    """Create a decay rule."""
    data = {
        "name": name,
        "description": description,
        "threshold_days": threshold_days,
        "decay_rate": decay_rate,
        "decay_kind": decay_kind,
        "scope": scope,
        "scope_value": scope_value,
        "priority": priority,
        "is_active": not inactive,
        "metadata": {"urgent": True} if urgent else {},
    }
    if rule_id:
        data["rule_id"] = rule_id
    rule = _run(ctx, lambda bank: bank.rules.create(data))
    console.print(f"[green]Created rule[/green] {rule.rule_id} ({rule.name})")


@rules.command("update")
@click.argument("rule_id")
@click.option("--name", default=None)
@click.option("--threshold", "threshold_days", type=int, default=None)
@click.option("--rate", "decay_rate", type=float, default=None)
@click.option("--priority", type=int, default=None)
@click.option("--active/--inactive", "is_active", default=None)
@click.option("--urgent/--not-urgent", "urgent", default=None)
@click.pass_context
def update_rule(ctx, rule_id, name, threshold_days, decay_rate, priority, is_active, urgent):
    """Update fields of a decay rule."""
    changes: dict[str, Any] = {
        k: v for k, v in {
            "name": name,
            "threshold_days": threshold_days,
            "decay_rate": decay_rate,
            "priority": priority,
            "is_active": is_active,
        }.items() if v is not None
    }

    async def apply(bank: GrowthBank):
        if urgent is not None:
            current = await bank.rules.get(rule_id)
            changes["metadata"] = {**current.metadata, "urgent": urgent}
        return await bank.rules.update(rule_id, changes)

    rule = _run(ctx, apply)
    console.print(f"[green]Updated rule[/green] {rule.rule_id}")


@rules.command("delete")
@click.argument("rule_id")
@click.pass_context
def delete_rule(ctx, rule_id):
    """Delete a decay rule."""
    _run(ctx, lambda bank: bank.rules.delete(rule_id))
    console.print(f"[yellow]Deleted rule[/yellow] {rule_id}")


@rules.command("seed")
@click.pass_context
def seed_rules(ctx):
    """Install the stock decay rules that are not present yet."""
    created = _run(ctx, lambda bank: bank.rules.seed(default_decay_rules()))
    console.print(f"Seeded {len(created)} rule(s)")


# -- Decay -----------------------------------------------------------


@cli.group()
def decay():
    """Run and inspect coin decay."""
    pass


@decay.command("trigger")
@click.option("--user", "user_id", default=None, help="Only this user.")
@format_option
@click.pass_context
def trigger(ctx, user_id, fmt, json_flag):
    """Run decay now for one user or everyone."""
    if json_flag:
        fmt = "json"
    report = _run(ctx, lambda bank: bank.engine.trigger_manually(user_id))
    if _emit(report.model_dump(mode="json"), fmt):
        return
    console.print(
        f"Processed {report.users_processed} user(s): "
        f"{report.entries_written} entries, {report.coins_decayed} coins decayed"
    )
    for failure in report.failures:
        console.print(
            f"  [red]failed[/red] user={failure.user_id} rule={failure.rule_id} "
            f"session={failure.session_id}: {failure.error}"
        )


@decay.command("predict")
@click.argument("user_id")
@click.option("--days", type=click.IntRange(1, 30), default=7, help="Days ahead.")
@format_option
@click.pass_context
def predict(ctx, user_id, days, fmt, json_flag):
    """Project upcoming decay for a user without writing anything."""
    if json_flag:
        fmt = "json"
    predictions = _run(ctx, lambda bank: bank.engine.predict(user_id, days))
    if _emit([p.model_dump(mode="json") for p in predictions], fmt):
        return
    table = Table(title=f"Decay forecast for {user_id}", box=box.ROUNDED)
    table.add_column("Date", style="cyan")
    table.add_column("Coins", justify="right")
    table.add_column("Sessions", justify="right")
    for p in predictions:
        table.add_row(p.date.isoformat(), str(p.predicted_decay), str(p.affected_sessions))
    console.print(table)


@decay.command("stats")
@click.argument("user_id")
@click.option("--days", type=click.IntRange(min=1), default=30)
@format_option
@click.pass_context
def stats(ctx, user_id, days, fmt, json_flag):
    """Decay totals per rule over the last N days."""
    if json_flag:
        fmt = "json"
    result = _run(ctx, lambda bank: bank.engine.decay_statistics(user_id, days))
    if _emit(result.model_dump(mode="json"), fmt):
        return
    console.print(
        f"{result.total_decayed} coins in {result.decay_count} decay(s), "
        f"{result.avg_decay_per_day} per day"
    )
    table = Table(box=box.SIMPLE)
    table.add_column("Rule")
    table.add_column("Coins", justify="right")
    table.add_column("Count", justify="right")
    for row in result.by_rule:
        table.add_row(row.rule_name, str(row.total_decayed), str(row.count))
    console.print(table)


# -- Scheduler -------------------------------------------------------


@cli.group()
def scheduler():
    """Run the decay scheduler."""
    pass


@scheduler.command("run")
@click.option("--once", is_flag=True, help="Run whatever is due now and exit.")
@click.pass_context
def run_scheduler(ctx, once):
    """Run scheduled decay cycles until interrupted."""

    async def loop(bank: GrowthBank):
        if once:
            reports = await bank.scheduler.tick()
            return reports, bank.scheduler.status()
        if bank.config.metrics_port:
            bank.metrics.serve(bank.config.metrics_port)
        await bank.scheduler.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await bank.scheduler.stop()

    try:
        reports, status = _run(ctx, loop)
    except KeyboardInterrupt:
        console.print("Scheduler stopped")
        return
    for report in reports:
        console.print(
            f"{report.lane} cycle: {report.users_processed}/{report.users_total} users, "
            f"{report.coins_decayed} coins decayed"
        )
    console.print(f"Next full run: {_format_datetime(status.next_full_run)}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
