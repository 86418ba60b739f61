#!/usr/bin/env python3
"""Strategy Performance Alert Engine - CLI Entry Point."""
import sys
import json
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
import yaml
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config
    from models.database import Database
    from digest.digest_queue import DigestQueue
    from alerts.engine import build_engine

    config = load_config(config_path)
    setup_logging("DEBUG" if verbose else config["logging"].get("level", "INFO"),
                  config["logging"].get("file"))

    db = Database(config["database"]["path"])
    db.connect()

    digest_queue = DigestQueue(db)
    engine = build_engine(config, db=db, digest_queue=digest_queue)

    return {"config": config, "db": db, "digest_queue": digest_queue, "engine": engine}


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="stratalerts")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Strategy Performance Alert Engine - drawdown, milestone, market and significance alerts."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.call_on_close(lambda: _close_components(ctx))


def _get_components(ctx):
    root = ctx.find_root()
    if "_components" not in root.obj:
        root.obj["_components"] = _init_components(root.obj.get("config_path"), root.obj.get("verbose"))
    return root.obj["_components"]


def _close_components(ctx):
    c = ctx.obj.pop("_components", None)
    if c:
        c["engine"].shutdown()
        c["db"].close()


def _load_yaml(path):
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _fail(message):
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _alerts_table(alerts, title):
    from utils.formatters import SEVERITY_STYLES, time_ago

    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Strategy")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Created", justify="right")
    for a in alerts:
        style = SEVERITY_STYLES.get(a.severity.value, "")
        table.add_row(a.id, f"[{style}]{a.severity.value}[/]", a.type.value, a.strategy_name or a.strategy_id,
                      a.status.value, a.title, time_ago(a.created_at))
    return table


def _print_changed(changed):
    if not changed:
        console.print("[green]All clear - no new alerts[/green]")
        return
    from utils.formatters import format_alert_line
    console.print(f"[bold yellow]{len(changed)} alert(s) raised:[/bold yellow]")
    for a in changed:
        console.print(f"  {format_alert_line(a, with_markup=True)}")


# ──────────────────────────────────────────────────────
# ALERTS
# ──────────────────────────────────────────────────────
@cli.group()
def alerts():
    """Strategy alerts: evaluate, list and manage."""


@alerts.command("list")
@click.option("--user", "user_id", required=True, help="User ID")
@click.option("--strategy", "strategy_id", default=None, help="Only alerts for this strategy")
@click.option("--all", "show_all", is_flag=True, help="Include resolved and dismissed alerts")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def alerts_list(ctx, user_id, strategy_id, show_all, as_json):
    """Show a user's alerts, newest first."""
    engine = _get_components(ctx)["engine"]
    if show_all:
        items = engine.get_all_alerts(user_id)
        if strategy_id:
            items = [a for a in items if a.strategy_id == strategy_id]
    else:
        items = engine.get_active_alerts(user_id, strategy_id)

    if as_json:
        click.echo(json.dumps([a.to_dict() for a in items], indent=2))
        return
    if not items:
        console.print("[green]All clear - no active alerts.[/green]")
        return
    console.print(_alerts_table(items, f"Alerts for {user_id}"))


@alerts.command("ack")
@click.argument("alert_id")
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def alerts_ack(ctx, alert_id, user_id):
    """Acknowledge an alert."""
    from utils.errors import AlertError
    try:
        alert = _get_components(ctx)["engine"].acknowledge_alert(alert_id, user_id)
    except AlertError as e:
        _fail(str(e))
    from utils.formatters import format_timestamp
    console.print(f"[green]Alert {alert.id} acknowledged at {format_timestamp(alert.acknowledged_at)}[/green]")


@alerts.command("resolve")
@click.argument("alert_id")
@click.option("--user", "user_id", required=True, help="User ID")
@click.option("--reason", default=None, help="Resolution note (e.g. 'false positive' dismisses)")
@click.pass_context
def alerts_resolve(ctx, alert_id, user_id, reason):
    """Resolve an alert."""
    from utils.errors import AlertError
    try:
        alert = _get_components(ctx)["engine"].resolve_alert(alert_id, user_id, reason)
    except AlertError as e:
        _fail(str(e))
    console.print(f"[green]Alert {alert.id} {alert.status.value.lower()}[/green]")


@alerts.command("dismiss")
@click.argument("alert_id")
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def alerts_dismiss(ctx, alert_id, user_id):
    """Dismiss an alert as not useful."""
    from utils.errors import AlertError
    try:
        alert = _get_components(ctx)["engine"].dismiss_alert(alert_id, user_id)
    except AlertError as e:
        _fail(str(e))
    console.print(f"[green]Alert {alert.id} dismissed[/green]")


@alerts.command("evaluate")
@click.argument("update_file", type=click.Path(exists=True))
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def alerts_evaluate(ctx, update_file, user_id):
    """Evaluate a performance update from a YAML file.

    The file holds ``strategy``, ``current`` and optionally ``previous``
    performance mappings.
    """
    from models.performance import StrategyInfo, StrategyPerformance

    data = _load_yaml(update_file)
    if "strategy" not in data or "current" not in data:
        _fail("Update file needs 'strategy' and 'current' sections")
    strategy = StrategyInfo.from_dict(data["strategy"])
    current = StrategyPerformance.from_dict(data["current"])
    previous = StrategyPerformance.from_dict(data["previous"]) if data.get("previous") else None

    changed = _get_components(ctx)["engine"].process_performance_update(user_id, strategy, current, previous)
    _print_changed(changed)


@alerts.command("market")
@click.argument("market_file", type=click.Path(exists=True))
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def alerts_market(ctx, market_file, user_id):
    """Evaluate a market-condition update from a YAML file.

    The file holds ``market`` changes, the user's ``strategies`` and
    optionally ``performances`` keyed by strategy id.
    """
    from models.performance import MarketData, StrategyInfo, StrategyPerformance

    data = _load_yaml(market_file)
    strategies = [StrategyInfo.from_dict(s) for s in data.get("strategies") or []]
    market = MarketData.from_dict(data.get("market"))
    performances = {str(k): StrategyPerformance.from_dict(v) for k, v in (data.get("performances") or {}).items()}

    engine = _get_components(ctx)["engine"]
    changed = engine.detect_market_condition_changes(user_id, strategies, market, performances)
    changed += engine.detect_correlated_performance_issues(user_id, strategies, performances)
    _print_changed(changed)


@alerts.command("metrics")
@click.option("--user", "user_id", required=True, help="User ID")
@click.option("--timeframe", default="week", type=click.Choice(["day", "week", "month"]))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def alerts_metrics(ctx, user_id, timeframe, as_json):
    """Alert effectiveness over a trailing window."""
    from utils.formatters import format_hours, format_rate

    components = _get_components(ctx)
    m = components["engine"].get_alert_metrics(user_id, timeframe)
    if as_json:
        click.echo(json.dumps(m.to_dict(), indent=2))
        return

    table = Table(title=f"Alert metrics ({timeframe})")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total alerts", str(m.total_alerts))
    for t, n in m.alerts_by_type.items():
        if n:
            table.add_row(f"  {t.value}", str(n))
    for s, n in m.alerts_by_severity.items():
        if n:
            table.add_row(f"  {s.value}", str(n))
    table.add_row("Avg resolution", format_hours(m.average_resolution_time))
    table.add_row("False positive rate", format_rate(m.false_positive_rate))
    table.add_row("Acknowledged", format_rate(m.user_engagement.acknowledged_rate))
    table.add_row("Action taken", format_rate(m.user_engagement.action_taken_rate))
    for status, n in sorted(components["db"].get_alert_stats(user_id).items()):
        table.add_row(f"All-time {status.lower()}", str(n))
    console.print(table)


@alerts.command("auto-resolve")
@click.option("--user", "user_id", default=None, help="User ID (default: every known user)")
@click.pass_context
def alerts_auto_resolve(ctx, user_id):
    """Resolve alerts left untouched past the user's auto-resolve window."""
    engine = _get_components(ctx)["engine"]
    users = [user_id] if user_id else engine.known_users()
    total = sum(len(engine.auto_resolve_alerts(u)) for u in users)
    console.print(f"Auto-resolved {total} alert(s)")


# ──────────────────────────────────────────────────────
# THRESHOLDS / PREFERENCES
# ──────────────────────────────────────────────────────
@cli.group()
def thresholds():
    """Per-user alert thresholds."""


@thresholds.command("show")
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def thresholds_show(ctx, user_id):
    """Print the user's alert configuration as YAML."""
    config = _get_components(ctx)["engine"].get_alert_configuration(user_id)
    click.echo(yaml.safe_dump(config.to_dict(), sort_keys=False))


@thresholds.command("set")
@click.argument("changes_file", type=click.Path(exists=True))
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def thresholds_set(ctx, changes_file, user_id):
    """Apply threshold changes from a YAML file."""
    from utils.errors import ValidationError
    try:
        _get_components(ctx)["engine"].update_alert_thresholds(user_id, _load_yaml(changes_file))
    except ValidationError as e:
        _fail(f"Invalid thresholds: {e}")
    console.print(f"[green]Thresholds updated for {user_id}[/green]")


@cli.group()
def prefs():
    """Per-user notification preferences."""


@prefs.command("show")
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def prefs_show(ctx, user_id):
    """Print the user's notification preferences as YAML."""
    p = _get_components(ctx)["engine"].get_notification_preferences(user_id)
    click.echo(yaml.safe_dump(p.to_dict(), sort_keys=False))


@prefs.command("set")
@click.argument("changes_file", type=click.Path(exists=True))
@click.option("--user", "user_id", required=True, help="User ID")
@click.pass_context
def prefs_set(ctx, changes_file, user_id):
    """Apply preference changes from a YAML file."""
    from utils.errors import ValidationError
    try:
        _get_components(ctx)["engine"].update_notification_preferences(user_id, _load_yaml(changes_file))
    except ValidationError as e:
        _fail(f"Invalid preferences: {e}")
    console.print(f"[green]Preferences updated for {user_id}[/green]")


# ──────────────────────────────────────────────────────
# DIGEST / SCHEDULER
# ──────────────────────────────────────────────────────
@cli.group()
def digest():
    """Queued daily and weekly notifications."""


@digest.command("show")
@click.option("--user", "user_id", default=None, help="User ID")
@click.option("--bucket", default="daily", type=click.Choice(["daily", "weekly"]))
@click.pass_context
def digest_show(ctx, user_id, bucket):
    """Preview pending digests."""
    from digest.digest_queue import format_digest

    pending = _get_components(ctx)["digest_queue"].pending(bucket, user_id)
    if not pending:
        console.print(f"No pending {bucket} digests.")
        return
    for (uid, channel), entries in pending.items():
        subject, text = format_digest(bucket, [a for _, a in entries])
        console.print(f"[bold]{subject}[/bold] [dim]{uid} via {channel.value}[/dim]")
        console.print(text, markup=False)


@digest.command("flush")
@click.option("--bucket", default="daily", type=click.Choice(["daily", "weekly"]))
@click.pass_context
def digest_flush(ctx, bucket):
    """Send pending digests now."""
    c = _get_components(ctx)
    sent = c["digest_queue"].flush(bucket, c["engine"].dispatcher.send_digest)
    console.print(f"Sent {sent} {bucket} digest(s)")


@cli.group()
def scheduler():
    """Background jobs."""


@scheduler.command("run")
@click.pass_context
def scheduler_run(ctx):
    """Run auto-resolution and digest jobs until interrupted."""
    from monitor.scheduler import AlertScheduler

    c = _get_components(ctx)
    sched = AlertScheduler(c["engine"], c["digest_queue"], c["config"]["scheduler"])
    sched.start()
    console.print(f"[bold]Scheduler running[/bold] ({len(sched.jobs)} jobs). Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        sched.stop()


if __name__ == "__main__":
    cli()
