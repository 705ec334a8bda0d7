#!/usr/bin/env python3
"""
ALM Control CLI - Command Line Interface for the ALM Engine.

Provides the scheduler entry point (run-pass) along with commands for
previewing decisions, inspecting accounts and reviewing past pass reports.
"""

import logging
import signal
from datetime import datetime
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import build_engine, load_config
from ..exceptions import ConfigurationError, RecordNotFound, StoreUnavailable
from ..models import PassOutcome, PassReport, PolicyDecision, ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ALMController:
    """Main controller for ALM Engine operations."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize the ALM controller."""
        self.config_path = config_path
        self.config: Dict[str, Any] = load_config(config_path)

        logging.basicConfig(
            level=getattr(logging, str(self.config.get("log_level", "INFO")).upper(), logging.INFO),
            format=LOG_FORMAT,
        )

        self.engine = build_engine(self.config)
        self.store = self.engine.store
        self.report_sink = self.engine.report_sink


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp option; naive values are UTC."""
    if value is None:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError as e:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}") from e


def fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


@click.group()
@click.option("--config", "-c", help="Path to configuration file (YAML or JSON)")
@click.pass_context
def cli(ctx, config):
    """ALM Engine Control CLI - Local Account Lifecycle Management"""
    ctx.ensure_object(dict)
    try:
        ctx.obj["controller"] = ALMController(config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        ctx.exit(1)


@cli.command("run-pass")
@click.option("--now", "now_value", help="Evaluation time (ISO-8601, default: current time)")
@click.option("--verbose-audit/--quiet-audit", default=None, help="Audit accounts that were already locked")
@click.pass_context
def run_pass(ctx, now_value, verbose_audit):
    """Run one reconciliation pass. Exit code: 0 done, 1 store unavailable, 2 already running."""
    controller = ctx.obj["controller"]
    engine = controller.engine
    now = parse_timestamp(now_value)

    def _request_cancel(signum, frame):
        console.print(f"[yellow]Received signal {signum}, stopping after current account[/yellow]")
        engine.cancel()

    previous = {sig: signal.signal(sig, _request_cancel) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        report = engine.run_pass(now=now, verbose_audit=verbose_audit)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    display_pass_report(report)
    ctx.exit(report.exit_code)


@cli.command()
@click.option("--now", "now_value", help="Evaluation time (ISO-8601, default: current time)")
@click.option("--all", "show_all", is_flag=True, help="Also show accounts needing no action")
@click.pass_context
def plan(ctx, now_value, show_all):
    """Show what a pass would do, without changing anything."""
    controller = ctx.obj["controller"]
    now = parse_timestamp(now_value)

    try:
        decisions = controller.engine.plan(now)
    except StoreUnavailable as e:
        console.print(f"[red]Account store unavailable: {e}[/red]")
        ctx.exit(1)

    if not show_all:
        decisions = [(r, d) for r, d in decisions if d != PolicyDecision.NO_ACTION]

    if not decisions:
        console.print("[green]Nothing to do[/green]")
        return

    table = Table(title=f"Planned Decisions ({len(decisions)})")
    table.add_column("Username", style="cyan")
    table.add_column("Lock State", style="green")
    table.add_column("Expires", style="yellow")
    table.add_column("Decision", style="magenta")

    for record, decision in decisions:
        table.add_row(
            record.username or "<missing>",
            record.lock_state.value if record.lock_state else "UNKNOWN",
            fmt_time(record.expires_at),
            decision.value,
        )

    console.print(table)


@cli.command("list-accounts")
@click.option("--status", type=click.Choice(["ACTIVE", "LOCKED"]), help="Filter by lock state")
@click.option("--limit", default=200, help="Maximum number of accounts to show")
@click.pass_context
def list_accounts(ctx, status, limit):
    """List managed accounts."""
    controller = ctx.obj["controller"]

    try:
        records = list(controller.store.list_accounts())
    except StoreUnavailable as e:
        console.print(f"[red]Account store unavailable: {e}[/red]")
        ctx.exit(1)

    if status:
        records = [r for r in records if r.lock_state and r.lock_state.value == status]
    records = records[:limit]

    if not records:
        console.print("[yellow]No accounts found[/yellow]")
        return

    table = Table(title=f"Accounts ({len(records)})")
    table.add_column("Username", style="cyan")
    table.add_column("UID", style="blue")
    table.add_column("Lock State", style="green")
    table.add_column("Expires", style="yellow")
    table.add_column("Last Check", style="magenta")

    for record in records:
        table.add_row(
            record.username or "<missing>",
            str(record.uid) if record.uid is not None else "-",
            record.lock_state.value if record.lock_state else "UNKNOWN",
            fmt_time(record.expires_at),
            fmt_time(record.last_policy_check_at),
        )

    console.print(table)


@cli.command("show-account")
@click.argument("username")
@click.pass_context
def show_account(ctx, username):
    """Show lifecycle details for one account."""
    controller = ctx.obj["controller"]

    try:
        record = controller.store.get_account(username)
    except RecordNotFound:
        console.print(f"[red]Account {username} not found[/red]")
        ctx.exit(1)
    except StoreUnavailable as e:
        console.print(f"[red]Account store unavailable: {e}[/red]")
        ctx.exit(1)

    decision = controller.engine.evaluator.evaluate(record, utcnow())

    console.print(Panel.fit(f"[bold blue]{record.username}[/bold blue]"))
    console.print(f"UID: {record.uid if record.uid is not None else 'unknown'}")
    console.print(f"Lock state: {record.lock_state.value if record.lock_state else 'UNKNOWN'}")
    console.print(f"Created: {fmt_time(record.created_at)}")
    console.print(f"Account expires: {fmt_time(record.expires_at)}")
    console.print(f"Last policy check: {fmt_time(record.last_policy_check_at)}")
    console.print(f"Decision now: {decision.value}")

    if record.defects:
        console.print("[red]Record problems:[/red]")
        for defect in record.defects:
            console.print(f"  - {defect}")


@cli.command()
@click.option("--limit", default=20, help="Maximum number of reports to show")
@click.pass_context
def history(ctx, limit):
    """Show recent pass reports."""
    controller = ctx.obj["controller"]
    sink = controller.report_sink

    if not hasattr(sink, "get_reports"):
        console.print("[yellow]Configured report sink cannot be read back[/yellow]")
        return

    reports = sink.get_reports(limit=limit)
    if not reports:
        console.print("[yellow]No pass reports found[/yellow]")
        return

    table = Table(title=f"Pass History ({len(reports)})")
    table.add_column("Started", style="cyan")
    table.add_column("Outcome", style="green")
    table.add_column("Processed", style="blue")
    table.add_column("Locked", style="magenta")
    table.add_column("Already Locked", style="yellow")
    table.add_column("Invalid", style="yellow")
    table.add_column("Errors", style="red")

    for report in reports:
        outcome = report.outcome.value + (" (cancelled)" if report.cancelled else "")
        table.add_row(
            fmt_time(report.started_at),
            outcome,
            str(report.processed),
            str(report.locked),
            str(report.already_locked),
            str(report.skipped_invalid),
            str(report.error_count),
        )

    console.print(table)


@cli.command()
@click.option("--port", default=8000, help="Port to run the API server on")
@click.option("--host", default="127.0.0.1", help="Host to bind the API server to")
@click.pass_context
def serve(ctx, port, host):
    """Start the ALM Engine API server."""
    from ..api.server import start_server

    controller = ctx.obj["controller"]
    console.print(f"[green]Starting ALM Engine API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        start_server(host=host, port=port, config_path=controller.config_path)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def display_pass_report(report: PassReport):
    """Display pass results."""
    if report.outcome == PassOutcome.SKIPPED:
        console.print(f"[yellow]{report.message}[/yellow]")
        return

    if report.outcome == PassOutcome.ABORTED:
        console.print(f"[red]✗ Pass aborted: {report.fatal_error}[/red]")
    elif report.cancelled:
        console.print("[yellow]Pass cancelled; applied locks were kept[/yellow]")
    elif report.error_count:
        console.print(f"[yellow]Pass completed with {report.error_count} errors[/yellow]")
    else:
        console.print("[green]✓ Pass completed successfully[/green]")

    table = Table(title="Reconciliation Pass Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Pass ID", report.pass_id)
    table.add_row("Evaluated At", fmt_time(report.evaluated_at))
    table.add_row("Processed", str(report.processed))
    table.add_row("Locked", str(report.locked))
    table.add_row("Already Locked", str(report.already_locked))
    table.add_row("Skipped Invalid", str(report.skipped_invalid))
    table.add_row("Errors", str(report.error_count))
    table.add_row("Report Persisted", "yes" if report.report_persisted else "no")

    console.print(table)

    if report.audit_entries:
        audit = Table(title="Audit Entries")
        audit.add_column("Username", style="cyan")
        audit.add_column("Previous", style="green")
        audit.add_column("New", style="red")
        audit.add_column("Reason", style="yellow")
        for entry in report.audit_entries:
            audit.add_row(entry.username, entry.previous_state.value, entry.new_state.value, entry.reason)
        console.print(audit)

    if report.expiring_soon:
        console.print(f"[yellow]Expiring soon: {', '.join(report.expiring_soon)}[/yellow]")

    if report.errors:
        console.print("[red]Errors:[/red]")
        for error in report.errors:
            console.print(f"  - {error.username}: {error.error_type}: {error.message}")


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
