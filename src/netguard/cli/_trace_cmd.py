"""CLI commands: netguard trace tail."""

from __future__ import annotations

import json

import click
from rich.console import Console

from netguard.cli._common import load_cli_config
from netguard.core.trace import DecisionTrace

console = Console()


@click.group("trace")
def trace_group() -> None:
    """Inspect the append-only decision trace."""


@trace_group.command("tail")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries to show.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON lines.")
@click.pass_context
def trace_tail(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show the most recent recorded decisions (oldest first)."""
    cfg = load_cli_config(ctx)
    entries = DecisionTrace(cfg.trace_path).tail(limit)

    if as_json:
        for entry in entries:
            click.echo(json.dumps(entry, sort_keys=True))
        return

    if not entries:
        console.print(f"[dim]No decisions recorded in {cfg.trace_path}[/dim]")
        return

    for entry in entries:
        action = str(entry.get("action", "?"))
        colour = "green" if action == "allow" else "red" if action == "deny" else "yellow"
        policy = entry.get("policy_id")
        console.print(
            f"{entry.get('decided_at', '?')}  [{colour}]{action:<22}[/{colour}] "
            f"policy={policy if policy is not None else '-':<5} "
            f"{entry.get('principal_id', '?')} → {entry.get('object_id', '?')}  "
            f"[dim]({entry.get('reason', '?')})[/dim]"
        )
