"""
CLI commands: ``netguard policy validate | list | test``.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from netguard.cli._common import load_cli_config
from netguard.cli._request_opts import build_request, request_options
from netguard.core.constants import ExitCode
from netguard.core.policy.conditions import ConditionMatcher
from netguard.core.policy.engine import DecisionEngine
from netguard.core.policy.explain import explain_decision, explain_request
from netguard.core.policy.parser import PolicyParseError, lint_policy_set, load_policy_set
from netguard.core.trace import DecisionTrace

console = Console()


@click.group("policy")
def policy_group() -> None:
    """Validate, inspect, and test NetGuard policy files."""


@policy_group.command("validate")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--strict", is_flag=True, default=False, help="Treat condition lint findings as errors."
)
@click.pass_context
def policy_validate(ctx: click.Context, policy_file: str, strict: bool) -> None:
    """
    Validate a policy YAML file against the NetGuard policy schema.

    Exits 0 if valid, 3 if invalid (or, with --strict, if any condition
    would be treated as non-match).
    """
    cfg = load_cli_config(ctx)
    try:
        policy_set = load_policy_set(policy_file)
    except PolicyParseError as exc:
        click.echo(str(exc), err=True)
        sys.exit(ExitCode.POLICY_ERROR)

    matcher = ConditionMatcher(timezone=cfg.engine.tz, named_sets=cfg.named_sets)
    problems = lint_policy_set(policy_set, matcher)
    click.echo(
        f"✓  Policy set {policy_set.name!r} is valid "
        f"({len(policy_set.policies)} policy(ies), {len(policy_set.enabled())} enabled, "
        f"hash={policy_set.content_hash()})"
    )
    for problem in problems:
        click.echo(f"!  {problem} (never matches)", err=True)
    if strict and problems:
        sys.exit(ExitCode.POLICY_ERROR)


@policy_group.command("list")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON")
def policy_list(policy_file: str, as_json: bool) -> None:
    """Show the policies in a file, highest priority first."""
    from netguard.core.policy.store import rank_key

    try:
        policy_set = load_policy_set(policy_file)
    except PolicyParseError as exc:
        click.echo(str(exc), err=True)
        sys.exit(ExitCode.POLICY_ERROR)

    ranked = sorted(policy_set.policies, key=rank_key)
    if as_json:
        click.echo(json.dumps([p.model_dump(mode="json") for p in ranked], indent=2))
        return

    table = Table(title=f"{policy_set.name} ({policy_set.content_hash()})")
    for col in ("id", "priority", "enabled", "name", "subject", "object", "action", "conditions"):
        table.add_column(col)
    for p in ranked:
        conds = ", ".join(f"{k}={v}" for k, v in sorted(p.conditions.items())) or "-"
        table.add_row(
            str(p.id),
            str(p.priority),
            "[green]yes[/green]" if p.enabled else "[dim]no[/dim]",
            p.name,
            p.subject,
            p.object,
            p.action.value,
            conds,
        )
    console.print(table)


@policy_group.command("test")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
@request_options
@click.option("--explain", is_flag=True, default=False, help="Show per-policy match details.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the decision as JSON.")
@click.option("--record", is_flag=True, default=False, help="Append the decision to the trace.")
@click.pass_context
def policy_test(
    ctx: click.Context,
    policy_file: str,
    explain: bool,
    as_json: bool,
    record: bool,
    **request_fields: Any,
) -> None:
    """
    Test a policy file against a synthetic request and show the decision.

    Example::

        netguard policy test policies.yaml --subject alice --group admin_group \\
            --object internal_network --ip 192.168.1.5 --explain
    """
    cfg = load_cli_config(ctx)
    try:
        policy_set = load_policy_set(policy_file)
    except PolicyParseError as exc:
        click.echo(str(exc), err=True)
        sys.exit(ExitCode.POLICY_ERROR)

    request = build_request(**request_fields)
    engine = DecisionEngine.from_config(cfg)
    policies = policy_set.enabled()

    if explain and not as_json:
        click.echo(explain_request(engine, policies, request))
        click.echo("")

    decision = engine.decide(request, policies)

    if record:
        DecisionTrace(cfg.trace_path).record(decision)

    if as_json:
        click.echo(json.dumps(decision.model_dump(mode="json"), indent=2))
    else:
        click.echo(explain_decision(decision))
