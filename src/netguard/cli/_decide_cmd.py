"""CLI command: netguard decide."""

from __future__ import annotations

import json
from typing import Any

import click

from netguard.cli._common import load_cli_config
from netguard.cli._request_opts import build_request, request_options
from netguard.core.policy.engine import DecisionEngine
from netguard.core.policy.explain import explain_decision
from netguard.core.policy.store import FilePolicyStore
from netguard.core.trace import DecisionTrace


@click.command("decide")
@request_options
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the decision as JSON.")
@click.pass_context
def decide_cmd(ctx: click.Context, as_json: bool, **request_fields: Any) -> None:
    """
    Decide a request against the configured policy file.

    Unlike ``policy test`` this goes through the policy store, so a missing
    or broken policy file yields a store_error deny instead of an error exit.
    The decision is appended to the trace unless ``[trace] enabled = false``.
    """
    cfg = load_cli_config(ctx)
    request = build_request(**request_fields)

    with DecisionEngine.from_config(cfg, FilePolicyStore(cfg.policy_path)) as engine:
        decision = engine.evaluate(request)

    if cfg.trace.enabled:
        DecisionTrace(cfg.trace_path).record(decision)

    if as_json:
        click.echo(json.dumps(decision.model_dump(mode="json"), indent=2))
    else:
        click.echo(explain_decision(decision))
