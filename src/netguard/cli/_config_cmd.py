"""CLI commands: netguard config show | validate | init."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from netguard.cli._common import load_cli_config
from netguard.core.config import NetGuardConfig, PoliciesConfig
from netguard.core.constants import ExitCode
from netguard.core.exceptions import ConfigError

console = Console()


@click.group("config")
def config_group() -> None:
    """View and validate NetGuard configuration."""


@config_group.command("show")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON")
@click.pass_context
def config_show(ctx: click.Context, as_json: bool) -> None:
    """Display the effective configuration (file, env overrides, defaults)."""
    cfg = load_cli_config(ctx)
    data = _config_to_dict(cfg)

    if as_json:
        click.echo(json.dumps(data, indent=2))
    else:
        _print_config_rich(data, console)


@config_group.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate the config file against the schema."""
    load_cli_config(ctx, required=True)
    console.print("[green]Config is valid.[/green]")


@config_group.command("init")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file.")
@click.option(
    "--policy-path", default="", help="Policy file to serve (default: ~/.netguard/policies.yaml)."
)
@click.pass_context
def config_init(ctx: click.Context, force: bool, policy_path: str) -> None:
    """Write a config file holding the defaults (deny by default, UTC)."""
    from netguard.core.config import _config_file_path, save_config

    raw_path = (ctx.find_root().obj or {}).get("config_path")
    cfg_path = Path(raw_path) if raw_path else _config_file_path()
    if cfg_path.exists() and not force:
        console.print(f"[red]Config already exists:[/red] {cfg_path} (use --force to overwrite)")
        sys.exit(ExitCode.CONFIG_ERROR)

    data = NetGuardConfig(policies=PoliciesConfig(path=policy_path)).model_dump(mode="json")
    try:
        save_config(data, cfg_path)
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)
    console.print(f"[green]Config written:[/green] {cfg_path}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config_to_dict(cfg: NetGuardConfig) -> dict[str, object]:
    data = cfg.model_dump(mode="json")
    data["policies"]["effective_path"] = str(cfg.policy_path)
    data["trace"]["effective_path"] = str(cfg.trace_path)
    return data


def _print_config_rich(data: dict[str, object], console: Console) -> None:
    """Print config dict in a human-friendly format."""
    console.print("[bold]NetGuard Configuration[/bold]\n")
    for section, values in data.items():
        if isinstance(values, dict):
            console.print(f"  [cyan]{escape(f'[{section}]')}[/cyan]")
            for k, v in values.items():
                console.print(f"    {k} = {v!r}")
        else:
            console.print(f"  {section} = {values!r}")
    console.print()
