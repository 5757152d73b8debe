"""
NetGuard CLI entry point.

Commands:
  netguard policy validate FILE    validate a policy file (schema + condition lint)
  netguard policy list FILE        show policies in rank order
  netguard policy test FILE ...    decide a synthetic request, optionally --explain
  netguard decide ...              decide a request against the configured policy file
  netguard trace tail              show recent recorded decisions
  netguard config show             display the effective configuration
  netguard config init             write a default config file
  netguard config validate         validate the config file
"""

from __future__ import annotations

import click

from netguard import __version__
from netguard.cli._config_cmd import config_group
from netguard.cli._decide_cmd import decide_cmd
from netguard.cli._policy_cmd import policy_group
from netguard.cli._trace_cmd import trace_group


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="netguard %(version)s")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    envvar="NETGUARD_CONFIG",
    help="Config file (default: ~/.netguard/config.toml).",
)
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """NetGuard: policy decision point for network access control."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


cli.add_command(policy_group)
cli.add_command(trace_group)
cli.add_command(config_group)
cli.add_command(decide_cmd)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
