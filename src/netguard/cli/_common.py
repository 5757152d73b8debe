"""Shared helpers for CLI commands: config loading and logging setup."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console

from netguard.core.config import NetGuardConfig, load_config, load_config_or_default
from netguard.core.constants import ExitCode
from netguard.core.exceptions import ConfigError
from netguard.core.logs import configure_logging

err_console = Console(stderr=True)


def load_cli_config(ctx: click.Context, *, required: bool = False) -> NetGuardConfig:
    """Load config for a command and configure logging from it. Exits on config errors."""
    obj = ctx.find_root().obj or {}
    raw_path = obj.get("config_path")
    path = Path(raw_path) if raw_path else None
    try:
        cfg = load_config(path) if (required or path) else load_config_or_default()
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    logging_cfg = cfg.logging
    if level := obj.get("log_level"):
        try:
            logging_cfg = logging_cfg.model_validate({**logging_cfg.model_dump(), "level": level})
        except ValueError as exc:
            err_console.print(f"[red]Invalid --log-level:[/red] {exc}")
            sys.exit(ExitCode.CONFIG_ERROR)
    configure_logging(logging_cfg)
    return cfg
