"""NetGuard configuration: Pydantic model, load, and save."""

from __future__ import annotations

import contextlib
import os
from datetime import tzinfo
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from netguard.core.constants import (
    CONFIG_FILENAME,
    DEFAULT_STORE_TIMEOUT_SECONDS,
    DEFAULT_TIMEZONE,
    NETGUARD_DIR_NAME,
    POLICY_FILENAME,
    TRACE_FILENAME,
)
from netguard.core.exceptions import ConfigError, ConfigNotFoundError


def netguard_dir() -> Path:
    """Return the NetGuard config directory (~/.netguard), creating it if needed."""
    d = Path.home() / NETGUARD_DIR_NAME
    d.mkdir(mode=0o700, parents=True, exist_ok=True)
    return d


def resolve_timezone(name: str) -> tzinfo:
    """Return a tzinfo for an IANA name. ``UTC`` never needs the tz database."""
    from datetime import timezone
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    if name.upper() in ("UTC", "Z", "ETC/UTC"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    default_action: str = "deny"
    # Default-allow must be switched on explicitly
    allow_default_allow: bool = False
    timezone: str = DEFAULT_TIMEZONE
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS

    @field_validator("default_action")
    @classmethod
    def validate_default_action(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("deny", "allow"):
            raise ValueError("default_action must be 'deny' or 'allow'")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        resolve_timezone(v)
        return v

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if not (0 < v <= 60):
            raise ValueError("store_timeout_seconds must be in (0, 60]")
        return v

    @model_validator(mode="after")
    def reject_implicit_default_allow(self) -> EngineConfig:
        if self.default_action == "allow" and not self.allow_default_allow:
            raise ValueError(
                "default_action = 'allow' requires allow_default_allow = true. "
                "Default-allow silently over-permissions unmatched requests."
            )
        return self

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)


class PoliciesConfig(BaseModel):
    path: str = ""  # empty → use default


class TraceConfig(BaseModel):
    enabled: bool = True
    path: str = ""  # empty → use default


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v.lower()


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class NetGuardConfig(BaseModel):
    """Root NetGuard configuration model."""

    engine: EngineConfig = Field(default_factory=EngineConfig)
    policies: PoliciesConfig = Field(default_factory=PoliciesConfig)
    trace: TraceConfig = Field(default_factory=TraceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    # Named value sets referenced by attribute conditions, e.g. allowed_countries
    named_sets: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("named_sets")
    @classmethod
    def normalise_named_sets(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        return {name.strip().lower(): [str(x) for x in values] for name, values in v.items()}

    @property
    def policy_path(self) -> Path:
        if self.policies.path:
            return Path(self.policies.path).expanduser()
        return netguard_dir() / POLICY_FILENAME

    @property
    def trace_path(self) -> Path:
        if self.trace.path:
            return Path(self.trace.path).expanduser()
        return netguard_dir() / TRACE_FILENAME


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("NETGUARD_CONFIG"):
        return Path(env_path)
    return netguard_dir() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> NetGuardConfig:
    """
    Load NetGuardConfig from TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (NETGUARD_*)
      2. Config file (~/.netguard/config.toml)
    """
    import tomllib

    cfg_path = path or _config_file_path()

    if not cfg_path.exists():
        raise ConfigNotFoundError(f"Config file not found: {cfg_path}")

    try:
        with open(cfg_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    _apply_env_overrides(data)

    try:
        return NetGuardConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc


def load_config_or_default(path: Path | None = None) -> NetGuardConfig:
    """Like :func:`load_config`, but fall back to defaults when no file exists."""
    try:
        return load_config(path)
    except ConfigNotFoundError:
        data: dict[str, Any] = {}
        _apply_env_overrides(data)
        try:
            return NetGuardConfig.model_validate(data)
        except ValueError as exc:
            raise ConfigError(f"Invalid config from environment: {exc}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay NETGUARD_* environment variables onto the parsed TOML data."""
    if action := os.environ.get("NETGUARD_DEFAULT_ACTION"):
        data.setdefault("engine", {})["default_action"] = action
    if tz := os.environ.get("NETGUARD_TIMEZONE"):
        data.setdefault("engine", {})["timezone"] = tz
    if timeout := os.environ.get("NETGUARD_STORE_TIMEOUT"):
        try:
            data.setdefault("engine", {})["store_timeout_seconds"] = float(timeout)
        except ValueError as exc:
            raise ConfigError(f"NETGUARD_STORE_TIMEOUT is not a number: {timeout!r}") from exc
    if policy_path := os.environ.get("NETGUARD_POLICY_PATH"):
        data.setdefault("policies", {})["path"] = policy_path
    if level := os.environ.get("NETGUARD_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or _config_file_path()

    # Write atomically
    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.replace(cfg_path)
    except (OSError, TypeError, ValueError) as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    cfg_path.chmod(0o600)
    return cfg_path
