"""NetGuard exception hierarchy."""

from __future__ import annotations


class NetGuardError(Exception):
    """Base exception for all NetGuard errors."""


class ConfigError(NetGuardError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when the configuration file does not exist."""


class PolicyStoreError(NetGuardError):
    """Raised when the policy store cannot serve a request."""


class StoreUnavailableError(PolicyStoreError):
    """Raised when the policy store is unreachable or timed out."""


class PolicyNotFoundError(PolicyStoreError, KeyError):
    """Raised when a policy id does not exist in the store."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class ConditionError(NetGuardError, ValueError):
    """Base for condition compilation failures. Never escapes the matcher."""


class MalformedConditionError(ConditionError):
    """Raised when a condition value cannot be parsed (bad CIDR, bad comparator)."""


class UnknownConditionTypeError(ConditionError):
    """Raised when a condition type has no registered compiler."""
