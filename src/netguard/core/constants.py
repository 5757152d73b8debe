"""NetGuard constants: filesystem layout, timeouts, and matcher keywords."""

from __future__ import annotations

from enum import IntEnum

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    POLICY_ERROR = 3


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

NETGUARD_DIR_NAME = ".netguard"
CONFIG_FILENAME = "config.toml"
POLICY_FILENAME = "policies.yaml"
TRACE_FILENAME = "decisions.jsonl"

# ---------------------------------------------------------------------------
# Engine defaults
# ---------------------------------------------------------------------------

DEFAULT_TIMEZONE = "UTC"
DEFAULT_STORE_TIMEOUT_SECONDS = 2.0
STORE_WORKER_THREADS = 4

# ---------------------------------------------------------------------------
# Matcher keywords
# ---------------------------------------------------------------------------

SUBJECT_WILDCARDS = frozenset({"*", "all", "all_users"})
OBJECT_WILDCARDS = frozenset({"*", "all", "all_systems"})
MFA_AUTH_STRENGTH = "mfa"
