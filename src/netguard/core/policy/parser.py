"""
Policy YAML parser: loads and validates NetGuard policy files.

Usage::

    policy_set = load_policy_set("~/.netguard/policies.yaml")
    policy_set = parse_policy_set(yaml_string)
    problems = lint_policy_set(policy_set)   # unknown / malformed conditions

File format::

    policy_version: "1"
    name: corp-network
    policies:
      - id: 1
        name: VPN access
        subject: admin_group
        object: internal_network
        conditions:
          ip_range: 192.168.1.0/24
          time_range: "09:00-18:00"
        action: allow
        priority: 10
"""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from netguard.core.exceptions import ConditionError
from netguard.core.policy.conditions import ConditionMatcher
from netguard.core.policy.model import PolicySet


class PolicyParseError(ValueError):
    """Raised when a policy file cannot be parsed or fails validation."""


class PolicyLoader(yaml.SafeLoader):
    """
    SafeLoader that resolves only true/false as booleans (YAML 1.2 core schema).

    Plain SafeLoader follows YAML 1.1, where yes/no/on/off are booleans, so a
    country list such as [SE, NO] would load as ["SE", False].
    """


PolicyLoader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
PolicyLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def load_policy_set(path: str | Path) -> PolicySet:
    """
    Load and validate a policy set from a YAML file.

    Raises:
        PolicyParseError: if the file is missing, unreadable, or invalid.
    """
    p = Path(path).expanduser()
    if not p.exists():
        raise PolicyParseError(f"Policy file not found: {p}")
    try:
        content = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PolicyParseError(f"Cannot read policy file {p}: {exc}") from exc
    return parse_policy_set(content, source=str(p))


def parse_policy_set(yaml_text: str, source: str = "<string>") -> PolicySet:
    """
    Parse and validate a YAML policy string.

    Args:
        yaml_text: Raw YAML content.
        source:    Human-readable source label for error messages.

    Raises:
        PolicyParseError: on YAML syntax errors or schema violations.
    """
    try:
        data = yaml.load(yaml_text, Loader=PolicyLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        raise PolicyParseError(f"YAML syntax error in {source}: {exc}") from exc

    if not isinstance(data, dict):
        raise PolicyParseError(
            f"Policy file {source} must be a YAML mapping (got {type(data).__name__})"
        )

    try:
        return PolicySet.model_validate(data)
    except ValidationError as exc:
        lines = [f"Policy validation failed in {source}:"]
        for err in exc.errors():
            loc = " → ".join(str(x) for x in err["loc"]) if err["loc"] else "(root)"
            lines.append(f"  {loc}: {err['msg']}")
        raise PolicyParseError("\n".join(lines)) from exc


def lint_policy_set(policy_set: PolicySet, matcher: ConditionMatcher | None = None) -> list[str]:
    """
    Compile every condition and report the ones the engine will treat as non-match.

    Lint findings are warnings, not errors: such policies load and simply
    never match.
    """
    matcher = matcher or ConditionMatcher()
    problems: list[str] = []
    for policy in policy_set.policies:
        for ctype, value in sorted(policy.conditions.items()):
            try:
                matcher.compile(ctype, value)
            except ConditionError as exc:
                problems.append(f"policy {policy.id} ({policy.name}): {exc}")
    return problems


def validate_policy_file(path: str | Path) -> list[str]:
    """
    Validate a policy file and return a list of human-readable error strings.

    Returns an empty list if the policy file is valid.
    """
    try:
        load_policy_set(path)
        return []
    except PolicyParseError as exc:
        return str(exc).splitlines()
