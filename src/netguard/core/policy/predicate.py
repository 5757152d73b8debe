"""
Policy predicate: does one policy apply to one request?

Three steps, all of which must pass:

  1. subject   principal id, group, role, or wildcard
  2. object    exact, hierarchical, prefix (``foo*``), or CIDR containment
  3. conditions logical AND over the condition mapping (empty → true)

The predicate knows nothing about priority or action.
"""

from __future__ import annotations

import ipaddress

from netguard.core.constants import OBJECT_WILDCARDS, SUBJECT_WILDCARDS
from netguard.core.policy.conditions import ConditionMatcher, ConditionResult
from netguard.core.policy.model import AccessRequest, Policy


# ---------------------------------------------------------------------------
# Subject / object matching
# ---------------------------------------------------------------------------


def match_subject(expr: str, request: AccessRequest) -> tuple[bool, str]:
    subject = request.subject
    if expr.lower() in SUBJECT_WILDCARDS:
        return True, f"subject: {expr} (wildcard, always matches)"

    kind, sep, name = expr.partition(":")
    if sep and kind in ("user", "group", "role"):
        if kind == "user":
            matched = subject.principal_id == name
        elif kind == "group":
            matched = name in subject.groups
        else:
            matched = subject.role is not None and subject.role == name
        return matched, f"subject: {kind} {name!r} {'matches' if matched else 'does not match'}"

    if subject.principal_id == expr:
        return True, f"subject: principal {expr!r}"
    if expr in subject.groups:
        return True, f"subject: member of {expr!r}"
    if subject.role is not None and subject.role == expr:
        return True, f"subject: role {expr!r}"
    return False, f"subject: {subject.principal_id!r} is not {expr!r} and not a member"


def _as_network(value: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
    try:
        return ipaddress.ip_network(value.strip(), strict=False)
    except ValueError:
        return None


def match_object(expr: str, object_id: str) -> tuple[bool, str]:
    if expr.lower() in OBJECT_WILDCARDS:
        return True, f"object: {expr} (wildcard, always matches)"

    if expr.endswith("*"):
        prefix = expr[:-1]
        matched = object_id.startswith(prefix)
        return matched, (
            f"object: {object_id!r} {'starts with' if matched else 'does not start with'} {prefix!r}"
        )

    if "/" in expr and (policy_net := _as_network(expr)) is not None:
        target = _as_network(object_id)
        if target is None:
            return False, f"object: {object_id!r} is not an address inside {expr}"
        matched = target.version == policy_net.version and target.subnet_of(policy_net)  # type: ignore[arg-type]
        return matched, f"object: {object_id} {'inside' if matched else 'outside'} {expr}"

    if object_id == expr:
        return True, f"object: {object_id!r} == {expr!r}"
    base = expr.rstrip("/")
    if object_id.startswith(base + "/"):
        return True, f"object: {object_id!r} is under {base!r}"
    return False, f"object: {object_id!r} != {expr!r}"


# ---------------------------------------------------------------------------
# Predicate
# ---------------------------------------------------------------------------


class PolicyMatchResult:
    """Result of evaluating one policy against a request."""

    __slots__ = ("policy_id", "matched", "reasons", "conditions")

    def __init__(
        self,
        policy_id: int,
        matched: bool,
        reasons: list[str],
        conditions: list[ConditionResult],
    ) -> None:
        self.policy_id = policy_id
        self.matched = matched
        self.reasons = reasons
        self.conditions = conditions

    @property
    def unevaluable(self) -> list[ConditionResult]:
        return [c for c in self.conditions if not c.evaluable]


class PolicyPredicate:
    """Pure boolean predicate over (policy, request)."""

    def __init__(self, matcher: ConditionMatcher | None = None) -> None:
        self.matcher = matcher or ConditionMatcher()

    def matches(self, policy: Policy, request: AccessRequest) -> bool:
        return self.evaluate(policy, request).matched

    def evaluate(self, policy: Policy, request: AccessRequest) -> PolicyMatchResult:
        """Evaluate every step and keep a reason per step."""
        reasons: list[str] = []

        ok, reason = match_subject(policy.subject, request)
        reasons.append(("✓ " if ok else "✗ ") + reason)
        if not ok:
            return PolicyMatchResult(policy.id, False, reasons, [])

        ok, reason = match_object(policy.object, request.object_id)
        reasons.append(("✓ " if ok else "✗ ") + reason)
        if not ok:
            return PolicyMatchResult(policy.id, False, reasons, [])

        if not policy.conditions:
            reasons.append("✓ conditions: none (vacuously true)")
            return PolicyMatchResult(policy.id, True, reasons, [])

        # No short-circuit: every unevaluable condition gets reported
        results = [
            self.matcher.evaluate(ctype, value, request)
            for ctype, value in sorted(policy.conditions.items())
        ]
        for result in results:
            reasons.append(("✓ " if result else "✗ ") + result.reason)
        return PolicyMatchResult(policy.id, all(results), reasons, results)
