"""
Policy explain: human-readable output for ``netguard policy test --explain``.

Usage::

    output = explain_decision(decision)
    print(output)

    # Or walk every policy against a request:
    output = explain_request(engine, policies, request)
    print(output)
"""

from __future__ import annotations

from collections.abc import Iterable

from netguard.core.policy.engine import DecisionEngine
from netguard.core.policy.model import AccessRequest, Decision, Policy


def explain_decision(decision: Decision) -> str:
    """
    Format a Decision as a human-readable explanation.

    Returns a multi-line string suitable for CLI output.
    """
    if decision.policy_id is None:
        deciding = f"(none, {decision.reason.value})"
    else:
        deciding = f"{decision.policy_id} {decision.policy_name!r} (v{decision.policy_version})"
    lines: list[str] = []
    lines.append(f"Decision:      {decision.action.value.upper()}")
    lines.append(f"Reason:        {decision.reason.value}")
    lines.append(f"Policy:        {deciding}")
    if decision.policy_hash:
        lines.append(f"Policy hash:   {decision.policy_hash}")
    if decision.matched_policy_ids:
        lines.append(f"Matched:       {', '.join(str(i) for i in decision.matched_policy_ids)}")
    lines.append(f"Principal:     {decision.principal_id}")
    lines.append(f"Object:        {decision.object_id}")
    lines.append(f"Decided at:    {decision.decided_at.isoformat()}")
    for warning in decision.warnings:
        lines.append(f"Warning:       {warning}")
    lines.append("")
    lines.append(f"Explanation:   {decision.explanation}")
    return "\n".join(lines)


def explain_request(
    engine: DecisionEngine,
    policies: Iterable[Policy],
    request: AccessRequest,
) -> str:
    """
    Walk every enabled policy in rank order and show which matched and why.

    Unlike the engine, this does not stop at the winner: outranked matches
    are listed too, which is usually what an operator debugging a conflict
    wants to see.
    """
    subject = request.subject
    lines: list[str] = []
    lines.append(
        f"Request: principal={subject.principal_id!r}  groups={list(subject.groups)}  "
        f"object={request.object_id!r}"
    )
    lines.append(
        f"         ip={request.context.ip_address!r}  "
        f"at={request.context.timestamp.isoformat()}  risk_score={subject.risk_score!r}"
    )
    lines.append("")

    winner: Policy | None = None
    for policy, result in engine.rank(request, policies):
        if result.matched and winner is None:
            winner = policy
            status = "WINNER"
        elif result.matched:
            status = "outranked"
        else:
            status = "skip"
        lines.append(f"  Policy {policy.id:<4} p={policy.priority:<4} {policy.name!r:40s} [{status}]")
        for reason in result.reasons:
            lines.append(f"      {reason}")
        if status == "WINNER":
            lines.append(f"      → action: {policy.action.value}")
        lines.append("")

    if winner is None:
        lines.append(f"  No policy matched → applying default ({engine.default_action.value})")
    return "\n".join(lines)
