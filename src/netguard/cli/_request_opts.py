"""Shared click options for commands that build an AccessRequest."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import click

from netguard.core.policy.model import AccessRequest, RequestContext, SubjectAttributes

F = TypeVar("F", bound=Callable[..., Any])

_REQUEST_OPTIONS = [
    click.option("--subject", "principal_id", required=True, help="Principal identifier."),
    click.option("--group", "groups", multiple=True, help="Group membership (repeatable)."),
    click.option("--role", default=None, help="Principal role."),
    click.option("--object", "object_id", required=True, help="Target object identifier."),
    click.option("--ip", "ip_address", default=None, help="Request source IP address."),
    click.option(
        "--at",
        "timestamp",
        type=click.DateTime(["%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M"]),
        default=None,
        help="Request time (naive times are UTC). Default: now.",
    ),
    click.option("--risk-score", type=float, default=None, help="Device risk score."),
    click.option("--device-type", default=None),
    click.option("--location", default=None),
    click.option("--geo", "geo_location", default=None, help="Geo-location (country code)."),
    click.option("--department", default=None),
    click.option("--connection-type", default=None, help="e.g. vpn, lan, wifi."),
    click.option("--auth-strength", default=None, help="e.g. password, mfa."),
    click.option("--attr", "attrs", multiple=True, help="Extra attribute KEY=VALUE (repeatable)."),
]


def request_options(f: F) -> F:
    """Attach the request-describing options to a command."""
    for option in reversed(_REQUEST_OPTIONS):
        f = option(f)
    return f


def _parse_attrs(pairs: tuple[str, ...]) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--attr")
        attrs[key.strip()] = value.strip()
    return attrs


def build_request(
    *,
    principal_id: str,
    groups: tuple[str, ...],
    role: str | None,
    object_id: str,
    ip_address: str | None,
    timestamp: datetime | None,
    risk_score: float | None,
    device_type: str | None,
    location: str | None,
    geo_location: str | None,
    department: str | None,
    connection_type: str | None,
    auth_strength: str | None,
    attrs: tuple[str, ...],
) -> AccessRequest:
    """Turn the parsed option values into an AccessRequest."""
    context_fields: dict[str, Any] = {
        "ip_address": ip_address,
        "connection_type": connection_type,
    }
    if timestamp is not None:
        context_fields["timestamp"] = timestamp
    return AccessRequest(
        subject=SubjectAttributes(
            principal_id=principal_id,
            groups=groups,
            role=role,
            risk_score=risk_score,
            geo_location=geo_location,
            location=location,
            device_type=device_type,
            department=department,
            auth_strength=auth_strength,
            attributes=_parse_attrs(attrs),
        ),
        object_id=object_id,
        context=RequestContext(**context_fields),
    )
