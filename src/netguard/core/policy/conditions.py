"""
Condition matcher: evaluates one typed policy condition against a request.

Condition values arrive as raw JSON/YAML (``"192.168.1.0/24"``, ``"< 30"``,
``["laptop", "desktop"]``). A :class:`ConditionRegistry` compiles each value
into a typed variant once; the variant then checks requests without any
further parsing.

Usage::

    matcher = ConditionMatcher(timezone="Europe/Berlin")
    result = matcher.evaluate("ip_range", "192.168.1.0/24", request)
    if result:            # truthy only on MATCH
        ...
    result.outcome        # MATCH / NO_MATCH / MALFORMED / UNKNOWN_TYPE

Evaluation fails closed: a value that cannot be parsed, or a type nobody
registered, never matches.
"""

from __future__ import annotations

import ipaddress
import json
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import tzinfo
from enum import StrEnum
from typing import Any, Protocol

from netguard.core.config import resolve_timezone
from netguard.core.constants import DEFAULT_TIMEZONE, MFA_AUTH_STRENGTH
from netguard.core.exceptions import MalformedConditionError, UnknownConditionTypeError
from netguard.core.policy.model import AccessRequest

_CACHE_LIMIT = 4096


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ConditionOutcome(StrEnum):
    MATCH = "match"
    NO_MATCH = "no_match"
    MALFORMED = "malformed"
    UNKNOWN_TYPE = "unknown_type"


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of one condition check. Truthy only when the condition holds."""

    condition_type: str
    outcome: ConditionOutcome
    reason: str

    def __bool__(self) -> bool:
        return self.outcome is ConditionOutcome.MATCH

    @property
    def evaluable(self) -> bool:
        return self.outcome in (ConditionOutcome.MATCH, ConditionOutcome.NO_MATCH)


@dataclass(frozen=True)
class MatchEnvironment:
    """Settings a compiled condition may depend on."""

    tz: tzinfo
    named_sets: Mapping[str, frozenset[str]] = field(default_factory=dict)


class Condition(Protocol):
    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]: ...


ConditionCompiler = Callable[[Any, MatchEnvironment], Condition]


# ---------------------------------------------------------------------------
# ip_range
# ---------------------------------------------------------------------------

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class IpRangeCondition:
    ranges: tuple[tuple[IPAddress, IPAddress], ...]
    source: str

    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]:
        raw = request.context.ip_address
        if not raw:
            return False, "ip_range: request has no ip_address"
        try:
            addr = ipaddress.ip_address(raw.strip())
        except ValueError:
            return False, f"ip_range: request ip_address {raw!r} is not an IP address"
        for low, high in self.ranges:
            if low.version == addr.version and low <= addr <= high:
                return True, f"ip_range: {raw} in {self.source}"
        return False, f"ip_range: {raw} not in {self.source}"


def _parse_ip_item(item: str) -> tuple[IPAddress, IPAddress]:
    item = item.strip()
    try:
        if "/" in item:
            net = ipaddress.ip_network(item, strict=False)
            return net.network_address, net.broadcast_address
        if "-" in item:
            start_s, _, end_s = item.partition("-")
            start = ipaddress.ip_address(start_s.strip())
            end = ipaddress.ip_address(end_s.strip())
            if start.version != end.version:
                raise MalformedConditionError(f"ip_range {item!r} mixes IPv4 and IPv6")
            if start > end:
                raise MalformedConditionError(f"ip_range {item!r} starts after it ends")
            return start, end
        addr = ipaddress.ip_address(item)
        return addr, addr
    except ValueError as exc:
        if isinstance(exc, MalformedConditionError):
            raise
        raise MalformedConditionError(f"ip_range {item!r} is not a CIDR, address, or range") from exc


def compile_ip_range(value: Any, env: MatchEnvironment) -> IpRangeCondition:
    items = _as_items(value, "ip_range")
    if not items:
        raise MalformedConditionError("ip_range is empty")
    return IpRangeCondition(
        ranges=tuple(_parse_ip_item(i) for i in items),
        source=", ".join(items),
    )


# ---------------------------------------------------------------------------
# time_range
# ---------------------------------------------------------------------------

_TIME_RANGE_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True)
class TimeRangeCondition:
    start: int  # minutes after midnight, inclusive
    end: int  # minutes after midnight, exclusive
    source: str

    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]:
        local = request.context.timestamp.astimezone(env.tz)
        minute = local.hour * 60 + local.minute
        if self.start == self.end:
            matched = True
        elif self.start < self.end:
            matched = self.start <= minute < self.end
        else:
            # Window wraps past midnight, e.g. 22:00-06:00
            matched = minute >= self.start or minute < self.end
        clock = local.strftime("%H:%M")
        return matched, f"time_range: {clock} {'inside' if matched else 'outside'} {self.source}"


def _minutes(hh: str, mm: str, source: str, *, allow_24: bool) -> int:
    h, m = int(hh), int(mm)
    if m > 59 or h > 24 or (h == 24 and (m != 0 or not allow_24)):
        raise MalformedConditionError(f"time_range {source!r} has an invalid clock time")
    return h * 60 + m


def compile_time_range(value: Any, env: MatchEnvironment) -> TimeRangeCondition:
    if not isinstance(value, str):
        raise MalformedConditionError(f"time_range must be 'HH:MM-HH:MM', got {value!r}")
    m = _TIME_RANGE_RE.match(value)
    if not m:
        raise MalformedConditionError(f"time_range must be 'HH:MM-HH:MM', got {value!r}")
    start = _minutes(m.group(1), m.group(2), value, allow_24=False)
    end = _minutes(m.group(3), m.group(4), value, allow_24=True)
    return TimeRangeCondition(start=start, end=end % 1440, source=value.strip())


# ---------------------------------------------------------------------------
# risk_score
# ---------------------------------------------------------------------------

_COMPARATOR_RE = re.compile(r"^\s*(<=|>=|==|<|>|=)?\s*(-?\d+(?:\.\d+)?)\s*$")

_COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
}

# Operator names offered by the policy editor
_NAMED_COMPARATORS = {
    "less_than": "<",
    "greater_than": ">",
    "equals": "==",
    "at_most": "<=",
    "at_least": ">=",
}


@dataclass(frozen=True)
class RiskScoreCondition:
    op: str
    threshold: float

    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]:
        score = request.subject.risk_score
        if score is None:
            return False, "risk_score: request has no risk_score"
        matched = _COMPARATORS[self.op](score, self.threshold)
        verdict = "satisfies" if matched else "does not satisfy"
        return matched, f"risk_score: {score:g} {verdict} {self.op} {self.threshold:g}"


def compile_risk_score(value: Any, env: MatchEnvironment) -> RiskScoreCondition:
    if isinstance(value, bool):
        raise MalformedConditionError(f"risk_score comparator expected, got {value!r}")
    if isinstance(value, (int, float)):
        return RiskScoreCondition(op="==", threshold=float(value))
    if isinstance(value, Mapping):
        op_name = str(value.get("operator", "")).strip().lower()
        op = _NAMED_COMPARATORS.get(op_name, op_name)
        if op not in _COMPARATORS:
            raise MalformedConditionError(f"risk_score operator {op_name!r} is not supported")
        try:
            return RiskScoreCondition(op=op, threshold=float(value.get("value")))
        except (TypeError, ValueError) as exc:
            raise MalformedConditionError(f"risk_score value {value.get('value')!r} is not a number") from exc
    if not isinstance(value, str):
        raise MalformedConditionError(f"risk_score comparator expected, got {value!r}")
    m = _COMPARATOR_RE.match(value)
    if not m:
        raise MalformedConditionError(f"risk_score {value!r} is not '<op> N' (op: < > <= >= ==)")
    op = m.group(1) or "=="
    if op == "=":
        op = "=="
    return RiskScoreCondition(op=op, threshold=float(m.group(2)))


# ---------------------------------------------------------------------------
# Attribute equality / membership
# ---------------------------------------------------------------------------

AttributeGetter = Callable[[AccessRequest], "str | None"]

_ATTRIBUTE_GETTERS: dict[str, AttributeGetter] = {
    "device_type": lambda r: r.subject.device_type,
    "location": lambda r: r.subject.location,
    "geo_location": lambda r: r.subject.geo_location,
    "department": lambda r: r.subject.department,
    "connection_type": lambda r: r.context.connection_type,
}


def _extension_getter(name: str) -> AttributeGetter:
    return lambda r: r.subject.attributes.get(name)


@dataclass(frozen=True)
class AttributeCondition:
    attribute: str
    values: frozenset[str]  # casefolded
    negate: bool
    getter: AttributeGetter = field(compare=False, repr=False)

    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]:
        raw = self.getter(request)
        if raw is None or not str(raw).strip():
            return False, f"{self.attribute}: request has no {self.attribute}"
        actual = str(raw).strip().casefold()
        member = actual in self.values
        matched = not member if self.negate else member
        expected = sorted(self.values)
        if self.negate:
            return matched, f"{self.attribute}: {raw!r} {'not in' if matched else 'in'} {expected}"
        return matched, f"{self.attribute}: {raw!r} {'in' if matched else 'not in'} {expected}"


def attribute_compiler(name: str, getter: AttributeGetter | None = None) -> ConditionCompiler:
    """
    Build a compiler for a case-insensitive equality/membership condition.

    Without ``getter`` the value is read from ``request.subject.attributes[name]``.
    """
    get = getter or _ATTRIBUTE_GETTERS.get(name) or _extension_getter(name)

    def compile_attribute(value: Any, env: MatchEnvironment) -> AttributeCondition:
        negate = False
        if isinstance(value, Mapping):
            op = str(value.get("operator", "equals")).strip().lower()
            if op not in ("equals", "in", "not_in"):
                raise MalformedConditionError(f"{name} operator {op!r} is not supported")
            negate = op == "not_in"
            value = value.get("value")
        items = _as_items(value, name)
        if not items:
            raise MalformedConditionError(f"{name} has no values")
        values: set[str] = set()
        for item in items:
            key = item.casefold()
            if key in env.named_sets:
                values.update(env.named_sets[key])
            else:
                values.add(key)
        return AttributeCondition(
            attribute=name, values=frozenset(values), negate=negate, getter=get
        )

    return compile_attribute


# ---------------------------------------------------------------------------
# mfa_required
# ---------------------------------------------------------------------------

_TRUE_WORDS = frozenset({"true", "yes", "1", "required", "on", "enabled"})
_FALSE_WORDS = frozenset({"false", "no", "0", "optional", "off", "disabled"})


@dataclass(frozen=True)
class MfaRequiredCondition:
    required: bool

    def check(self, request: AccessRequest, env: MatchEnvironment) -> tuple[bool, str]:
        if not self.required:
            return True, "mfa_required: not required"
        strength = (request.subject.auth_strength or "").strip().lower()
        matched = strength == MFA_AUTH_STRENGTH
        return matched, f"mfa_required: auth_strength {strength or '(none)'!r}" + (
            " is mfa" if matched else " is not mfa"
        )


def compile_mfa_required(value: Any, env: MatchEnvironment) -> MfaRequiredCondition:
    if isinstance(value, bool):
        return MfaRequiredCondition(required=value)
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return MfaRequiredCondition(required=True)
    if word in _FALSE_WORDS:
        return MfaRequiredCondition(required=False)
    raise MalformedConditionError(f"mfa_required expects true/false, got {value!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_items(value: Any, name: str) -> list[str]:
    """Accept a string (comma-separated allowed) or a list of scalars."""
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, Iterable) and not isinstance(value, (bytes, Mapping)):
        items: list[str] = []
        for v in value:
            if isinstance(v, (Mapping, list, tuple, set, bool)) or v is None:
                raise MalformedConditionError(
                    f"{name} values must be strings or numbers, got {v!r}"
                )
            items.append(str(v).strip())
        return [i for i in items if i]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return [str(value)]
    raise MalformedConditionError(f"{name} value {value!r} is not a string or list")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ConditionRegistry:
    """Maps condition type names to compilers. Closed by default, open to registration."""

    def __init__(self, compilers: Mapping[str, ConditionCompiler] | None = None) -> None:
        self._compilers: dict[str, ConditionCompiler] = dict(compilers or {})

    def register(self, name: str, compiler: ConditionCompiler, *, replace: bool = False) -> None:
        key = name.strip().lower()
        if key in self._compilers and not replace:
            raise ValueError(f"Condition type {key!r} is already registered")
        self._compilers[key] = compiler

    def names(self) -> frozenset[str]:
        return frozenset(self._compilers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._compilers

    def compile(self, name: str, value: Any, env: MatchEnvironment) -> Condition:
        compiler = self._compilers.get(name.strip().lower())
        if compiler is None:
            raise UnknownConditionTypeError(f"Unknown condition type: {name!r}")
        return compiler(value, env)

    def copy(self) -> ConditionRegistry:
        return ConditionRegistry(self._compilers)


def default_registry() -> ConditionRegistry:
    """Return a fresh registry holding the built-in condition types."""
    registry = ConditionRegistry(
        {
            "ip_range": compile_ip_range,
            "time_range": compile_time_range,
            "risk_score": compile_risk_score,
            "mfa_required": compile_mfa_required,
        }
    )
    for name in _ATTRIBUTE_GETTERS:
        registry.register(name, attribute_compiler(name))
    return registry


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class ConditionMatcher:
    """
    Evaluate single conditions against requests.

    Pure apart from a memo of compiled condition values; safe to share
    across threads.
    """

    def __init__(
        self,
        registry: ConditionRegistry | None = None,
        *,
        timezone: str | tzinfo = DEFAULT_TIMEZONE,
        named_sets: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        tz = resolve_timezone(timezone) if isinstance(timezone, str) else timezone
        sets = {
            name.strip().casefold(): frozenset(str(v).strip().casefold() for v in values)
            for name, values in (named_sets or {}).items()
        }
        self.env = MatchEnvironment(tz=tz, named_sets=sets)
        self._cache: dict[tuple[str, str], Condition] = {}

    def compile(self, condition_type: str, condition_value: Any) -> Condition:
        """
        Compile a raw condition value.

        Raises:
            UnknownConditionTypeError: if no compiler is registered for the type.
            MalformedConditionError: if the value cannot be parsed.
        """
        key: tuple[str, str] | None
        try:
            key = (condition_type, json.dumps(condition_value, sort_keys=True))
        except (TypeError, ValueError):
            key = None
        if key is not None and (cached := self._cache.get(key)) is not None:
            return cached
        condition = self.registry.compile(condition_type, condition_value, self.env)
        if key is not None:
            if len(self._cache) >= _CACHE_LIMIT:
                self._cache.clear()
            self._cache[key] = condition
        return condition

    def evaluate(
        self, condition_type: str, condition_value: Any, request: AccessRequest
    ) -> ConditionResult:
        """Evaluate one condition. Never raises for bad policy data."""
        try:
            condition = self.compile(condition_type, condition_value)
        except UnknownConditionTypeError:
            return ConditionResult(
                condition_type,
                ConditionOutcome.UNKNOWN_TYPE,
                f"{condition_type}: unknown condition type; treated as non-match",
            )
        except MalformedConditionError as exc:
            return ConditionResult(
                condition_type,
                ConditionOutcome.MALFORMED,
                f"{condition_type}: malformed value ({exc}); treated as non-match",
            )

        matched, reason = condition.check(request, self.env)
        return ConditionResult(
            condition_type,
            ConditionOutcome.MATCH if matched else ConditionOutcome.NO_MATCH,
            reason,
        )
