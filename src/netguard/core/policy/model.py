"""
Policy data model: Pydantic v2 models for policies, requests, and decisions.

All models are frozen. A store update replaces a Policy wholesale, so a
concurrent reader sees either the old record or the new one, never a mix.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PolicyAction(StrEnum):
    """Closed set of actions a policy can resolve to."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_STEP_UP_AUTH = "require_step_up_auth"
    LOG_ONLY = "log_only"
    ISOLATE = "isolate"
    REDIRECT = "redirect"


# Authoring aliases accepted on input
_ACTION_ALIASES: dict[str, str] = {
    "require_mfa": PolicyAction.REQUIRE_STEP_UP_AUTH.value,
    "step_up": PolicyAction.REQUIRE_STEP_UP_AUTH.value,
}


def action_from_str(value: Any) -> Any:
    """Normalise action input: case-insensitive, ``-`` as ``_``, aliases resolved."""
    if isinstance(value, PolicyAction) or not isinstance(value, str):
        return value
    key = value.strip().lower().replace("-", "_")
    return _ACTION_ALIASES.get(key, key)


class DecisionReason(StrEnum):
    """Why a decision came out the way it did."""

    MATCHED = "matched"
    NO_MATCH = "no_match"
    STORE_ERROR = "store_error"


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class Policy(BaseModel):
    """One access rule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int = Field(ge=0)
    name: str = Field(min_length=1)
    description: str = ""
    subject: str = Field(min_length=1)
    object: str = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)
    action: PolicyAction
    priority: int = 0
    enabled: bool = True
    version: int = Field(default=1, ge=1)

    @field_validator("action", mode="before")
    @classmethod
    def normalise_action(cls, v: Any) -> Any:
        return action_from_str(v)

    @field_validator("subject", "object")
    @classmethod
    def strip_matcher(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("matcher expression must not be blank")
        return v

    @field_validator("description", "priority", mode="before")
    @classmethod
    def null_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        # "description:" or "priority:" with no value parses as None
        if v is None:
            return "" if info.field_name == "description" else 0
        return v

    @field_validator("conditions", mode="before")
    @classmethod
    def conditions_default(cls, v: Any) -> Any:
        # YAML "conditions:" with no body parses as None
        return {} if v is None else v

    @field_validator("conditions")
    @classmethod
    def normalise_condition_keys(cls, v: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, value in v.items():
            norm = key.strip().lower()
            if norm in out:
                raise ValueError(f"Duplicate condition type: {norm!r}")
            out[norm] = value
        return out

    def content_hash(self) -> str:
        """Stable 16-char hash of the record, used as the audit snapshot marker."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]


class PolicySet(BaseModel):
    """A policy document as stored on disk."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_version: str = "1"
    name: str = "unnamed"
    policies: list[Policy] = Field(default_factory=list)

    @field_validator("policy_version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> str:
        return str(v)

    @field_validator("policy_version")
    @classmethod
    def check_version(cls, v: str) -> str:
        if v != "1":
            raise ValueError(f"Expected policy_version '1', got {v!r}")
        return v

    @model_validator(mode="after")
    def unique_ids(self) -> PolicySet:
        seen: set[int] = set()
        for policy in self.policies:
            if policy.id in seen:
                raise ValueError(f"Duplicate policy id: {policy.id}")
            seen.add(policy.id)
        return self

    def content_hash(self) -> str:
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]

    def enabled(self) -> list[Policy]:
        return [p for p in self.policies if p.enabled]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubjectAttributes(BaseModel):
    """Attributes of the principal making the request."""

    model_config = ConfigDict(frozen=True)

    principal_id: str
    groups: tuple[str, ...] = ()
    role: str | None = None
    risk_score: float | None = None
    geo_location: str | None = None
    location: str | None = None
    device_type: str | None = None
    department: str | None = None
    auth_strength: str | None = None
    # Free-form attributes for registered extension conditions
    attributes: dict[str, str] = Field(default_factory=dict)

    @field_validator("groups", mode="before")
    @classmethod
    def split_groups(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(g.strip() for g in v.split(",") if g.strip())
        return v


class RequestContext(BaseModel):
    """Circumstances of the request."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    ip_address: str | None = None
    connection_type: str | None = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class AccessRequest(BaseModel):
    """One authorization question. Lives only for the duration of a decision."""

    model_config = ConfigDict(frozen=True)

    subject: SubjectAttributes
    object_id: str
    context: RequestContext = Field(default_factory=RequestContext)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


class Decision(BaseModel):
    """
    The resolved action for one request.

    ``policy_id`` is ``None`` when the default or the store-error path decided;
    ``reason`` tells the two apart. The deciding policy's version and hash are
    snapshotted so the decision stays meaningful after the policy changes or
    is deleted.
    """

    model_config = ConfigDict(frozen=True)

    action: PolicyAction
    policy_id: int | None
    reason: DecisionReason
    decided_at: datetime
    object_id: str
    principal_id: str
    policy_name: str | None = None
    policy_version: int | None = None
    policy_hash: str | None = None
    matched_policy_ids: tuple[int, ...] = ()
    warnings: tuple[str, ...] = ()
    explanation: str = ""

    @property
    def is_default(self) -> bool:
        return self.policy_id is None

    @property
    def allowed(self) -> bool:
        return self.action == PolicyAction.ALLOW

    def to_json(self) -> str:
        """Serialize to a single JSON line (for the decision trace)."""
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False, sort_keys=True)
