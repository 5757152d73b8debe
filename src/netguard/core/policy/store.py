"""
Policy stores: where the decision engine gets its enabled policies from.

The engine depends only on the :class:`PolicyStore` protocol. Two stores
ship with NetGuard:

  InMemoryPolicyStore: thread-safe CRUD over immutable records
  FilePolicyStore      a YAML policy file, reloaded when it changes

A scope hint lets a store pre-filter, but the engine re-checks every policy
it receives, so a store that ignores the hint is still correct.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from netguard.core.exceptions import PolicyNotFoundError, PolicyStoreError, StoreUnavailableError
from netguard.core.policy.model import AccessRequest, Policy, PolicySet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeHint:
    """Advisory filter a store may use to narrow the policy set."""

    object_id: str | None = None
    principal_id: str | None = None
    groups: tuple[str, ...] = ()

    @classmethod
    def for_request(cls, request: AccessRequest) -> ScopeHint:
        return cls(
            object_id=request.object_id,
            principal_id=request.subject.principal_id,
            groups=request.subject.groups,
        )


@runtime_checkable
class PolicyStore(Protocol):
    def get_enabled_policies(self, scope_hint: ScopeHint | None = None) -> list[Policy]: ...


def rank_key(policy: Policy) -> tuple[int, int]:
    """Sort key: higher priority first, lower id first among equals."""
    return (-policy.priority, policy.id)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryPolicyStore:
    """
    Canonical owner of a set of Policy records.

    Records are frozen Pydantic models; an update swaps the whole record
    under the lock, so readers never observe a half-written policy.
    """

    _IMMUTABLE_FIELDS = frozenset({"id", "version"})

    def __init__(self, policies: list[Policy] | None = None) -> None:
        self._lock = threading.RLock()
        self._policies: dict[int, Policy] = {}
        self._next_id = 1
        for policy in policies or []:
            self._insert(policy)

    def _insert(self, policy: Policy) -> None:
        if policy.id in self._policies:
            raise PolicyStoreError(f"Duplicate policy id: {policy.id}")
        self._policies[policy.id] = policy
        self._next_id = max(self._next_id, policy.id + 1)

    # -- reads -------------------------------------------------------------

    def get(self, policy_id: int) -> Policy:
        with self._lock:
            try:
                return self._policies[policy_id]
            except KeyError:
                raise PolicyNotFoundError(f"Policy {policy_id} not found") from None

    def list_all(self) -> list[Policy]:
        """All policies, enabled or not, highest priority first."""
        with self._lock:
            return sorted(self._policies.values(), key=rank_key)

    def get_enabled_policies(self, scope_hint: ScopeHint | None = None) -> list[Policy]:
        with self._lock:
            snapshot = list(self._policies.values())
        return sorted((p for p in snapshot if p.enabled), key=rank_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._policies)

    # -- writes ------------------------------------------------------------

    def create(self, data: dict[str, Any]) -> Policy:
        """
        Validate and store a new policy. The store assigns the id.

        Raises:
            PolicyStoreError: if the payload fails validation.
        """
        payload = {k: v for k, v in data.items() if k not in self._IMMUTABLE_FIELDS}
        with self._lock:
            try:
                policy = Policy.model_validate({**payload, "id": self._next_id, "version": 1})
            except ValidationError as exc:
                raise PolicyStoreError(f"Invalid policy: {exc}") from exc
            self._insert(policy)
        logger.info("Policy created: id=%s name=%r", policy.id, policy.name)
        return policy

    def update(self, policy_id: int, changes: dict[str, Any]) -> Policy:
        """
        Apply a full or partial update. ``id`` cannot change; ``version`` is bumped.

        Raises:
            PolicyNotFoundError: if the id does not exist.
            PolicyStoreError: if the change targets an immutable field or fails validation.
        """
        bad = self._IMMUTABLE_FIELDS & changes.keys()
        if bad:
            raise PolicyStoreError(f"Cannot update immutable field(s): {sorted(bad)}")
        with self._lock:
            current = self.get(policy_id)
            merged = {**current.model_dump(), **changes, "version": current.version + 1}
            try:
                updated = Policy.model_validate(merged)
            except ValidationError as exc:
                raise PolicyStoreError(f"Invalid update for policy {policy_id}: {exc}") from exc
            self._policies[policy_id] = updated
        logger.info("Policy updated: id=%s version=%s", policy_id, updated.version)
        return updated

    def set_enabled(self, policy_id: int, enabled: bool) -> Policy:
        """Soft enable/disable; the safe way to retire a policy referenced by audit records."""
        return self.update(policy_id, {"enabled": enabled})

    def delete(self, policy_id: int) -> None:
        """Hard delete. Past decisions keep only their snapshot of this policy."""
        with self._lock:
            if policy_id not in self._policies:
                raise PolicyNotFoundError(f"Policy {policy_id} not found")
            del self._policies[policy_id]
        logger.warning("Policy hard-deleted: id=%s", policy_id)


# ---------------------------------------------------------------------------
# File-backed store
# ---------------------------------------------------------------------------


class FilePolicyStore:
    """
    Serve policies from a YAML policy file.

    The file is re-parsed when its mtime changes; the parsed set is swapped
    in one assignment, so every read sees one whole version of the file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._mtime_ns: int | None = None
        self._policy_set: PolicySet | None = None

    def policy_set(self) -> PolicySet:
        """
        Return the current policy set, reloading if the file changed.

        Raises:
            StoreUnavailableError: if the file is missing, unreadable, or invalid.
        """
        from netguard.core.policy.parser import PolicyParseError, load_policy_set

        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except OSError as exc:
            raise StoreUnavailableError(f"Policy file unavailable: {self.path}: {exc}") from exc

        with self._lock:
            if self._policy_set is None or mtime_ns != self._mtime_ns:
                try:
                    self._policy_set = load_policy_set(self.path)
                except PolicyParseError as exc:
                    raise StoreUnavailableError(str(exc)) from exc
                self._mtime_ns = mtime_ns
                logger.info(
                    "Loaded %d policies from %s (hash=%s)",
                    len(self._policy_set.policies),
                    self.path,
                    self._policy_set.content_hash(),
                )
            return self._policy_set

    def get_enabled_policies(self, scope_hint: ScopeHint | None = None) -> list[Policy]:
        return sorted(self.policy_set().enabled(), key=rank_key)
