"""
Decision engine: picks exactly one decision per request.

Ranking: priority descending, then policy id ascending. The id tie-break
makes equal-priority conflicts reproducible: the lower id always wins.
Priority alone settles allow-vs-deny; there is no implicit deny-overrides.

Usage::

    engine = DecisionEngine(store)
    decision = engine.evaluate(request)          # fetches from the store
    decision = engine.decide(request, policies)  # pure, no I/O

Failure semantics: if nothing matches, the configured default applies
(deny unless default-allow was explicitly enabled). If the store fails or
times out, the decision is deny with reason ``store_error``; store failures
never escape :meth:`DecisionEngine.evaluate`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from netguard.core.config import NetGuardConfig
from netguard.core.constants import DEFAULT_STORE_TIMEOUT_SECONDS, STORE_WORKER_THREADS
from netguard.core.exceptions import ConfigError, NetGuardError, StoreUnavailableError
from netguard.core.policy.conditions import ConditionMatcher
from netguard.core.policy.model import (
    AccessRequest,
    Decision,
    DecisionReason,
    Policy,
    PolicyAction,
    action_from_str,
)
from netguard.core.policy.predicate import PolicyMatchResult, PolicyPredicate
from netguard.core.policy.store import PolicyStore, ScopeHint, rank_key

logger = logging.getLogger(__name__)


class DecisionEngine:
    """
    Stateless policy decision point.

    Holds only configuration and a condition matcher; any number of threads
    may call :meth:`decide` and :meth:`evaluate` concurrently.
    """

    def __init__(
        self,
        store: PolicyStore | None = None,
        *,
        matcher: ConditionMatcher | None = None,
        default_action: PolicyAction | str = PolicyAction.DENY,
        allow_default_allow: bool = False,
        store_timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        try:
            action = PolicyAction(action_from_str(default_action))
        except ValueError as exc:
            raise ConfigError(f"Unknown default action: {default_action!r}") from exc
        if action not in (PolicyAction.DENY, PolicyAction.ALLOW):
            raise ConfigError("Default action must be 'deny' or 'allow'")
        if action is PolicyAction.ALLOW and not allow_default_allow:
            raise ConfigError(
                "Default-allow requires allow_default_allow=True; "
                "unmatched requests would otherwise be silently permitted"
            )
        if store_timeout <= 0:
            raise ConfigError("store_timeout must be positive")

        self.store = store
        self.predicate = PolicyPredicate(matcher)
        self.default_action = action
        self.store_timeout = store_timeout
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: NetGuardConfig, store: PolicyStore | None = None
    ) -> DecisionEngine:
        matcher = ConditionMatcher(timezone=config.engine.tz, named_sets=config.named_sets)
        return cls(
            store,
            matcher=matcher,
            default_action=config.engine.default_action,
            allow_default_allow=config.engine.allow_default_allow,
            store_timeout=config.engine.store_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Pure decision
    # ------------------------------------------------------------------

    def rank(
        self, request: AccessRequest, policies: Iterable[Policy]
    ) -> list[tuple[Policy, PolicyMatchResult]]:
        """Evaluate every enabled policy, in rank order, keeping each result."""
        ranked: list[tuple[Policy, PolicyMatchResult]] = []
        for policy in sorted(policies, key=rank_key):
            if not policy.enabled:
                logger.debug("Skipping disabled policy %s handed to the engine", policy.id)
                continue
            ranked.append((policy, self.predicate.evaluate(policy, request)))
        return ranked

    def decide(self, request: AccessRequest, enabled_policies: Iterable[Policy]) -> Decision:
        """Resolve one decision from an already-fetched policy set. No I/O."""
        ranked = self.rank(request, enabled_policies)

        warnings: list[str] = []
        for policy, result in ranked:
            for cond in result.unevaluable:
                note = f"policy {policy.id}: {cond.reason}"
                warnings.append(note)
                logger.warning("Unevaluable condition (%s) in %s", cond.outcome.value, note)

        matches = [(policy, result) for policy, result in ranked if result.matched]
        if not matches:
            logger.debug(
                "Policy no-match: object=%s principal=%s default=%s",
                request.object_id,
                request.subject.principal_id,
                self.default_action.value,
            )
            return self._default_decision(
                request,
                reason=DecisionReason.NO_MATCH,
                explanation=f"No policy matched; applying default: {self.default_action.value}",
                warnings=warnings,
            )

        winner, result = matches[0]
        explanation = (
            f"Policy {winner.id} {winner.name!r} matched at priority {winner.priority}: "
            + "; ".join(r[2:] for r in result.reasons if r.startswith("✓"))
        )
        if len(matches) > 1:
            explanation += f" (outranked {len(matches) - 1} other matching policy(ies))"

        logger.debug("Policy match: policy=%s action=%s", winner.id, winner.action.value)
        return Decision(
            action=winner.action,
            policy_id=winner.id,
            reason=DecisionReason.MATCHED,
            decided_at=request.context.timestamp,
            object_id=request.object_id,
            principal_id=request.subject.principal_id,
            policy_name=winner.name,
            policy_version=winner.version,
            policy_hash=winner.content_hash(),
            matched_policy_ids=tuple(p.id for p, _ in matches),
            warnings=tuple(warnings),
            explanation=explanation,
        )

    def _default_decision(
        self,
        request: AccessRequest,
        *,
        reason: DecisionReason,
        explanation: str,
        warnings: list[str] | None = None,
    ) -> Decision:
        action = PolicyAction.DENY if reason is DecisionReason.STORE_ERROR else self.default_action
        return Decision(
            action=action,
            policy_id=None,
            reason=reason,
            decided_at=request.context.timestamp,
            object_id=request.object_id,
            principal_id=request.subject.principal_id,
            warnings=tuple(warnings or ()),
            explanation=explanation,
        )

    # ------------------------------------------------------------------
    # Store-backed decision
    # ------------------------------------------------------------------

    def evaluate(self, request: AccessRequest, scope_hint: ScopeHint | None = None) -> Decision:
        """Fetch enabled policies from the store (with timeout) and decide."""
        if self.store is None:
            raise NetGuardError("DecisionEngine.evaluate() needs a policy store")

        hint = scope_hint or ScopeHint.for_request(request)
        future = self._pool().submit(self.store.get_enabled_policies, hint)
        try:
            policies = _checked_policies(future.result(timeout=self.store_timeout))
        except TimeoutError:
            future.cancel()
            logger.error("Policy store timed out after %.2fs; failing closed", self.store_timeout)
            return self._default_decision(
                request,
                reason=DecisionReason.STORE_ERROR,
                explanation=f"Policy store timed out after {self.store_timeout:g}s; denied",
            )
        except Exception as exc:  # any store failure must become a deny decision
            logger.error("Policy store failed: %s; failing closed", exc)
            return self._default_decision(
                request,
                reason=DecisionReason.STORE_ERROR,
                explanation=f"Policy store unavailable ({exc}); denied",
            )
        return self.decide(request, policies)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=STORE_WORKER_THREADS, thread_name_prefix="netguard-store"
                )
            return self._executor

    def close(self) -> None:
        """Release the store worker threads."""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def __enter__(self) -> DecisionEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _checked_policies(fetched: object) -> list[Policy]:
    """Materialise a store result, rejecting anything that is not a list of Policy."""
    if fetched is None or isinstance(fetched, (str, bytes)) or not isinstance(fetched, Iterable):
        raise StoreUnavailableError(
            f"store returned {type(fetched).__name__}, expected a list of policies"
        )
    policies = list(fetched)
    for item in policies:
        if not isinstance(item, Policy):
            raise StoreUnavailableError(
                f"store returned a {type(item).__name__} where a Policy was expected"
            )
    return policies
