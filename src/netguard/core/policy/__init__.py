"""
NetGuard policy decision point.

Public API::

    from netguard.core.policy import AccessRequest, DecisionEngine, InMemoryPolicyStore

    store = InMemoryPolicyStore()
    store.create({"name": "vpn", "subject": "admin_group", "object": "internal_network",
                  "conditions": {"ip_range": "192.168.1.0/24"}, "action": "allow",
                  "priority": 10})
    decision = DecisionEngine(store).evaluate(request)
"""

from netguard.core.policy.conditions import (
    ConditionMatcher,
    ConditionOutcome,
    ConditionRegistry,
    ConditionResult,
    attribute_compiler,
    default_registry,
)
from netguard.core.policy.engine import DecisionEngine
from netguard.core.policy.model import (
    AccessRequest,
    Decision,
    DecisionReason,
    Policy,
    PolicyAction,
    PolicySet,
    RequestContext,
    SubjectAttributes,
)
from netguard.core.policy.parser import (
    PolicyParseError,
    lint_policy_set,
    load_policy_set,
    parse_policy_set,
)
from netguard.core.policy.predicate import PolicyPredicate
from netguard.core.policy.store import (
    FilePolicyStore,
    InMemoryPolicyStore,
    PolicyStore,
    ScopeHint,
)

__all__ = [
    "AccessRequest",
    "ConditionMatcher",
    "ConditionOutcome",
    "ConditionRegistry",
    "ConditionResult",
    "Decision",
    "DecisionEngine",
    "DecisionReason",
    "FilePolicyStore",
    "InMemoryPolicyStore",
    "Policy",
    "PolicyAction",
    "PolicyParseError",
    "PolicyPredicate",
    "PolicySet",
    "PolicyStore",
    "RequestContext",
    "ScopeHint",
    "SubjectAttributes",
    "attribute_compiler",
    "default_registry",
    "lint_policy_set",
    "load_policy_set",
    "parse_policy_set",
]
