"""
NetGuard: policy decision point for network access control.

NetGuard answers one question: given who is asking, what they want to reach,
and the circumstances of the request, which stored access policy applies and
what should happen? Policies are ``(subject, object, conditions, action,
priority, enabled)`` records; the engine picks exactly one decision per
request and fails closed on anything it cannot evaluate.

Package layout (src/netguard/):
  core/           config, constants, exceptions, logging, decision trace
  core/policy/    model, condition matcher, predicate, engine, store, parser
  cli/            Click CLI entry point
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
