"""
NetGuard test suite.

Tests are organized by layer:
    tests/policy/       Policy model, condition matcher, predicate, engine, parser, explain
    tests/unit/         Config, logging, decision trace, policy stores
    tests/integration/  CLI end to end via click's CliRunner

Run all tests:
    pytest

Run the policy layer only:
    pytest tests/policy/
"""
