"""Unit tests for the policy YAML parser and condition lint."""

from __future__ import annotations

from pathlib import Path

import pytest

from netguard.core.policy.conditions import ConditionMatcher
from netguard.core.policy.model import PolicyAction
from netguard.core.policy.parser import (
    PolicyParseError,
    lint_policy_set,
    load_policy_set,
    parse_policy_set,
    validate_policy_file,
)

FIXTURES = Path(__file__).parent / "fixtures"

MINIMAL = """
policy_version: "1"
name: minimal
policies:
  - id: 1
    name: everyone in
    subject: all_users
    object: all_systems
    action: allow
"""


class TestLoadPolicySet:
    def test_corp_network_fixture(self) -> None:
        ps = load_policy_set(FIXTURES / "corp_network.yaml")
        assert ps.name == "corp-network"
        assert len(ps.policies) == 7
        assert [p.id for p in ps.enabled()] == [1, 2, 4, 5, 6]

    def test_action_alias_is_normalised(self) -> None:
        ps = load_policy_set(FIXTURES / "corp_network.yaml")
        elevation = next(p for p in ps.policies if p.id == 6)
        assert elevation.action is PolicyAction.REQUIRE_STEP_UP_AUTH

    def test_missing_conditions_default_to_empty(self) -> None:
        ps = load_policy_set(FIXTURES / "corp_network.yaml")
        guest = next(p for p in ps.policies if p.id == 7)
        assert guest.conditions == {}
        assert guest.enabled is False

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PolicyParseError, match="not found"):
            load_policy_set(tmp_path / "nope.yaml")

    def test_invalid_action(self) -> None:
        with pytest.raises(PolicyParseError, match="validation failed"):
            load_policy_set(FIXTURES / "invalid_action.yaml")

    def test_duplicate_ids(self) -> None:
        with pytest.raises(PolicyParseError, match="Duplicate policy id: 7"):
            load_policy_set(FIXTURES / "duplicate_ids.yaml")


class TestParsePolicySet:
    def test_minimal(self) -> None:
        ps = parse_policy_set(MINIMAL)
        assert ps.policies[0].priority == 0
        assert ps.policies[0].enabled is True
        assert ps.policies[0].version == 1

    def test_integer_version_is_accepted(self) -> None:
        assert parse_policy_set(MINIMAL.replace('"1"', "1")).policy_version == "1"

    def test_wrong_version(self) -> None:
        with pytest.raises(PolicyParseError, match="policy_version"):
            parse_policy_set(MINIMAL.replace('"1"', '"2"'))

    def test_yaml_syntax_error(self) -> None:
        with pytest.raises(PolicyParseError, match="YAML syntax error"):
            parse_policy_set("policies: [unclosed", source="broken.yaml")

    def test_top_level_must_be_mapping(self) -> None:
        with pytest.raises(PolicyParseError, match="must be a YAML mapping"):
            parse_policy_set("- just\n- a list\n")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(PolicyParseError, match="validation failed"):
            parse_policy_set(MINIMAL + "    owner: security-team\n")

    def test_blank_subject_rejected(self) -> None:
        with pytest.raises(PolicyParseError):
            parse_policy_set(MINIMAL.replace("subject: all_users", 'subject: "  "'))

    def test_duplicate_condition_keys_after_normalising(self) -> None:
        text = MINIMAL + "    conditions:\n      IP_RANGE: 10.0.0.0/8\n      ip_range: 10.0.0.0/8\n"
        with pytest.raises(PolicyParseError, match="Duplicate condition type"):
            parse_policy_set(text)

    def test_error_message_names_source(self) -> None:
        with pytest.raises(PolicyParseError) as exc_info:
            parse_policy_set(MINIMAL.replace("action: allow", "action: nuke"), source="team.yaml")
        assert "team.yaml" in str(exc_info.value)


class TestLint:
    def test_reports_unknown_and_malformed_conditions(self) -> None:
        ps = load_policy_set(FIXTURES / "corp_network.yaml")
        problems = lint_policy_set(ps)
        # policy 6 uses a condition type nothing registers
        assert len(problems) == 1
        assert problems[0].startswith("policy 6 (Admin elevation):")
        assert "approval_required" in problems[0]

    def test_clean_set(self) -> None:
        assert lint_policy_set(parse_policy_set(MINIMAL)) == []

    def test_malformed_value(self) -> None:
        text = MINIMAL + "    conditions:\n      time_range: sometime\n"
        problems = lint_policy_set(parse_policy_set(text), ConditionMatcher())
        assert len(problems) == 1
        assert "time_range" in problems[0]


class TestValidatePolicyFile:
    def test_valid(self) -> None:
        assert validate_policy_file(FIXTURES / "scenario_ab.yaml") == []

    def test_invalid_returns_lines(self) -> None:
        errors = validate_policy_file(FIXTURES / "invalid_action.yaml")
        assert errors
        assert errors[0].startswith("Policy validation failed")


class TestYamlScalars:
    def test_yes_no_on_off_stay_strings(self) -> None:
        text = MINIMAL.replace("name: everyone in", "name: off") + (
            "    conditions:\n      geo_location: [SE, NO]\n      connection_type: on\n"
        )
        policy = parse_policy_set(text).policies[0]
        assert policy.name == "off"
        assert policy.conditions == {"geo_location": ["SE", "NO"], "connection_type": "on"}

    def test_true_false_are_still_booleans(self) -> None:
        text = MINIMAL + "    enabled: false\n    conditions:\n      mfa_required: true\n"
        policy = parse_policy_set(text).policies[0]
        assert policy.enabled is False
        assert policy.conditions["mfa_required"] is True

    def test_norway_matches_after_load(self) -> None:
        from netguard.core.policy.engine import DecisionEngine
        from netguard.core.policy.model import AccessRequest, SubjectAttributes

        text = MINIMAL + "    conditions:\n      geo_location: [SE, NO]\n"
        request = AccessRequest(
            subject=SubjectAttributes(principal_id="ola", geo_location="NO"),
            object_id="internal_network",
        )
        decision = DecisionEngine().decide(request, parse_policy_set(text).enabled())
        assert decision.action is PolicyAction.ALLOW
        assert decision.policy_id == 1
        assert decision.warnings == ()

    def test_blank_description_and_priority(self) -> None:
        policy = parse_policy_set(MINIMAL + "    description:\n    priority:\n").policies[0]
        assert policy.description == ""
        assert policy.priority == 0


class TestUnreadableFile:
    def test_not_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "latin1.yaml"
        path.write_bytes(MINIMAL.replace("everyone in", "caf\xe9").encode("latin-1"))
        with pytest.raises(PolicyParseError, match="Cannot read policy file"):
            load_policy_set(path)

    def test_not_utf8_reported_by_validate(self, tmp_path: Path) -> None:
        path = tmp_path / "latin1.yaml"
        path.write_bytes(b"policy_version: '1'\nname: \xff\n")
        errors = validate_policy_file(path)
        assert errors[0].startswith("Cannot read policy file")
