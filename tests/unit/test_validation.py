"""
Unit tests for policy document validation.

Tests cover:
- Version checks and automatic migration
- Structural errors mapped to codes, paths and suggestions
- Semantic checks (duplicates, thresholds, approvals, conflicts, ...)
- Warnings and info messages
- Custom validation rules
- Text formatting of results
"""

from typing import Any

import pytest

from warden.config import ValidatorOptions
from warden.errors import PolicyValidationError
from warden.policy.validation import (
    IssueCategory,
    IssueCode,
    PolicyValidator,
    Severity,
    ValidationIssue,
    format_location,
    format_validation_result,
    validate_policy,
)
from warden.schema import PolicyDocument


def base_document(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "version": "2.0",
        "scope": "repo",
        "scopeTarget": "acme/api",
        "name": "Test Policy",
        "rules": [
            {
                "id": "allow-read",
                "name": "Allow reads",
                "priority": 10,
                "conditions": [{"field": "action", "operator": "eq", "value": "read"}],
                "action": {"effect": "allow"},
            }
        ],
    }
    data.update(overrides)
    return data


def with_rule(**rule_overrides: Any) -> dict[str, Any]:
    document = base_document()
    document["rules"][0].update(rule_overrides)
    return document


def codes(issues: list[ValidationIssue]) -> list[IssueCode]:
    return [issue.code for issue in issues]


class TestValidDocuments:
    """Documents that should pass."""

    def test_valid_document(self) -> None:
        result = validate_policy(base_document())
        assert result.valid
        assert result.errors == []
        assert isinstance(result.policy, PolicyDocument)
        assert result.policy.name == "Test Policy"

    def test_fixture_policies_are_valid(self, global_policy, org_policy, repo_policy) -> None:
        for document in (global_policy, org_policy, repo_policy):
            assert validate_policy(document).valid

    def test_model_input_is_accepted(self) -> None:
        policy = PolicyDocument.model_validate(base_document())
        assert validate_policy(policy).valid

    def test_float_version_is_normalized(self) -> None:
        """An unquoted YAML 2.0 arrives as a float."""
        result = validate_policy(base_document(version=2.0))
        assert result.valid
        assert result.policy is not None
        assert result.policy.version == "2.0"

    def test_require_valid_returns_policy(self) -> None:
        policy = validate_policy(base_document()).require_valid()
        assert policy.rules[0].id == "allow-read"


class TestVersions:
    """Version checks and migration."""

    def test_unsupported_version(self) -> None:
        result = validate_policy(base_document(version="3.0"))
        assert not result.valid
        assert codes(result.errors) == [IssueCode.UNSUPPORTED_VERSION]
        assert result.errors[0].path == "version"
        assert result.errors[0].category == IssueCategory.VERSION

    def test_old_version_is_migrated(self) -> None:
        document = base_document(version="1.0")
        result = validate_policy(document)
        assert result.valid
        assert result.migrated
        assert result.original_version == "1.0"
        assert result.applied_migrations == ["1.0->1.1", "1.1->2.0"]
        assert IssueCode.MIGRATION_APPLIED in codes(result.info)
        assert result.policy is not None
        assert result.policy.version == "2.0"

    def test_float_old_version(self) -> None:
        result = validate_policy(base_document(version=1.1))
        assert result.valid
        assert result.applied_migrations == ["1.1->2.0"]

    def test_migration_disabled(self) -> None:
        options = ValidatorOptions(auto_migrate=False)
        result = validate_policy(base_document(version="1.0"), options)
        assert not result.valid
        assert codes(result.errors) == [IssueCode.UNSUPPORTED_VERSION]
        assert "migrate" in (result.errors[0].suggestion or "")

    def test_migration_failure(self) -> None:
        result = validate_policy(base_document(version="1.0", metadata="oops"))
        assert not result.valid
        assert codes(result.errors) == [IssueCode.MIGRATION_FAILED]

    def test_validation_does_not_mutate_input(self) -> None:
        document = base_document(version="1.0")
        validate_policy(document)
        assert "inheritance" not in document
        assert document["version"] == "1.0"


class TestStructuralErrors:
    """Malformed documents yield coded issues with paths."""

    def test_not_a_mapping(self) -> None:
        result = validate_policy(["not", "a", "mapping"])  # type: ignore[arg-type]
        assert codes(result.errors) == [IssueCode.INVALID_SCHEMA]

    def test_missing_name(self) -> None:
        document = base_document()
        del document["name"]
        result = validate_policy(document)
        assert not result.valid
        issue = result.errors[0]
        assert issue.code == IssueCode.MISSING_REQUIRED_FIELD
        assert issue.path == "name"
        assert issue.suggestion == "Add the required field 'name'"

    def test_invalid_effect(self) -> None:
        result = validate_policy(with_rule(action={"effect": "maybe"}))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_FIELD_VALUE
        assert issue.path == "rules[0].action.effect"
        assert "require_approval" in (issue.suggestion or "")

    def test_invalid_type_drops_union_tag_from_path(self) -> None:
        """The condition kind never appears in the reported path."""
        rule = {"conditions": [{"type": "complexity", "operator": "gte", "threshold": "high"}]}
        result = validate_policy(with_rule(**rule))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_FIELD_TYPE
        assert issue.path == "rules[0].conditions[0].threshold"

    def test_unknown_condition_type(self) -> None:
        result = validate_policy(with_rule(conditions=[{"type": "weather", "sunny": True}]))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_SCHEMA
        assert issue.path == "rules[0].conditions[0]"
        assert "complexity" in (issue.suggestion or "")

    def test_unknown_key(self) -> None:
        result = validate_policy(base_document(scpoe="org"))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_SCHEMA
        assert "camelCase" in (issue.suggestion or "")

    def test_invalid_rule_id(self) -> None:
        result = validate_policy(with_rule(id="has spaces"))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_FIELD_VALUE
        assert issue.path == "rules[0].id"

    def test_all_errors_reported(self) -> None:
        """Every structural problem is reported in one pass."""
        document = base_document()
        del document["name"]
        document["scope"] = "planet"
        result = validate_policy(document)
        assert len(result.errors) == 2
        assert {issue.path for issue in result.errors} == {"name", "scope"}

    def test_require_valid_raises(self) -> None:
        result = validate_policy(base_document(version="9.9"))
        with pytest.raises(PolicyValidationError) as exc_info:
            result.require_valid()
        assert exc_info.value.issues[0]["code"] == "UNSUPPORTED_VERSION"


class TestFormatLocation:
    """Tests for format_location()."""

    def test_indices_and_tags(self) -> None:
        loc = ("rules", 0, "conditions", 1, "complexity", "threshold")
        assert format_location(loc) == "rules[0].conditions[1].threshold"

    def test_plain(self) -> None:
        assert format_location(("defaultAction", "effect")) == "defaultAction.effect"


class TestSemanticChecks:
    """Checks that run on structurally sound documents."""

    def test_duplicate_rule_id(self) -> None:
        document = base_document()
        document["rules"].append(dict(document["rules"][0]))
        result = validate_policy(document)
        assert codes(result.errors) == [IssueCode.DUPLICATE_RULE_ID]
        assert result.errors[0].path == "rules[1].id"

    def test_duplicate_nested_rule_id(self) -> None:
        nested = {"rules": [{"id": "allow-read", "name": "Inner"}]}
        result = validate_policy(with_rule(nested=nested))
        assert codes(result.errors) == [IssueCode.DUPLICATE_RULE_ID]
        assert result.errors[0].path == "rules[0].nested.rules[0].id"

    def test_threshold_out_of_range(self) -> None:
        rule = {"conditions": [{"type": "complexity", "operator": "gte", "threshold": 15}]}
        result = validate_policy(with_rule(**rule))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_THRESHOLD
        assert issue.path == "rules[0].conditions[0].threshold"
        assert issue.suggestion is not None

    def test_agent_confidence_out_of_range(self) -> None:
        condition = {"type": "agent", "agents": ["copilot"], "confidence": {"operator": "gte", "threshold": 2}}
        result = validate_policy(with_rule(conditions=[condition]))
        assert codes(result.errors) == [IssueCode.INVALID_THRESHOLD]

    def test_missing_approval_config(self) -> None:
        result = validate_policy(with_rule(action={"effect": "require_approval"}))
        assert codes(result.errors) == [IssueCode.MISSING_APPROVAL_CONFIG]
        assert result.errors[0].path == "rules[0].action.approval"

    def test_invalid_timeout(self) -> None:
        action = {"effect": "require_approval", "approval": {"timeoutHours": 200}}
        result = validate_policy(with_rule(action=action))
        assert codes(result.errors) == [IssueCode.INVALID_TIMEOUT]

    def test_missing_action(self) -> None:
        document = base_document()
        del document["rules"][0]["action"]
        result = validate_policy(document)
        assert codes(result.errors) == [IssueCode.MISSING_REQUIRED_FIELD]
        assert result.errors[0].path == "rules[0].action"

    def test_global_with_parent(self) -> None:
        result = validate_policy(base_document(scope="global", parentPolicyId="other"))
        assert codes(result.errors) == [IssueCode.INVALID_PARENT_SCOPE]
        assert result.errors[0].category == IssueCategory.INHERITANCE

    def test_empty_file_patterns(self) -> None:
        result = validate_policy(with_rule(conditions=[{"type": "file_pattern", "patterns": []}]))
        assert codes(result.errors) == [IssueCode.EMPTY_PATTERN_LIST]

    def test_invalid_glob(self) -> None:
        result = validate_policy(with_rule(conditions=[{"type": "file_pattern", "patterns": ["src/***"]}]))
        assert codes(result.errors) == [IssueCode.INVALID_PATTERN]
        assert result.errors[0].path == "rules[0].conditions[0].patterns[0]"

    def test_invalid_regex(self) -> None:
        condition = {"field": "resource.id", "operator": "matches", "value": "("}
        result = validate_policy(with_rule(conditions=[condition]))
        assert codes(result.errors) == [IssueCode.INVALID_PATTERN]

    def test_in_needs_list(self) -> None:
        condition = {"field": "actor.id", "operator": "in", "value": "alice"}
        result = validate_policy(with_rule(conditions=[condition]))
        assert codes(result.errors) == [IssueCode.INVALID_FIELD_VALUE]

    def test_time_window_checks(self) -> None:
        condition = {
            "type": "time_window",
            "timezone": "Mars/Olympus",
            "windows": [{"startHour": 17, "endHour": 9}],
        }
        result = validate_policy(with_rule(conditions=[condition]))
        assert codes(result.errors) == [IssueCode.INVALID_FIELD_VALUE, IssueCode.INVALID_FIELD_VALUE]
        assert result.errors[0].path == "rules[0].conditions[0].timezone"

    def test_unparseable_custom_expression(self) -> None:
        condition = {"type": "custom", "expression": 'actor.type => "user"'}
        result = validate_policy(with_rule(conditions=[condition]))
        issue = result.errors[0]
        assert issue.code == IssueCode.INVALID_FIELD_VALUE
        assert issue.path == "rules[0].conditions[0].expression"
        assert issue.context["position"] == 11

    def test_conflicting_conditions(self) -> None:
        conditions = [
            {"field": "action", "operator": "eq", "value": "read"},
            {"field": "action", "operator": "eq", "value": "write"},
        ]
        result = validate_policy(with_rule(conditions=conditions))
        assert codes(result.errors) == [IssueCode.CONFLICTING_CONDITIONS]
        assert result.errors[0].path == "rules[0].conditions[1]"

    def test_eq_and_ne_conflict(self) -> None:
        conditions = [
            {"field": "action", "operator": "eq", "value": "read"},
            {"field": "action", "operator": "ne", "value": "read"},
        ]
        result = validate_policy(with_rule(conditions=conditions))
        assert codes(result.errors) == [IssueCode.CONFLICTING_CONDITIONS]


class TestWarningsAndInfo:
    """Non-fatal issues."""

    def test_disabled_rule_warning(self) -> None:
        result = validate_policy(with_rule(enabled=False))
        assert result.valid
        assert codes(result.warnings) == [IssueCode.UNUSED_RULE]
        assert result.warnings[0].severity == Severity.WARNING

    def test_empty_conditions_warning(self) -> None:
        result = validate_policy(with_rule(conditions=[]))
        assert result.valid
        assert codes(result.warnings) == [IssueCode.EMPTY_CONDITIONS]

    def test_explicit_condition_logic_silences_warning(self) -> None:
        result = validate_policy(with_rule(conditions=[], conditionLogic={"operator": "and"}))
        assert result.warnings == []

    def test_too_many_rules(self) -> None:
        document = base_document()
        template = document["rules"][0]
        document["rules"] = [{**template, "id": f"rule-{i}"} for i in range(4)]
        result = validate_policy(document, ValidatorOptions(max_rules_warning=3))
        assert IssueCode.HIGH_COMPLEXITY in codes(result.warnings)

    def test_warnings_can_be_disabled(self) -> None:
        result = validate_policy(with_rule(enabled=False), ValidatorOptions(include_warnings=False))
        assert result.warnings == []

    def test_inheritance_info(self) -> None:
        result = validate_policy(base_document(parentPolicyId="org:acme:Acme Org Policy"))
        assert codes(result.info) == [IssueCode.INHERITANCE_ENABLED]

    def test_info_can_be_disabled(self) -> None:
        options = ValidatorOptions(include_info=False)
        result = validate_policy(base_document(version="1.0"), options)
        assert result.valid
        assert result.info == []


class TestCustomRules:
    """Caller-supplied checks."""

    def test_custom_error(self) -> None:
        def require_description(policy: PolicyDocument) -> list[ValidationIssue]:
            if policy.description:
                return []
            return [
                ValidationIssue(
                    code=IssueCode.MISSING_REQUIRED_FIELD,
                    message="Policies must have a description",
                    path="description",
                )
            ]

        validator = PolicyValidator(ValidatorOptions(custom_rules=(require_description,)))
        result = validator.validate(base_document())
        assert not result.valid
        assert result.errors[0].message == "Policies must have a description"
        assert validator.validate(base_document(description="Reads only")).valid

    def test_custom_warning_does_not_invalidate(self) -> None:
        def always_warn(policy: PolicyDocument) -> list[ValidationIssue]:
            return [
                ValidationIssue(
                    code=IssueCode.HIGH_COMPLEXITY,
                    message="Consider splitting",
                    severity=Severity.WARNING,
                )
            ]

        result = PolicyValidator(ValidatorOptions(custom_rules=(always_warn,))).validate(base_document())
        assert result.valid
        assert [w.message for w in result.warnings] == ["Consider splitting"]


class TestFormatValidationResult:
    """Tests for the plain-text renderer."""

    def test_valid(self) -> None:
        assert format_validation_result(validate_policy(base_document())) == "Policy is valid"

    def test_invalid(self) -> None:
        result = validate_policy(with_rule(action={"effect": "require_approval"}))
        text = format_validation_result(result)
        assert text.startswith("Policy is invalid (1 error(s))")
        assert "[MISSING_APPROVAL_CONFIG] rules[0].action.approval:" in text
        assert "Suggestion:" in text

    def test_migration_line(self) -> None:
        text = format_validation_result(validate_policy(base_document(version="1.0")))
        assert "Migrated from 1.0: 1.0->1.1, 1.1->2.0" in text
        assert "Info:" in text
