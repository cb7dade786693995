"""
Unit tests for condition evaluation.

Tests cover:
- Dotted path resolution
- Field operators and strict equality
- Typed conditions (complexity, files, author, time window, repository,
  branch, label, agent, custom)
- Condition groups
"""

from datetime import UTC, datetime

import pytest

from warden.policy.conditions import (
    MISSING,
    apply_operator,
    describe_condition,
    evaluate_condition,
    evaluate_condition_group,
    glob_match,
    resolve_path,
    strict_equal,
)
from warden.schema import ConditionGroup, ConditionOperator, FieldCondition, PolicyContext


def context(**overrides) -> PolicyContext:
    data = {
        "actor": {"type": "user", "id": "alice", "roles": ["developer"], "attributes": {"teams": ["platform"]}},
        "action": "merge",
        "resource": {
            "type": "pull_request",
            "id": "42",
            "attributes": {
                "complexity": 6,
                "files": ["src/app/main.py", "docs/index.md"],
                "repository": "acme/api",
                "visibility": "private",
                "branch": "release/1.2",
                "protected": True,
                "labels": ["bug", "urgent"],
            },
        },
        "environment": {"timestamp": datetime(2026, 3, 2, 14, 30, tzinfo=UTC)},
    }
    for key, value in overrides.items():
        data[key] = value
    return PolicyContext.model_validate(data)


def condition(data: dict):
    """Build a condition through the tagged union."""
    return ConditionGroup.model_validate({"conditions": [data]}).conditions[0]


class TestResolvePath:
    """Tests for resolve_path()."""

    def test_nested_path(self) -> None:
        data = context().as_lookup()
        assert resolve_path(data, "resource.attributes.complexity") == 6

    def test_missing_path(self) -> None:
        data = context().as_lookup()
        assert resolve_path(data, "resource.attributes.nope") is MISSING
        assert resolve_path(data, "action.deeper") is MISSING

    def test_snake_case_falls_back_to_camel(self) -> None:
        """environment.ip_address finds the camelCase key."""
        data = {"environment": {"ipAddress": "10.0.0.1"}}
        assert resolve_path(data, "environment.ip_address") == "10.0.0.1"

    def test_list_index(self) -> None:
        data = context().as_lookup()
        assert resolve_path(data, "resource.attributes.files.1") == "docs/index.md"
        assert resolve_path(data, "resource.attributes.files.9") is MISSING


class TestOperators:
    """Tests for field operators."""

    def test_strict_equality_no_coercion(self) -> None:
        """'1' != 1 and True != 1, but 1 == 1.0."""
        assert not strict_equal("1", 1)
        assert not strict_equal(True, 1)
        assert strict_equal(1, 1.0)

    def test_eq_and_ne_on_missing(self) -> None:
        assert apply_operator(ConditionOperator.EQ, MISSING, None) is False
        assert apply_operator(ConditionOperator.NE, MISSING, "x") is True

    def test_numeric_comparisons_require_numbers(self) -> None:
        assert apply_operator(ConditionOperator.GT, 5, 3)
        assert not apply_operator(ConditionOperator.GT, "5", 3)
        assert not apply_operator(ConditionOperator.LTE, MISSING, 3)

    def test_in_and_nin(self) -> None:
        assert apply_operator(ConditionOperator.IN, "a", ["a", "b"])
        assert not apply_operator(ConditionOperator.IN, "c", ["a", "b"])
        assert apply_operator(ConditionOperator.NIN, "c", ["a", "b"])
        assert apply_operator(ConditionOperator.NIN, MISSING, ["a"])

    def test_contains_strings_only(self) -> None:
        assert apply_operator(ConditionOperator.CONTAINS, "release/1.2", "release")
        assert not apply_operator(ConditionOperator.CONTAINS, ["release"], "release")

    def test_matches(self) -> None:
        assert apply_operator(ConditionOperator.MATCHES, "release/1.2", r"^release/\d")
        assert not apply_operator(ConditionOperator.MATCHES, "main", "(")

    def test_exists(self) -> None:
        assert apply_operator(ConditionOperator.EXISTS, "x", None)
        assert not apply_operator(ConditionOperator.EXISTS, None, None)
        assert not apply_operator(ConditionOperator.EXISTS, MISSING, None)

    def test_field_condition(self) -> None:
        cond = FieldCondition(field="actor.roles", operator=ConditionOperator.EXISTS)
        assert evaluate_condition(cond, context())


class TestGlobs:
    """Tests for glob matching."""

    @pytest.mark.parametrize(
        ("value", "pattern", "expected"),
        [
            ("src/app/main.py", "src/**/*.py", True),
            ("src/main.py", "src/*.py", True),
            ("src/app/main.py", "src/*.py", False),
            ("main.py", "**/*.py", True),
            ("a/b/c.txt", "**/*.py", False),
            ("file1.md", "file?.md", True),
        ],
    )
    def test_glob(self, value: str, pattern: str, expected: bool) -> None:
        assert glob_match(value, [pattern]) is expected


class TestTypedConditions:
    """Tests for the typed condition kinds."""

    def test_complexity(self) -> None:
        assert evaluate_condition(condition({"type": "complexity", "operator": "gte", "threshold": 6}), context())
        assert not evaluate_condition(condition({"type": "complexity", "operator": "gt", "threshold": 6}), context())

    def test_file_pattern_include_and_exclude(self) -> None:
        include = condition({"type": "file_pattern", "patterns": ["docs/**"]})
        exclude = condition({"type": "file_pattern", "patterns": ["docs/**"], "matchType": "exclude"})
        assert evaluate_condition(include, context())
        assert not evaluate_condition(exclude, context())

    def test_author_by_role_and_team(self) -> None:
        assert evaluate_condition(condition({"type": "author", "roles": ["developer"]}), context())
        assert evaluate_condition(condition({"type": "author", "teams": ["platform"]}), context())
        assert not evaluate_condition(condition({"type": "author", "authors": ["bob"]}), context())

    def test_author_without_criteria_matches_anyone(self) -> None:
        assert evaluate_condition(condition({"type": "author"}), context())

    def test_time_window_during(self) -> None:
        """Monday 14:30 UTC is inside Mon-Fri 9-17."""
        window = {"type": "time_window", "windows": [{"days": [1, 2, 3, 4, 5], "startHour": 9, "endHour": 17}]}
        assert evaluate_condition(condition(window), context())
        assert not evaluate_condition(condition({**window, "matchType": "outside"}), context())

    def test_time_window_timezone(self) -> None:
        """14:30 UTC is 23:30 in Tokyo, outside 9-17."""
        window = {
            "type": "time_window",
            "timezone": "Asia/Tokyo",
            "windows": [{"days": [1], "startHour": 9, "endHour": 17}],
        }
        assert not evaluate_condition(condition(window), context())

    def test_time_window_without_timestamp(self) -> None:
        window = {"type": "time_window", "windows": [{"startHour": 0, "endHour": 24}]}
        assert not evaluate_condition(condition(window), context(environment={}))

    def test_repository(self) -> None:
        assert evaluate_condition(condition({"type": "repository", "patterns": ["acme/*"]}), context())
        assert not evaluate_condition(
            condition({"type": "repository", "repos": ["acme/api"], "visibility": "public"}),
            context(),
        )

    def test_branch(self) -> None:
        assert evaluate_condition(
            condition({"type": "branch", "patterns": ["release/*"], "protected": True}),
            context(),
        )
        assert not evaluate_condition(condition({"type": "branch", "branches": ["main"]}), context())

    @pytest.mark.parametrize(
        ("match_type", "labels", "expected"),
        [
            ("any", ["bug", "feature"], True),
            ("all", ["bug", "feature"], False),
            ("all", ["bug", "urgent"], True),
            ("none", ["feature"], True),
            ("none", ["bug"], False),
        ],
    )
    def test_label(self, match_type: str, labels: list[str], expected: bool) -> None:
        cond = condition({"type": "label", "labels": labels, "matchType": match_type})
        assert evaluate_condition(cond, context()) is expected

    def test_agent_with_confidence(self) -> None:
        ctx = context(actor={"type": "agent", "id": "copilot", "attributes": {"confidence": 0.92}})
        cond = condition({
            "type": "agent",
            "agents": ["copilot"],
            "confidence": {"operator": "gte", "threshold": 0.9},
        })
        assert evaluate_condition(cond, ctx)
        low = context(actor={"type": "agent", "id": "copilot", "attributes": {"confidence": 0.5}})
        assert not evaluate_condition(cond, low)

    def test_agent_type_attribute_wins(self) -> None:
        ctx = context(actor={"type": "service", "id": "svc-1", "attributes": {"agentType": "claude"}})
        assert evaluate_condition(condition({"type": "agent", "agents": ["claude"]}), ctx)

    def test_custom_expression(self) -> None:
        cond = condition({
            "type": "custom",
            "expression": 'actor.type == "user" && resource.attributes.complexity < 7',
        })
        assert evaluate_condition(cond, context())

    def test_unparseable_custom_never_matches(self) -> None:
        assert not evaluate_condition(condition({"type": "custom", "expression": "a ~ 1"}), context())

    def test_evaluation_is_deterministic(self) -> None:
        """Same condition and context always give the same answer."""
        cond = condition({"type": "label", "labels": ["bug"]})
        ctx = context()
        assert {evaluate_condition(cond, ctx) for _ in range(20)} == {True}


class TestConditionGroups:
    """Tests for conditionLogic groups."""

    def test_or(self) -> None:
        group = ConditionGroup.model_validate({
            "operator": "or",
            "conditions": [
                {"field": "action", "operator": "eq", "value": "push"},
                {"field": "action", "operator": "eq", "value": "merge"},
            ],
        })
        assert evaluate_condition_group(group, context())

    def test_not(self) -> None:
        group = ConditionGroup.model_validate({
            "operator": "not",
            "conditions": [{"field": "action", "operator": "eq", "value": "merge"}],
        })
        assert not evaluate_condition_group(group, context())

    def test_empty_and_matches(self) -> None:
        assert evaluate_condition_group(ConditionGroup(), context())


class TestDescribeCondition:
    """Tests for describe_condition()."""

    def test_field(self) -> None:
        cond = FieldCondition(field="action", operator=ConditionOperator.EQ, value="merge")
        assert describe_condition(cond) == "action eq 'merge'"

    def test_typed(self) -> None:
        text = describe_condition(condition({"type": "complexity", "operator": "gte", "threshold": 7}))
        assert text.startswith("complexity(")
        assert "threshold=7" in text
