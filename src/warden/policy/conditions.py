"""
Condition evaluator.

Evaluates one PolicyCondition against a PolicyContext. Every function in
this module is pure: identical inputs always produce identical outputs,
and nothing reads the clock, the environment, or global state.

Semantics of the generic field condition:
    - eq/ne use strict equality (no cross-type coercion; int and float
      compare numerically, bool is never numeric)
    - gt/gte/lt/lte require both operands to be numeric, else False
    - in/nin test membership of the resolved value in a list value
    - contains requires a string field and a string substring
    - matches tests a regular expression with re.search
    - exists is True when the path resolves to a non-null value
    - an unresolvable path is MISSING, which makes every operator except
      ne/nin/exists evaluate to False

Typed conditions read fixed locations in the context (see each
_evaluate_* helper) and are dispatched by structural pattern matching.
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic.alias_generators import to_camel

from warden.errors import ConditionParseError
from warden.policy.parser import parse_expression
from warden.schema import (
    AgentCondition,
    AuthorCondition,
    BranchCondition,
    ComplexityCondition,
    ConditionGroup,
    ConditionOperator,
    CustomCondition,
    FieldCondition,
    FilePatternCondition,
    LabelCondition,
    PolicyContext,
    RepositoryCondition,
    TimeWindowCondition,
)


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_COLLECTION_TYPES = (list, tuple, set, frozenset)


# =============================================================================
# Path Resolution
# =============================================================================


def resolve_path(data: Mapping[str, Any], path: str) -> Any:
    """
    Resolve a dotted path such as "resource.attributes.complexity".

    Mapping keys are tried verbatim first, then in camelCase, so
    "environment.ip_address" and "environment.ipAddress" both resolve.
    Integer segments index into lists.

    Returns:
        The resolved value, or MISSING
    """
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
                continue
            camel = to_camel(part)
            if camel in current:
                current = current[camel]
                continue
            return MISSING
        if isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index < len(current):
                current = current[index]
                continue
        return MISSING
    return current


def _lookup(context: PolicyContext | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(context, PolicyContext):
        return context.as_lookup()
    return context


# =============================================================================
# Operator Semantics
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equal(left: Any, right: Any) -> bool:
    """Equality without coercion; int and float are one numeric type."""
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def compare(operator: str, actual: Any, expected: Any) -> bool:
    """Numeric comparison; False unless both operands are numbers."""
    if not (_is_number(actual) and _is_number(expected)):
        return False
    if operator == "gt":
        return actual > expected
    if operator == "gte":
        return actual >= expected
    if operator == "lt":
        return actual < expected
    if operator == "lte":
        return actual <= expected
    if operator == "eq":
        return actual == expected
    return False


@lru_cache(maxsize=512)
def _compile_regex(pattern: str) -> re.Pattern[str] | None:
    # Invalid patterns never match; the validator reports them.
    try:
        return re.compile(pattern)
    except re.error:
        return None


def apply_operator(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    """Apply a field-condition operator to a resolved value."""
    match operator:
        case ConditionOperator.EQ:
            return actual is not MISSING and strict_equal(actual, expected)
        case ConditionOperator.NE:
            return actual is MISSING or not strict_equal(actual, expected)
        case ConditionOperator.GT | ConditionOperator.GTE | ConditionOperator.LT | ConditionOperator.LTE:
            return compare(operator.value, actual, expected)
        case ConditionOperator.IN:
            if actual is MISSING or not isinstance(expected, _COLLECTION_TYPES):
                return False
            return any(strict_equal(actual, item) for item in expected)
        case ConditionOperator.NIN:
            if not isinstance(expected, _COLLECTION_TYPES):
                return False
            return actual is MISSING or not any(strict_equal(actual, item) for item in expected)
        case ConditionOperator.CONTAINS:
            return isinstance(actual, str) and isinstance(expected, str) and expected in actual
        case ConditionOperator.MATCHES:
            if not (isinstance(actual, str) and isinstance(expected, str)):
                return False
            regex = _compile_regex(expected)
            return regex is not None and regex.search(actual) is not None
        case ConditionOperator.EXISTS:
            return actual is not MISSING and actual is not None
    return False


# =============================================================================
# Glob Matching
# =============================================================================


@lru_cache(maxsize=1024)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a path glob.

    "**" matches across "/" separators, "*" matches within one segment,
    "?" matches one non-separator character. A leading "**/" also matches
    files at the root.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def glob_match(value: str, patterns: list[str]) -> bool:
    """True if value matches any of the globs."""
    return any(glob_to_regex(p).match(value) is not None for p in patterns if p)


# =============================================================================
# Typed Conditions
# =============================================================================


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, _COLLECTION_TYPES):
        return [item for item in value if isinstance(item, str)]
    return []


def _evaluate_complexity(condition: ComplexityCondition, data: Mapping[str, Any]) -> bool:
    actual = resolve_path(data, "resource.attributes.complexity")
    return compare(condition.operator, actual, condition.threshold)


def _evaluate_file_pattern(condition: FilePatternCondition, data: Mapping[str, Any]) -> bool:
    files = _string_list(resolve_path(data, "resource.attributes.files"))
    matched = any(glob_match(f, condition.patterns) for f in files)
    return not matched if condition.match_type == "exclude" else matched


def _evaluate_author(condition: AuthorCondition, data: Mapping[str, Any]) -> bool:
    if not (condition.authors or condition.roles or condition.teams):
        return True
    actor_id = resolve_path(data, "actor.id")
    if isinstance(actor_id, str) and actor_id in condition.authors:
        return True
    roles = set(_string_list(resolve_path(data, "actor.roles")))
    if roles.intersection(condition.roles):
        return True
    teams = set(_string_list(resolve_path(data, "actor.attributes.teams")))
    return bool(teams.intersection(condition.teams))


@lru_cache(maxsize=64)
def _zone(name: str) -> ZoneInfo | None:
    # Unknown zones never match; the validator reports them.
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _evaluate_time_window(condition: TimeWindowCondition, data: Mapping[str, Any]) -> bool:
    timestamp = resolve_path(data, "environment.timestamp")
    if isinstance(timestamp, str):
        try:
            timestamp = datetime.fromisoformat(timestamp)
        except ValueError:
            return False
    if not isinstance(timestamp, datetime):
        return False
    zone = _zone(condition.timezone)
    if zone is None:
        return False
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)

    local = timestamp.astimezone(zone)
    day = (local.weekday() + 1) % 7  # 0 = Sunday
    inside = any(
        day in window.days and window.start_hour <= local.hour < window.end_hour
        for window in condition.windows
    )
    return not inside if condition.match_type == "outside" else inside


def _name_matches(name: Any, names: list[str], patterns: list[str]) -> bool:
    if not (names or patterns):
        return True
    if not isinstance(name, str):
        return False
    return name in names or glob_match(name, patterns)


def _evaluate_repository(condition: RepositoryCondition, data: Mapping[str, Any]) -> bool:
    repo = resolve_path(data, "resource.attributes.repository")
    if not _name_matches(repo, condition.repos, condition.patterns):
        return False
    if condition.visibility is not None:
        return resolve_path(data, "resource.attributes.visibility") == condition.visibility
    return True


def _evaluate_branch(condition: BranchCondition, data: Mapping[str, Any]) -> bool:
    branch = resolve_path(data, "resource.attributes.branch")
    if not _name_matches(branch, condition.branches, condition.patterns):
        return False
    if condition.protected is not None:
        return resolve_path(data, "resource.attributes.protected") is condition.protected
    return True


def _evaluate_label(condition: LabelCondition, data: Mapping[str, Any]) -> bool:
    present = set(_string_list(resolve_path(data, "resource.attributes.labels")))
    wanted = set(condition.labels)
    if condition.match_type == "all":
        return wanted.issubset(present)
    if condition.match_type == "none":
        return not wanted.intersection(present)
    return bool(wanted.intersection(present))


def _evaluate_agent(condition: AgentCondition, data: Mapping[str, Any]) -> bool:
    agent_type = resolve_path(data, "actor.attributes.agentType")
    if agent_type is MISSING and resolve_path(data, "actor.type") == "agent":
        agent_type = resolve_path(data, "actor.id")
    if not isinstance(agent_type, str) or agent_type not in condition.agents:
        return False
    if condition.confidence is None:
        return True
    confidence = resolve_path(data, "actor.attributes.confidence")
    return compare(condition.confidence.operator, confidence, condition.confidence.threshold)


@lru_cache(maxsize=256)
def _parse_custom(expression: str) -> tuple[FieldCondition, ...] | None:
    # Unparseable expressions never match; the validator reports them.
    try:
        return tuple(parse_expression(expression))
    except ConditionParseError:
        return None


def _evaluate_custom(condition: CustomCondition, data: Mapping[str, Any]) -> bool:
    parsed = _parse_custom(condition.expression)
    if parsed is None:
        return False
    return all(
        apply_operator(c.operator, resolve_path(data, c.field), c.value) for c in parsed
    )


# =============================================================================
# Public API
# =============================================================================


def evaluate_condition(condition: Any, context: PolicyContext | Mapping[str, Any]) -> bool:
    """
    Evaluate one condition against a context.

    Args:
        condition: Any PolicyCondition variant
        context: A PolicyContext, or its as_lookup() mapping (evaluators
                 pass the mapping to avoid re-serializing per condition)

    Returns:
        Whether the condition holds

    Raises:
        TypeError: If given something that is not a condition
    """
    data = _lookup(context)

    match condition:
        case FieldCondition(field=path, operator=operator, value=expected):
            return apply_operator(operator, resolve_path(data, path), expected)
        case ComplexityCondition():
            return _evaluate_complexity(condition, data)
        case FilePatternCondition():
            return _evaluate_file_pattern(condition, data)
        case AuthorCondition():
            return _evaluate_author(condition, data)
        case TimeWindowCondition():
            return _evaluate_time_window(condition, data)
        case RepositoryCondition():
            return _evaluate_repository(condition, data)
        case BranchCondition():
            return _evaluate_branch(condition, data)
        case LabelCondition():
            return _evaluate_label(condition, data)
        case AgentCondition():
            return _evaluate_agent(condition, data)
        case CustomCondition():
            return _evaluate_custom(condition, data)
        case _:
            msg = f"Unsupported condition type: {type(condition).__name__}"
            raise TypeError(msg)


def evaluate_condition_group(group: ConditionGroup, context: PolicyContext | Mapping[str, Any]) -> bool:
    """Evaluate an explicit and/or/not combinator."""
    data = _lookup(context)
    results = (evaluate_condition(c, data) for c in group.conditions)
    if group.operator == "or":
        return any(results)
    if group.operator == "not":
        return not all(results)
    return all(results)


def describe_condition(condition: Any) -> str:
    """Short human-readable rendering used in reason traces."""
    match condition:
        case FieldCondition(field=path, operator=operator, value=expected):
            if operator == ConditionOperator.EXISTS:
                return f"{path} exists"
            return f"{path} {operator.value} {expected!r}"
        case CustomCondition(expression=expression):
            return expression
        case _:
            details = condition.model_dump(exclude={"type"}, exclude_defaults=True)
            body = ", ".join(f"{k}={v!r}" for k, v in details.items())
            return f"{condition.type}({body})"
