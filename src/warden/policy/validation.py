"""
Schema validation for policy documents.

Validation never raises for a bad document. It returns a ValidationResult
listing every problem found, so batch tooling can report all issues in a
single pass. Each issue carries a stable code, a field path such as
"rules[0].conditions[1].threshold", a severity, and (where the category
supports one) a suggestion.

Pipeline:
    1. Version check    UNSUPPORTED_VERSION
    2. Migration        MIGRATION_FAILED (auto-upgrade older versions)
    3. Structural       INVALID_SCHEMA, MISSING_REQUIRED_FIELD,
                        INVALID_FIELD_VALUE, INVALID_FIELD_TYPE
    4. Semantic         DUPLICATE_RULE_ID, MISSING_APPROVAL_CONFIG,
                        INVALID_THRESHOLD, INVALID_PATTERN, ...
    5. Warnings         UNUSED_RULE, HIGH_COMPLEXITY, EMPTY_CONDITIONS
    6. Info             MIGRATION_APPLIED, INHERITANCE_ENABLED
    7. Custom rules     caller-supplied checks

Steps 1-3 stop the pipeline on failure; semantic checks only run on a
structurally sound document.
"""

import re
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from warden.config import ValidatorOptions
from warden.errors import ConditionParseError, MigrationError, PolicyValidationError
from warden.policy.conditions import strict_equal
from warden.policy.migration import migrate_document, normalize_version
from warden.policy.parser import parse_expression
from warden.schema import (
    CONDITION_TYPES,
    CURRENT_VERSION,
    SUPPORTED_VERSIONS,
    AgentCondition,
    BranchCondition,
    ComplexityCondition,
    ConditionOperator,
    CustomCondition,
    Effect,
    FieldCondition,
    FilePatternCondition,
    PolicyAction,
    PolicyDocument,
    PolicyRule,
    RepositoryCondition,
    Scope,
    TimeWindowCondition,
)


# =============================================================================
# Issue Model
# =============================================================================


class Severity(str, Enum):
    """How serious an issue is. Only errors make a document invalid."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCode(str, Enum):
    """Stable issue codes."""

    # Schema
    INVALID_SCHEMA = "INVALID_SCHEMA"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_FIELD_TYPE = "INVALID_FIELD_TYPE"
    INVALID_FIELD_VALUE = "INVALID_FIELD_VALUE"
    # Rule
    DUPLICATE_RULE_ID = "DUPLICATE_RULE_ID"
    INVALID_RULE_PRIORITY = "INVALID_RULE_PRIORITY"
    EMPTY_CONDITIONS = "EMPTY_CONDITIONS"
    CONFLICTING_CONDITIONS = "CONFLICTING_CONDITIONS"
    UNUSED_RULE = "UNUSED_RULE"
    HIGH_COMPLEXITY = "HIGH_COMPLEXITY"
    # Condition
    INVALID_THRESHOLD = "INVALID_THRESHOLD"
    INVALID_PATTERN = "INVALID_PATTERN"
    EMPTY_PATTERN_LIST = "EMPTY_PATTERN_LIST"
    MISSING_APPROVAL_CONFIG = "MISSING_APPROVAL_CONFIG"
    INVALID_TIMEOUT = "INVALID_TIMEOUT"
    # Inheritance
    CIRCULAR_INHERITANCE = "CIRCULAR_INHERITANCE"
    INVALID_PARENT_SCOPE = "INVALID_PARENT_SCOPE"
    MISSING_PARENT_POLICY = "MISSING_PARENT_POLICY"
    EMPTY_CHAIN = "EMPTY_CHAIN"
    # Version
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    MIGRATION_FAILED = "MIGRATION_FAILED"
    # Info
    MIGRATION_APPLIED = "MIGRATION_APPLIED"
    INHERITANCE_ENABLED = "INHERITANCE_ENABLED"


class IssueCategory(str, Enum):
    """Grouping that tells callers which kind of fix is needed."""

    SCHEMA = "schema"
    RULE = "rule"
    CONDITION = "condition"
    INHERITANCE = "inheritance"
    VERSION = "version"
    INFO = "info"


_CATEGORIES: dict[IssueCode, IssueCategory] = {
    IssueCode.INVALID_SCHEMA: IssueCategory.SCHEMA,
    IssueCode.MISSING_REQUIRED_FIELD: IssueCategory.SCHEMA,
    IssueCode.INVALID_FIELD_TYPE: IssueCategory.SCHEMA,
    IssueCode.INVALID_FIELD_VALUE: IssueCategory.SCHEMA,
    IssueCode.DUPLICATE_RULE_ID: IssueCategory.RULE,
    IssueCode.INVALID_RULE_PRIORITY: IssueCategory.RULE,
    IssueCode.EMPTY_CONDITIONS: IssueCategory.RULE,
    IssueCode.CONFLICTING_CONDITIONS: IssueCategory.RULE,
    IssueCode.UNUSED_RULE: IssueCategory.RULE,
    IssueCode.HIGH_COMPLEXITY: IssueCategory.RULE,
    IssueCode.INVALID_THRESHOLD: IssueCategory.CONDITION,
    IssueCode.INVALID_PATTERN: IssueCategory.CONDITION,
    IssueCode.EMPTY_PATTERN_LIST: IssueCategory.CONDITION,
    IssueCode.MISSING_APPROVAL_CONFIG: IssueCategory.CONDITION,
    IssueCode.INVALID_TIMEOUT: IssueCategory.CONDITION,
    IssueCode.CIRCULAR_INHERITANCE: IssueCategory.INHERITANCE,
    IssueCode.INVALID_PARENT_SCOPE: IssueCategory.INHERITANCE,
    IssueCode.MISSING_PARENT_POLICY: IssueCategory.INHERITANCE,
    IssueCode.EMPTY_CHAIN: IssueCategory.INHERITANCE,
    IssueCode.UNSUPPORTED_VERSION: IssueCategory.VERSION,
    IssueCode.MIGRATION_FAILED: IssueCategory.VERSION,
    IssueCode.MIGRATION_APPLIED: IssueCategory.INFO,
    IssueCode.INHERITANCE_ENABLED: IssueCategory.INFO,
}


class ValidationIssue(BaseModel):
    """
    One problem (or note) found in a policy document.

    Attributes:
        code: Stable issue code
        message: Human-readable description
        path: Field path, e.g. "rules[0].conditions[1].threshold"
        severity: error, warning, or info
        suggestion: How to fix it, where one applies
        context: Extra machine-readable detail
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: IssueCode
    message: str
    path: str = ""
    severity: Severity = Severity.ERROR
    suggestion: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def category(self) -> IssueCategory:
        """Which kind of fix this issue calls for."""
        return _CATEGORIES[self.code]

    def with_prefix(self, prefix: str) -> "ValidationIssue":
        """Return a copy whose path is rooted under prefix."""
        path = f"{prefix}.{self.path}" if self.path else prefix
        return self.model_copy(update={"path": path})


class ValidationResult(BaseModel):
    """
    Outcome of validating one document.

    Attributes:
        valid: True when there are no errors
        errors/warnings/info: Issues by severity
        policy: The validated (and migrated) document, when valid
        migrated: Whether a migration ran
        original_version: Version before migration
        applied_migrations: Steps applied, e.g. ["1.0->1.1", "1.1->2.0"]
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    info: list[ValidationIssue] = Field(default_factory=list)
    policy: PolicyDocument | None = None
    migrated: bool = False
    original_version: str | None = None
    applied_migrations: list[str] = Field(default_factory=list)

    @property
    def issues(self) -> list[ValidationIssue]:
        """All issues: errors, then warnings, then info."""
        return [*self.errors, *self.warnings, *self.info]

    def require_valid(self) -> PolicyDocument:
        """
        Return the policy or raise.

        Raises:
            PolicyValidationError: If the result is invalid
        """
        if not self.valid or self.policy is None:
            raise PolicyValidationError(
                issues=[issue.model_dump(mode="json") for issue in self.errors],
            )
        return self.policy


def _issue(
    code: IssueCode,
    message: str,
    path: str = "",
    severity: Severity = Severity.ERROR,
    suggestion: str | None = None,
    **context: Any,
) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        path=path,
        severity=severity,
        suggestion=suggestion,
        context=context,
    )


# =============================================================================
# Structural Error Mapping
# =============================================================================

_VALUE_ERROR_TYPES = frozenset({
    "literal_error",
    "enum",
    "value_error",
    "assertion_error",
    "string_pattern_mismatch",
    "string_too_short",
    "string_too_long",
    "too_short",
    "too_long",
    "greater_than",
    "greater_than_equal",
    "less_than",
    "less_than_equal",
})

_FIELD_SUGGESTIONS = {
    "name": "Provide a non-empty name (rules: at most 100 characters)",
    "id": "Rule IDs may only contain letters, digits, hyphens and underscores",
    "effect": "Use one of: allow, deny, require_approval, notify, log_only, warn",
    "scope": "Use one of: global, org, repo, branch",
    "inheritance": "Use one of: replace, extend, override",
    "version": f"Use one of: {', '.join(SUPPORTED_VERSIONS)}",
    "operator": "Use an operator supported by this condition type",
    "matchType": "Use a match type supported by this condition type",
    "minApprovers": "Require at least one approver",
    "channels": "Use one or more of: email, slack, webhook, github_comment",
}

_CONDITION_TYPE_SUGGESTION = (
    "Use one of the condition types: "
    + ", ".join(t for t in CONDITION_TYPES if t != "field")
    + " (omit type for a field/operator/value condition)"
)


def format_location(loc: tuple[Any, ...]) -> str:
    """
    Render a pydantic error location as a field path.

    Discriminated-union tags (which pydantic inserts after the list index)
    are dropped: ("rules", 0, "conditions", 1, "complexity", "threshold")
    becomes "rules[0].conditions[1].threshold".
    """
    parts: list[str] = []
    for i, item in enumerate(loc):
        if isinstance(item, int):
            if parts:
                parts[-1] = f"{parts[-1]}[{item}]"
            else:
                parts.append(f"[{item}]")
            continue
        if item in CONDITION_TYPES and i > 0 and isinstance(loc[i - 1], int):
            continue
        parts.append(str(item))
    return ".".join(parts)


def _field_name(loc: tuple[Any, ...]) -> str:
    for item in reversed(loc):
        if isinstance(item, str):
            return item
    return ""


def _structural_issue(error: Mapping[str, Any]) -> ValidationIssue:
    error_type = error.get("type", "")
    loc = tuple(error.get("loc", ()))
    path = format_location(loc)
    name = _field_name(loc)
    message = f"{path}: {error.get('msg', 'invalid value')}" if path else error.get("msg", "")

    if error_type == "missing":
        return _issue(
            IssueCode.MISSING_REQUIRED_FIELD,
            message,
            path,
            suggestion=f"Add the required field '{name}'",
        )
    if error_type in ("union_tag_invalid", "union_tag_not_found"):
        return _issue(IssueCode.INVALID_SCHEMA, message, path, suggestion=_CONDITION_TYPE_SUGGESTION)
    if error_type == "extra_forbidden":
        return _issue(
            IssueCode.INVALID_SCHEMA,
            message,
            path,
            suggestion=f"Remove '{name}' or check its spelling (fields are camelCase)",
        )
    if error_type in _VALUE_ERROR_TYPES:
        return _issue(
            IssueCode.INVALID_FIELD_VALUE,
            message,
            path,
            suggestion=_FIELD_SUGGESTIONS.get(name, f"Check the allowed values for '{name}'"),
        )
    if error_type.endswith("_type") or error_type.endswith("_parsing"):
        return _issue(
            IssueCode.INVALID_FIELD_TYPE,
            message,
            path,
            suggestion=_FIELD_SUGGESTIONS.get(name, f"Check the type of '{name}' against the document format"),
        )
    return _issue(
        IssueCode.INVALID_SCHEMA,
        message,
        path,
        suggestion="Check the document against the policy document format",
    )


# =============================================================================
# Validator
# =============================================================================


class PolicyValidator:
    """
    Structural + semantic validator with automatic migration.

    Usage:
        validator = PolicyValidator(ValidatorOptions(include_info=False))
        result = validator.validate(raw_document)
        if not result.valid:
            for issue in result.errors:
                print(issue.path, issue.message, issue.suggestion)
    """

    def __init__(self, options: ValidatorOptions | None = None) -> None:
        self.options = options or ValidatorOptions()

    def validate(self, document: Mapping[str, Any] | PolicyDocument) -> ValidationResult:
        """
        Validate (and if needed migrate) a policy document.

        Args:
            document: Raw mapping (as loaded from YAML/JSON) or a model

        Returns:
            ValidationResult; never raises for document problems
        """
        if isinstance(document, PolicyDocument):
            document = document.to_document()
        if not isinstance(document, Mapping):
            return self._fail([
                _issue(
                    IssueCode.INVALID_SCHEMA,
                    f"Policy document must be a mapping, got {type(document).__name__}",
                    suggestion="Provide the document as a YAML/JSON object",
                )
            ])

        # 1. Version
        version = normalize_version(document.get("version"))
        if version not in SUPPORTED_VERSIONS:
            return self._fail(
                [
                    _issue(
                        IssueCode.UNSUPPORTED_VERSION,
                        f"Unsupported policy version {version!r}",
                        "version",
                        suggestion=f"Re-author this policy at version {CURRENT_VERSION}",
                        version=version,
                    )
                ],
                original_version=version,
            )

        # 2. Migration
        raw: Mapping[str, Any] = document
        applied: list[str] = []
        if version != CURRENT_VERSION:
            if not self.options.auto_migrate:
                return self._fail(
                    [
                        _issue(
                            IssueCode.UNSUPPORTED_VERSION,
                            f"Version {version} requires migration to {CURRENT_VERSION}",
                            "version",
                            suggestion="Enable auto-migration or run 'warden migrate'",
                            version=version,
                        )
                    ],
                    original_version=version,
                )
            try:
                outcome = migrate_document(document)
            except MigrationError as e:
                return self._fail(
                    [
                        _issue(
                            IssueCode.MIGRATION_FAILED,
                            e.message,
                            "version",
                            suggestion=e.suggestion,
                            from_version=e.from_version,
                            to_version=e.to_version,
                        )
                    ],
                    original_version=version,
                )
            raw = outcome.document
            applied = outcome.applied

        # 3. Structural
        data = dict(raw)
        data["version"] = normalize_version(data.get("version"))
        try:
            policy = PolicyDocument.model_validate(data)
        except ValidationError as e:
            return self._fail(
                [_structural_issue(err) for err in e.errors()],
                original_version=version,
                applied=applied,
            )

        # 4-7. Semantic, warnings, info, custom
        errors = list(self._check_semantics(policy))
        warnings = list(self._check_warnings(policy)) if self.options.include_warnings else []
        info = list(self._collect_info(policy, version, applied)) if self.options.include_info else []

        for custom_rule in self.options.custom_rules:
            for issue in custom_rule(policy):
                if issue.severity == Severity.ERROR:
                    errors.append(issue)
                elif issue.severity == Severity.WARNING and self.options.include_warnings:
                    warnings.append(issue)
                elif issue.severity == Severity.INFO and self.options.include_info:
                    info.append(issue)

        valid = not errors
        return ValidationResult(
            valid=valid,
            errors=errors,
            warnings=warnings,
            info=info,
            policy=policy if valid else None,
            migrated=bool(applied),
            original_version=version,
            applied_migrations=applied,
        )

    def _fail(
        self,
        errors: list[ValidationIssue],
        original_version: str | None = None,
        applied: list[str] | None = None,
    ) -> ValidationResult:
        return ValidationResult(
            valid=False,
            errors=errors,
            original_version=original_version,
            migrated=bool(applied),
            applied_migrations=applied or [],
        )

    # =========================================================================
    # Semantic Checks
    # =========================================================================

    def _walk_rules(
        self,
        rules: list[PolicyRule],
        prefix: str = "rules",
        depth: int = 0,
    ) -> Iterator[tuple[PolicyRule, str, int]]:
        for index, rule in enumerate(rules):
            path = f"{prefix}[{index}]"
            yield rule, path, depth
            if rule.nested is not None:
                yield from self._walk_rules(rule.nested.rules, f"{path}.nested.rules", depth + 1)

    def _check_semantics(self, policy: PolicyDocument) -> Iterator[ValidationIssue]:
        if policy.scope == Scope.GLOBAL and policy.parent_policy_id:
            yield _issue(
                IssueCode.INVALID_PARENT_SCOPE,
                "Global-scope policies cannot declare a parent",
                "parentPolicyId",
                suggestion="Remove parentPolicyId or narrow the scope",
                parent_policy_id=policy.parent_policy_id,
            )

        yield from self._check_action(policy.default_action, "defaultAction")

        seen: dict[str, str] = {}
        for rule, path, depth in self._walk_rules(policy.rules):
            if rule.id in seen:
                yield _issue(
                    IssueCode.DUPLICATE_RULE_ID,
                    f"Duplicate rule ID '{rule.id}' (first defined at {seen[rule.id]})",
                    f"{path}.id",
                    suggestion="Give every rule, including nested rules, a unique ID",
                    rule_id=rule.id,
                    first_path=seen[rule.id],
                )
            else:
                seen[rule.id] = path

            if depth > self.options.max_nesting_depth:
                yield _issue(
                    IssueCode.INVALID_FIELD_VALUE,
                    f"Rule '{rule.id}' is nested {depth} levels deep "
                    f"(max {self.options.max_nesting_depth})",
                    path,
                    suggestion="Flatten the rule groups",
                    depth=depth,
                )

            if rule.action is None:
                if depth == 0:
                    yield _issue(
                        IssueCode.MISSING_REQUIRED_FIELD,
                        f"Rule '{rule.id}' has no action",
                        f"{path}.action",
                        suggestion="Add an action with an effect, e.g. {effect: deny, reason: ...}",
                    )
            else:
                yield from self._check_action(rule.action, f"{path}.action")

            for i, condition in enumerate(rule.conditions):
                yield from self._check_condition(condition, f"{path}.conditions[{i}]")
            if rule.condition_logic is not None:
                for i, condition in enumerate(rule.condition_logic.conditions):
                    yield from self._check_condition(condition, f"{path}.conditionLogic.conditions[{i}]")

            yield from self._check_conflicts(rule, path)

    def _check_action(self, action: PolicyAction, path: str) -> Iterator[ValidationIssue]:
        if action.effect == Effect.REQUIRE_APPROVAL and action.approval is None:
            yield _issue(
                IssueCode.MISSING_APPROVAL_CONFIG,
                "require_approval actions need an approval configuration",
                f"{path}.approval",
                suggestion="Add approval: {minApprovers: 1, timeoutHours: 24}",
            )
        if action.approval is not None and not 1 <= action.approval.timeout_hours <= 168:
            yield _issue(
                IssueCode.INVALID_TIMEOUT,
                f"Approval timeout {action.approval.timeout_hours}h is outside 1-168 hours",
                f"{path}.approval.timeoutHours",
                suggestion="Use a timeout between 1 and 168 hours",
                timeout_hours=action.approval.timeout_hours,
            )

    def _check_condition(self, condition: Any, path: str) -> Iterator[ValidationIssue]:
        match condition:
            case ComplexityCondition(threshold=threshold) if not 0 <= threshold <= 10:
                yield _issue(
                    IssueCode.INVALID_THRESHOLD,
                    f"Complexity threshold {threshold} is outside 0-10",
                    f"{path}.threshold",
                    suggestion="Use a complexity threshold between 0 and 10",
                    threshold=threshold,
                )
            case FilePatternCondition(patterns=patterns):
                if not patterns:
                    yield _issue(
                        IssueCode.EMPTY_PATTERN_LIST,
                        "File pattern condition has no patterns",
                        f"{path}.patterns",
                        suggestion="Add at least one glob such as 'src/**/*.py'",
                    )
                yield from self._check_globs(patterns, f"{path}.patterns")
            case RepositoryCondition(patterns=patterns) | BranchCondition(patterns=patterns):
                yield from self._check_globs(patterns, f"{path}.patterns")
            case TimeWindowCondition():
                yield from self._check_time_window(condition, path)
            case AgentCondition(confidence=confidence) if (
                confidence is not None and not 0 <= confidence.threshold <= 1
            ):
                yield _issue(
                    IssueCode.INVALID_THRESHOLD,
                    f"Agent confidence threshold {confidence.threshold} is outside 0-1",
                    f"{path}.confidence.threshold",
                    suggestion="Use a confidence threshold between 0 and 1",
                    threshold=confidence.threshold,
                )
            case FieldCondition():
                yield from self._check_field_condition(condition, path)
            case CustomCondition(expression=expression):
                try:
                    parse_expression(expression)
                except ConditionParseError as e:
                    yield _issue(
                        IssueCode.INVALID_FIELD_VALUE,
                        f"Cannot parse expression: {e.message}",
                        f"{path}.expression",
                        suggestion=e.suggestion,
                        token=e.token,
                        position=e.position,
                    )

    def _check_globs(self, patterns: list[str], path: str) -> Iterator[ValidationIssue]:
        for i, pattern in enumerate(patterns):
            if not pattern.strip():
                yield _issue(
                    IssueCode.INVALID_PATTERN,
                    "Empty glob pattern",
                    f"{path}[{i}]",
                    suggestion="Remove the empty pattern",
                )
            elif "***" in pattern:
                yield _issue(
                    IssueCode.INVALID_PATTERN,
                    f"Invalid glob pattern '{pattern}'",
                    f"{path}[{i}]",
                    suggestion="Use '**' to match across directories",
                    pattern=pattern,
                )

    def _check_time_window(self, condition: TimeWindowCondition, path: str) -> Iterator[ValidationIssue]:
        try:
            ZoneInfo(condition.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            yield _issue(
                IssueCode.INVALID_FIELD_VALUE,
                f"Unknown timezone '{condition.timezone}'",
                f"{path}.timezone",
                suggestion="Use an IANA timezone name such as 'UTC' or 'Europe/Berlin'",
            )
        for i, window in enumerate(condition.windows):
            window_path = f"{path}.windows[{i}]"
            if not (0 <= window.start_hour <= 23 and 1 <= window.end_hour <= 24):
                yield _issue(
                    IssueCode.INVALID_FIELD_VALUE,
                    f"Hours {window.start_hour}-{window.end_hour} are outside 0-24",
                    window_path,
                    suggestion="Use startHour 0-23 and endHour 1-24",
                )
            elif window.start_hour >= window.end_hour:
                yield _issue(
                    IssueCode.INVALID_FIELD_VALUE,
                    f"Window start {window.start_hour} is not before end {window.end_hour}",
                    window_path,
                    suggestion="Make startHour earlier than endHour, or split the window in two",
                )
            if any(not 0 <= day <= 6 for day in window.days):
                yield _issue(
                    IssueCode.INVALID_FIELD_VALUE,
                    "Days must be between 0 (Sunday) and 6 (Saturday)",
                    f"{window_path}.days",
                    suggestion="Use day numbers 0-6",
                )

    def _check_field_condition(self, condition: FieldCondition, path: str) -> Iterator[ValidationIssue]:
        operator = condition.operator
        value = condition.value
        if operator == ConditionOperator.MATCHES:
            valid_regex = isinstance(value, str)
            if valid_regex:
                try:
                    re.compile(value)
                except re.error:
                    valid_regex = False
            if not valid_regex:
                yield _issue(
                    IssueCode.INVALID_PATTERN,
                    f"Invalid regular expression {value!r}",
                    f"{path}.value",
                    suggestion="Provide a valid Python regular expression string",
                )
        elif operator in (ConditionOperator.IN, ConditionOperator.NIN) and not isinstance(value, list):
            yield _issue(
                IssueCode.INVALID_FIELD_VALUE,
                f"Operator '{operator.value}' needs a list value",
                f"{path}.value",
                suggestion="Use a list, e.g. value: [a, b]",
            )
        elif operator in (
            ConditionOperator.GT,
            ConditionOperator.GTE,
            ConditionOperator.LT,
            ConditionOperator.LTE,
        ) and (isinstance(value, bool) or not isinstance(value, (int, float))):
            yield _issue(
                IssueCode.INVALID_FIELD_VALUE,
                f"Operator '{operator.value}' needs a numeric value",
                f"{path}.value",
                suggestion="Use a number; comparisons with non-numbers never match",
            )

    def _check_conflicts(self, rule: PolicyRule, path: str) -> Iterator[ValidationIssue]:
        equals: dict[str, tuple[Any, int]] = {}
        not_equals: dict[str, list[Any]] = {}
        field_conditions = [
            (i, c) for i, c in enumerate(rule.conditions) if isinstance(c, FieldCondition)
        ]
        for i, condition in field_conditions:
            if condition.operator == ConditionOperator.EQ:
                if condition.field in equals and not strict_equal(equals[condition.field][0], condition.value):
                    yield self._conflict(rule, path, i, condition.field)
                equals.setdefault(condition.field, (condition.value, i))
            elif condition.operator == ConditionOperator.NE:
                not_equals.setdefault(condition.field, []).append(condition.value)

        for i, condition in field_conditions:
            if condition.operator != ConditionOperator.EQ:
                continue
            excluded = not_equals.get(condition.field, [])
            if any(strict_equal(condition.value, value) for value in excluded):
                yield self._conflict(rule, path, i, condition.field)

    def _conflict(self, rule: PolicyRule, path: str, index: int, field_path: str) -> ValidationIssue:
        return _issue(
            IssueCode.CONFLICTING_CONDITIONS,
            f"Rule '{rule.id}' can never match: conditions on '{field_path}' contradict each other",
            f"{path}.conditions[{index}]",
            suggestion="Remove one of the contradicting conditions or split the rule",
            field=field_path,
        )

    # =========================================================================
    # Warnings and Info
    # =========================================================================

    def _check_warnings(self, policy: PolicyDocument) -> Iterator[ValidationIssue]:
        if len(policy.rules) > self.options.max_rules_warning:
            yield _issue(
                IssueCode.HIGH_COMPLEXITY,
                f"Policy has {len(policy.rules)} rules (more than {self.options.max_rules_warning})",
                "rules",
                Severity.WARNING,
                suggestion="Split the policy across scopes or consolidate rules",
                rule_count=len(policy.rules),
            )

        for rule, path, _depth in self._walk_rules(policy.rules):
            if not rule.enabled:
                yield _issue(
                    IssueCode.UNUSED_RULE,
                    f"Rule '{rule.id}' is disabled",
                    path,
                    Severity.WARNING,
                    suggestion="Remove the rule if it is no longer needed",
                )
            if not rule.conditions and rule.condition_logic is None and rule.nested is None:
                yield _issue(
                    IssueCode.EMPTY_CONDITIONS,
                    f"Rule '{rule.id}' has no conditions and matches every request",
                    f"{path}.conditions",
                    Severity.WARNING,
                    suggestion="Add conditions, or set conditionLogic: {operator: and} to match everything on purpose",
                )
            if rule.priority < 0:
                yield _issue(
                    IssueCode.INVALID_RULE_PRIORITY,
                    f"Rule '{rule.id}' has negative priority {rule.priority}",
                    f"{path}.priority",
                    Severity.WARNING,
                    suggestion="Use priorities of 0 or more",
                )

    def _collect_info(
        self,
        policy: PolicyDocument,
        original_version: str,
        applied: list[str],
    ) -> Iterator[ValidationIssue]:
        if applied:
            yield _issue(
                IssueCode.MIGRATION_APPLIED,
                f"Migrated from version {original_version} to {CURRENT_VERSION} ({', '.join(applied)})",
                "version",
                Severity.INFO,
                applied=applied,
            )
        if policy.parent_policy_id:
            yield _issue(
                IssueCode.INHERITANCE_ENABLED,
                f"Inherits from '{policy.parent_policy_id}' using {policy.inheritance.value} mode",
                "parentPolicyId",
                Severity.INFO,
            )


def validate_policy(
    document: Mapping[str, Any] | PolicyDocument,
    options: ValidatorOptions | None = None,
) -> ValidationResult:
    """Validate a document with a one-off validator."""
    return PolicyValidator(options).validate(document)


def format_validation_result(result: ValidationResult) -> str:
    """Render a validation result as plain text."""
    lines = []
    if result.valid:
        lines.append("Policy is valid")
    else:
        lines.append(f"Policy is invalid ({len(result.errors)} error(s))")
    if result.migrated:
        lines.append(f"Migrated from {result.original_version}: {', '.join(result.applied_migrations)}")

    for title, issues in (
        ("Errors", result.errors),
        ("Warnings", result.warnings),
        ("Info", result.info),
    ):
        if not issues:
            continue
        lines.append("")
        lines.append(f"{title}:")
        for issue in issues:
            location = f"{issue.path}: " if issue.path else ""
            lines.append(f"  [{issue.code.value}] {location}{issue.message}")
            if issue.suggestion:
                lines.append(f"    Suggestion: {issue.suggestion}")
    return "\n".join(lines)
