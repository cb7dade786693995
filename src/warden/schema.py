"""
Schema definitions for Warden.

This module defines the Pydantic models for policy documents and their
evaluation:
- PolicyDocument/PolicyRule: A named, versioned ruleset and its rules
- PolicyCondition: A closed tagged union of condition kinds
- PolicyAction: The effect a matched rule prescribes
- PolicyContext: The subject of an evaluation (actor, action, resource)
- EvaluationResult: The decision and its justification

Design Decisions:
    - Python attributes are snake_case; the persisted/exchanged format is
      camelCase (scopeTarget, defaultAction, ...) via an alias generator
    - Models are immutable (frozen=True) so evaluated documents can be
      shared across threads and cached as snapshots
    - Range checks (thresholds, hours, timeouts) are semantic checks in
      warden.policy.validation, not structural constraints here, so they
      surface with their own issue codes
    - Conditions dispatch on an explicit "type" tag; a condition without
      a tag is the generic field/operator/value form
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)
from pydantic.alias_generators import to_camel


CURRENT_VERSION = "2.0"
SUPPORTED_VERSIONS = ("1.0", "1.1", "2.0")
DEFAULT_DENY_REASON = "No matching policy rule"
RULE_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class WardenModel(BaseModel):
    """Base model: frozen, strict about unknown keys, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


# =============================================================================
# Enums
# =============================================================================


class Scope(str, Enum):
    """Level at which a policy applies, least to most specific."""

    GLOBAL = "global"
    ORG = "org"
    REPO = "repo"
    BRANCH = "branch"


class InheritanceMode(str, Enum):
    """How a child document combines with its parent's rules."""

    REPLACE = "replace"
    EXTEND = "extend"
    OVERRIDE = "override"


class Effect(str, Enum):
    """The action a matched rule prescribes."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"
    NOTIFY = "notify"
    LOG_ONLY = "log_only"
    WARN = "warn"


# Effects that let the action proceed
ALLOWED_EFFECTS = frozenset({Effect.ALLOW, Effect.NOTIFY, Effect.LOG_ONLY, Effect.WARN})


class ConditionOperator(str, Enum):
    """Operators of the generic field condition."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    CONTAINS = "contains"
    MATCHES = "matches"
    EXISTS = "exists"


ComparisonOperator = Literal["gt", "gte", "lt", "lte", "eq"]


# =============================================================================
# Conditions
# =============================================================================


class FieldCondition(WardenModel):
    """
    Generic condition: resolve a dotted path and compare it to a value.

    Example:
        {field: "actor.type", operator: "eq", value: "user"}
    """

    type: Literal["field"] = "field"
    field: str = Field(..., min_length=1, description="Dotted path into the context")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Operand (ignored by exists)")


class ComplexityCondition(WardenModel):
    """Compare the change complexity score (0-10) against a threshold."""

    type: Literal["complexity"]
    operator: ComparisonOperator
    threshold: float


class FilePatternCondition(WardenModel):
    """Match changed files against glob patterns."""

    type: Literal["file_pattern"]
    patterns: list[str] = Field(default_factory=list)
    match_type: Literal["include", "exclude"] = "include"


class AuthorCondition(WardenModel):
    """Match the actor by id, role, or team. No criteria matches anyone."""

    type: Literal["author"]
    authors: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    teams: list[str] = Field(default_factory=list)


class TimeWindow(WardenModel):
    """
    A recurring window of hours on selected weekdays.

    Days are numbered 0 (Sunday) to 6 (Saturday). The window covers
    start_hour inclusive to end_hour exclusive.
    """

    days: list[int] = Field(default_factory=lambda: list(range(7)))
    start_hour: int
    end_hour: int


class TimeWindowCondition(WardenModel):
    """Match requests whose timestamp falls inside (or outside) windows."""

    type: Literal["time_window"]
    timezone: str = "UTC"
    windows: list[TimeWindow] = Field(..., min_length=1)
    match_type: Literal["during", "outside"] = "during"


class RepositoryCondition(WardenModel):
    """Match the target repository by name, glob, or visibility."""

    type: Literal["repository"]
    repos: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    visibility: Literal["public", "private", "internal"] | None = None


class BranchCondition(WardenModel):
    """Match the target branch by name, glob, or protection status."""

    type: Literal["branch"]
    branches: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    protected: bool | None = None


class LabelCondition(WardenModel):
    """Match labels on the resource."""

    type: Literal["label"]
    labels: list[str] = Field(..., min_length=1)
    match_type: Literal["any", "all", "none"] = "any"


class AgentConfidence(WardenModel):
    """Threshold on the agent's self-reported confidence (0-1)."""

    operator: ComparisonOperator
    threshold: float


class AgentCondition(WardenModel):
    """Match the initiating agent type and optionally its confidence."""

    type: Literal["agent"]
    agents: list[str] = Field(..., min_length=1)
    confidence: AgentConfidence | None = None


class CustomCondition(WardenModel):
    """
    A textual expression, parsed with warden.policy.parser.

    Example:
        {type: custom, expression: 'resource.attributes.env == "prod" and actor.type == "agent"'}
    """

    type: Literal["custom"]
    expression: str = Field(..., min_length=1)


CONDITION_TYPES = (
    "field",
    "complexity",
    "file_pattern",
    "author",
    "time_window",
    "repository",
    "branch",
    "label",
    "agent",
    "custom",
)


def _condition_tag(value: Any) -> str:
    """Discriminate conditions by their type tag; untagged means field."""
    if isinstance(value, dict):
        return value.get("type", "field")
    return getattr(value, "type", "field")


PolicyCondition = Annotated[
    Union[
        Annotated[FieldCondition, Tag("field")],
        Annotated[ComplexityCondition, Tag("complexity")],
        Annotated[FilePatternCondition, Tag("file_pattern")],
        Annotated[AuthorCondition, Tag("author")],
        Annotated[TimeWindowCondition, Tag("time_window")],
        Annotated[RepositoryCondition, Tag("repository")],
        Annotated[BranchCondition, Tag("branch")],
        Annotated[LabelCondition, Tag("label")],
        Annotated[AgentCondition, Tag("agent")],
        Annotated[CustomCondition, Tag("custom")],
    ],
    Discriminator(_condition_tag),
]


class ConditionGroup(WardenModel):
    """
    Explicit combinator over conditions.

    An "and" group with no conditions deliberately matches everything,
    which silences the empty-conditions warning.
    """

    operator: Literal["and", "or", "not"] = "and"
    conditions: list[PolicyCondition] = Field(default_factory=list)


# =============================================================================
# Actions
# =============================================================================


class ApprovalConfig(WardenModel):
    """Approval requirements for require_approval actions."""

    min_approvers: int = Field(default=1, ge=1)
    required_roles: list[str] = Field(default_factory=list)
    required_teams: list[str] = Field(default_factory=list)
    timeout_hours: int = Field(default=24, description="Valid range 1-168")
    allow_self_approval: bool = False
    escalate_to: list[str] = Field(default_factory=list)


class NotificationConfig(WardenModel):
    """Where to send notifications for notify actions."""

    channels: list[Literal["email", "slack", "webhook", "github_comment"]] = Field(
        ..., min_length=1
    )
    recipients: list[str] = Field(default_factory=list)
    template: str | None = None
    severity: Literal["info", "warning", "critical"] = "info"


class PolicyAction(WardenModel):
    """The effect applied when a rule matches (or by default)."""

    effect: Effect
    reason: str | None = None
    approval: ApprovalConfig | None = None
    notification: NotificationConfig | None = None
    audit_metadata: dict[str, Any] = Field(default_factory=dict)
    continue_on_match: bool = False

    @property
    def allows(self) -> bool:
        """Whether this effect lets the action proceed."""
        return self.effect in ALLOWED_EFFECTS


def default_deny_action() -> PolicyAction:
    """The deny-with-reason action used when a document declares none."""
    return PolicyAction(effect=Effect.DENY, reason=DEFAULT_DENY_REASON)


# =============================================================================
# Rules and Documents
# =============================================================================


class RuleGroup(WardenModel):
    """Recursive group of sub-rules combined with and/or."""

    operator: Literal["and", "or"] = "and"
    rules: list["PolicyRule"] = Field(..., min_length=1)


class PolicyRule(WardenModel):
    """
    One evaluable unit of a policy document.

    Attributes:
        id: Unique identifier within the document
        name: Human-readable name
        priority: Lower values are evaluated first
        enabled: Disabled rules never match
        conditions: Implicitly AND-ed conditions
        condition_logic: Optional explicit combinator
        nested: Optional recursive rule group
        action: What to do when the rule matches (required on top-level rules)
    """

    id: str = Field(..., pattern=RULE_ID_PATTERN)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    priority: int = 100
    enabled: bool = True
    conditions: list[PolicyCondition] = Field(default_factory=list)
    condition_logic: ConditionGroup | None = None
    nested: RuleGroup | None = None
    action: PolicyAction | None = None
    tags: list[str] = Field(default_factory=list)


RuleGroup.model_rebuild()


class PolicyMetadata(WardenModel):
    """Creation and revision bookkeeping."""

    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None
    revision: int = Field(default=1, ge=1)
    changelog: list[dict[str, Any]] = Field(default_factory=list)


class PolicyDocument(WardenModel):
    """
    A named, versioned ruleset bound to a scope.

    A global-scope document may never declare a parent; that invariant is
    checked by the validator (INVALID_PARENT_SCOPE) rather than here, so it
    is reported alongside every other problem in the document.
    """

    id: str | None = None
    version: Literal["1.0", "1.1", "2.0"] = CURRENT_VERSION
    scope: Scope = Scope.REPO
    scope_target: str | None = None
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    inheritance: InheritanceMode = InheritanceMode.OVERRIDE
    parent_policy_id: str | None = None
    default_action: PolicyAction = Field(default_factory=default_deny_action)
    rules: list[PolicyRule] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    metadata: PolicyMetadata = Field(default_factory=PolicyMetadata)

    @field_validator("scope_target")
    @classmethod
    def validate_scope_target(cls, v: str | None) -> str | None:
        """Normalize blank targets to None."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def policy_key(self) -> str:
        """Store key: explicit id, else scope:target:name."""
        return self.id or policy_key(self.scope, self.scope_target, self.name)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted camelCase format."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def policy_key(scope: Scope | str, target: str | None, name: str) -> str:
    """Build the default store key for a document."""
    scope_value = scope.value if isinstance(scope, Scope) else scope
    return f"{scope_value}:{target or 'default'}:{name}"


# =============================================================================
# Evaluation Models
# =============================================================================


class Actor(WardenModel):
    """Who initiated the action."""

    type: str = Field(..., description="user, agent, service, ...")
    id: str = ""
    roles: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class Resource(WardenModel):
    """What the action targets."""

    type: str = ""
    id: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    parent: dict[str, Any] | None = None


class Environment(WardenModel):
    """Request environment. The timestamp drives time-window conditions."""

    timestamp: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


class PolicyContext(WardenModel):
    """
    The subject of an evaluation.

    Example:
        {actor: {type: user, id: alice, roles: [admin]},
         action: merge,
         resource: {type: pull_request, id: "42", attributes: {complexity: 3}}}
    """

    actor: Actor
    action: str = ""
    resource: Resource = Field(default_factory=Resource)
    environment: Environment = Field(default_factory=Environment)

    def as_lookup(self) -> dict[str, Any]:
        """Plain-dict view used for dotted-path resolution."""
        return self.model_dump(mode="python", by_alias=True)


class EvaluationAudit(WardenModel):
    """Audit block attached to every evaluation result."""

    timestamp: datetime | None = None
    policy_name: str
    policy_version: str
    rules_evaluated: int = 0
    context_snapshot: dict[str, Any] = Field(default_factory=dict)


class EvaluationResult(WardenModel):
    """
    Result of evaluating a policy document against a context.

    Attributes:
        allowed: Whether the action may proceed
        matched_rule_id: ID of the rule that matched (None for default action)
        matched_rule_name: Name of that rule
        action: The applied action, including approval config if any
        reason: Primary human-readable reason (always set)
        reasons: Full reason trail
        audit: Timestamp, policy version, and context snapshot
    """

    allowed: bool
    matched_rule_id: str | None = None
    matched_rule_name: str | None = None
    action: PolicyAction
    reason: str = Field(..., min_length=1)
    reasons: list[str] = Field(default_factory=list)
    audit: EvaluationAudit


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_policy_document(path: Path | str) -> dict[str, Any]:
    """
    Load a raw policy document from a YAML (or JSON) file.

    The raw mapping is returned rather than a model because older versions
    must pass through migration before structural validation.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file doesn't contain a mapping
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return _require_mapping(data, str(path))


def load_policy_document_from_string(content: str) -> dict[str, Any]:
    """Load a raw policy document from a YAML string."""
    data = yaml.safe_load(content)
    return _require_mapping(data, "<string>")


def load_context(path: Path | str) -> PolicyContext:
    """Load an evaluation context from a YAML (or JSON) file."""
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return PolicyContext.model_validate(data)


def load_context_from_string(content: str) -> PolicyContext:
    """Load an evaluation context from a YAML string."""
    data = yaml.safe_load(content)
    return PolicyContext.model_validate(data)


def _require_mapping(data: Any, source: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        msg = f"Policy document {source} must be a mapping, got {type(data).__name__}"
        raise ValueError(msg)
    return data
