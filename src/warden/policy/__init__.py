"""
Policy module for Warden.

This module implements policy evaluation: documents of prioritized rules,
inherited across scopes, evaluated against a request context.

Key concepts:
    - Conditions: a closed set of condition kinds plus a textual DSL
    - Rules: evaluated by ascending priority, first match wins
    - Default action: deny-with-reason unless the document says otherwise
    - Inheritance: global < org < repo < branch, merged by replace,
      extend or override
    - Cache: resolved policies per tenant and target

The evaluator must be:
    - Fail-closed: an invalid effective policy results in denial
    - Predictable: same inputs always produce the same decision
    - Auditable: every decision carries its reason trail
"""

from warden.policy.cache import CacheKey, CacheStats, PolicyCache
from warden.policy.conditions import evaluate_condition, evaluate_condition_group
from warden.policy.engine import PolicyEngine, evaluate_policy, evaluate_rule
from warden.policy.inheritance import InheritanceResolver, ResolvedPolicy, merge_chain
from warden.policy.migration import migrate_document
from warden.policy.parser import parse_condition, parse_expression
from warden.policy.validation import (
    PolicyValidator,
    ValidationIssue,
    ValidationResult,
    format_validation_result,
)

__all__ = [
    "CacheKey",
    "CacheStats",
    "PolicyCache",
    "evaluate_condition",
    "evaluate_condition_group",
    "PolicyEngine",
    "evaluate_policy",
    "evaluate_rule",
    "InheritanceResolver",
    "ResolvedPolicy",
    "merge_chain",
    "migrate_document",
    "parse_condition",
    "parse_expression",
    "PolicyValidator",
    "ValidationIssue",
    "ValidationResult",
    "format_validation_result",
]
