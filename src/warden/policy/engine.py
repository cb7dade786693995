"""
Rule and Policy Evaluator for Warden.

Design Principles:
    - Priority order: enabled rules are evaluated by ascending priority,
      ties broken by declaration order; the first match wins
    - Default action: if nothing matches, the document's defaultAction
      applies (deny-with-reason unless the author chose otherwise)
    - Predictable: evaluate_policy is side-effect-free; identical
      (document, context) pairs always yield identical results
    - Auditable: every result carries a reason trail and a context snapshot

How it works:
    1. Sort enabled rules by priority
    2. For each rule, AND its conditions, its explicit conditionLogic,
       and its nested rule group (recursively)
    3. Apply the first matching rule's action (rules marked
       continueOnMatch are noted in the trail and evaluation continues)
    4. Fall back to defaultAction

Timestamps in the audit block come from the caller (evaluated_at) or the
request (context.environment.timestamp), never from the clock.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from warden.policy.conditions import (
    describe_condition,
    evaluate_condition,
    evaluate_condition_group,
)
from warden.schema import (
    Effect,
    EvaluationAudit,
    EvaluationResult,
    PolicyAction,
    PolicyContext,
    PolicyDocument,
    PolicyRule,
    RuleGroup,
)

# Rules nested deeper than this never match (the validator rejects them)
MAX_NESTING_DEPTH = 8

NO_MATCH_REASON = "No matching rules, using default action"

# Applied when an unvalidated document's matching rule has no action
_ACTIONLESS_RULE = PolicyAction(effect=Effect.DENY, reason="Matched rule declares no action")


# =============================================================================
# Rule Evaluation
# =============================================================================


def evaluate_rule(
    rule: PolicyRule,
    context: PolicyContext | Mapping[str, Any],
    depth: int = 0,
) -> bool:
    """
    Decide whether a single rule matches.

    A rule matches iff it is enabled, all its conditions hold, its
    conditionLogic (if any) holds, and its nested group (if any) holds.
    An empty condition list matches everything.

    Args:
        rule: The rule to evaluate
        context: A PolicyContext or its as_lookup() mapping
        depth: Current nesting depth (0 for top-level rules)
    """
    if not rule.enabled or depth > MAX_NESTING_DEPTH:
        return False

    data = context.as_lookup() if isinstance(context, PolicyContext) else context

    for condition in rule.conditions:
        if not evaluate_condition(condition, data):
            return False

    if rule.condition_logic is not None and not evaluate_condition_group(rule.condition_logic, data):
        return False

    if rule.nested is not None:
        return evaluate_rule_group(rule.nested, data, depth + 1)

    return True


def evaluate_rule_group(
    group: RuleGroup,
    context: PolicyContext | Mapping[str, Any],
    depth: int = 1,
) -> bool:
    """Evaluate a nested group: "and" needs every sub-rule, "or" needs one."""
    data = context.as_lookup() if isinstance(context, PolicyContext) else context
    results = (evaluate_rule(rule, data, depth) for rule in group.rules)
    if group.operator == "or":
        return any(results)
    return all(results)


def ordered_rules(document: PolicyDocument) -> list[PolicyRule]:
    """Enabled rules by ascending priority; sorted() is stable, so ties keep declaration order."""
    return sorted((r for r in document.rules if r.enabled), key=lambda r: r.priority)


# =============================================================================
# Policy Evaluation
# =============================================================================


def evaluate_policy(
    document: PolicyDocument,
    context: PolicyContext,
    evaluated_at: datetime | None = None,
) -> EvaluationResult:
    """
    Evaluate a policy document against a request context.

    Args:
        document: A validated (and, if inherited, merged) policy document
        context: The evaluation subject
        evaluated_at: Timestamp for the audit block; defaults to the
                      request timestamp from context.environment

    Returns:
        EvaluationResult with the applied action and its reason trail
    """
    data = context.as_lookup()
    reasons: list[str] = []
    evaluated = 0

    for rule in ordered_rules(document):
        evaluated += 1
        if not evaluate_rule(rule, data):
            continue

        action = rule.action or _ACTIONLESS_RULE
        if action.continue_on_match:
            reasons.append(f"Rule '{rule.id}' matched ({action.effect.value}), continuing")
            continue

        reasons.append(f"Matched rule '{rule.id}' by priority {rule.priority}")
        if action.reason:
            reasons.append(action.reason)
        return _build_result(
            document,
            context,
            action=action,
            reason=action.reason or reasons[-1],
            reasons=reasons,
            rule=rule,
            evaluated=evaluated,
            evaluated_at=evaluated_at,
        )

    action = document.default_action
    reasons.append(NO_MATCH_REASON)
    reason = NO_MATCH_REASON
    if action.reason:
        reasons.append(action.reason)
        reason = f"{NO_MATCH_REASON}: {action.reason}"
    return _build_result(
        document,
        context,
        action=action,
        reason=reason,
        reasons=reasons,
        rule=None,
        evaluated=evaluated,
        evaluated_at=evaluated_at,
    )


def _build_result(
    document: PolicyDocument,
    context: PolicyContext,
    action: PolicyAction,
    reason: str,
    reasons: list[str],
    rule: PolicyRule | None,
    evaluated: int,
    evaluated_at: datetime | None,
) -> EvaluationResult:
    return EvaluationResult(
        allowed=action.allows,
        matched_rule_id=rule.id if rule else None,
        matched_rule_name=rule.name if rule else None,
        action=action,
        reason=reason,
        reasons=reasons,
        audit=EvaluationAudit(
            timestamp=evaluated_at or context.environment.timestamp,
            policy_name=document.name,
            policy_version=document.version,
            rules_evaluated=evaluated,
            context_snapshot=context.model_dump(mode="json", by_alias=True),
        ),
    )


# =============================================================================
# Engine
# =============================================================================


@dataclass(frozen=True)
class RuleTrace:
    """Per-rule explanation produced by PolicyEngine.explain()."""

    rule_id: str
    name: str
    priority: int
    enabled: bool
    matched: bool
    conditions: list[tuple[str, bool]] = field(default_factory=list)


class PolicyEngine:
    """
    Evaluator bound to one policy document.

    Usage:
        engine = PolicyEngine(document)
        result = engine.evaluate(context)
        if result.allowed:
            # proceed
        else:
            # surface result.reason

    Attributes:
        policy: The document being enforced
    """

    def __init__(self, policy: PolicyDocument) -> None:
        """
        Initialize the engine.

        Args:
            policy: A validated policy document
        """
        self.policy = policy

    def evaluate(
        self,
        context: PolicyContext,
        evaluated_at: datetime | None = None,
    ) -> EvaluationResult:
        """Evaluate the bound policy against a context."""
        return evaluate_policy(self.policy, context, evaluated_at=evaluated_at)

    def explain(self, context: PolicyContext) -> list[RuleTrace]:
        """
        Explain how every rule fares against a context.

        Rules are listed in evaluation order followed by disabled rules.
        Unlike evaluate(), this does not stop at the first match.
        """
        data = context.as_lookup()
        enabled = ordered_rules(self.policy)
        disabled = [r for r in self.policy.rules if not r.enabled]

        traces = []
        for rule in enabled + disabled:
            conditions = [
                (describe_condition(c), rule.enabled and evaluate_condition(c, data))
                for c in rule.conditions
            ]
            traces.append(
                RuleTrace(
                    rule_id=rule.id,
                    name=rule.name,
                    priority=rule.priority,
                    enabled=rule.enabled,
                    matched=evaluate_rule(rule, data),
                    conditions=conditions,
                )
            )
        return traces
