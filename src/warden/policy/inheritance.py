"""
Policy inheritance across scopes.

Documents bind to a scope (global < org < repo < branch). The effective
policy for a target is the merge of its chain, least specific first. Each
child declares how it combines with what came before:

    replace   only the child's rules remain
    extend    parent rules, plus child rules with new IDs (parent wins)
    override  union by rule ID, child wins, re-sorted by priority

Rule IDs are unique across nesting levels, so a collision is any shared ID
between two top-level rules or anything nested under them. The losing
top-level rule is dropped as a whole.

Design Principles:
    - Validate before merging: every document in the chain is validated
      (and migrated) first; problems are reported per document, prefixed
      with the document name
    - Detect before merging: cycles, missing parents and scope violations
      are reported without attempting a merge
    - Provenance: rule_origins maps every merged rule ID to the document
      that supplied it
    - Results, not exceptions: a broken chain yields a ResolvedPolicy with
      issues and policy=None. Only an unknown policy ID raises.
"""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import Field

from warden.errors import PolicyNotFoundError, StoreNotBoundError
from warden.policy.validation import (
    IssueCode,
    PolicyValidator,
    Severity,
    ValidationIssue,
)
from warden.schema import (
    InheritanceMode,
    PolicyDocument,
    PolicyRule,
    Scope,
    WardenModel,
)
from warden.store.base import PolicyStore, document_key, raw_field

logger = structlog.get_logger()


# =============================================================================
# Scope Helpers
# =============================================================================

SCOPE_HIERARCHY: tuple[Scope, ...] = (Scope.GLOBAL, Scope.ORG, Scope.REPO, Scope.BRANCH)


def scope_priority(scope: Scope | str) -> int:
    """Position in the hierarchy; higher is more specific."""
    return SCOPE_HIERARCHY.index(Scope(scope))


def is_more_specific(scope: Scope | str, other: Scope | str) -> bool:
    """True if scope is strictly more specific than other."""
    return scope_priority(scope) > scope_priority(other)


def parent_scope(scope: Scope | str) -> Scope | None:
    """The next less specific scope, or None for global."""
    index = scope_priority(scope)
    return SCOPE_HIERARCHY[index - 1] if index > 0 else None


# =============================================================================
# Result Model
# =============================================================================


class ResolutionStats(WardenModel):
    """Size of a resolution."""

    chain_depth: int = 0
    rules_before_merge: int = 0
    rules_after_merge: int = 0


class ResolvedPolicy(WardenModel):
    """
    The effective policy for a target.

    Attributes:
        policy: Merged document, None if resolution failed
        chain: Source documents, parent first
        rule_origins: Rule ID -> name of the document that supplied it
        stats: Chain depth and rule counts
        issues: Problems found while resolving (errors make it invalid)
    """

    policy: PolicyDocument | None = None
    chain: list[PolicyDocument] = Field(default_factory=list)
    rule_origins: dict[str, str] = Field(default_factory=dict)
    stats: ResolutionStats = Field(default_factory=ResolutionStats)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        """True if a merged policy exists and no error was reported."""
        return self.policy is not None and not self.errors

    @property
    def errors(self) -> list[ValidationIssue]:
        """Issues with error severity."""
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def policy_ids(self) -> frozenset[str]:
        """Store keys of every document in the chain."""
        return frozenset(document.policy_key for document in self.chain)


def _failed(issues: list[ValidationIssue], chain: list[PolicyDocument] | None = None) -> ResolvedPolicy:
    chain = chain or []
    return ResolvedPolicy(
        policy=None,
        chain=chain,
        stats=ResolutionStats(
            chain_depth=len(chain),
            rules_before_merge=sum(len(d.rules) for d in chain),
        ),
        issues=issues,
    )


def _inheritance_issue(code: IssueCode, message: str, path: str, suggestion: str, **context: Any) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        path=path,
        severity=Severity.ERROR,
        suggestion=suggestion,
        context=context,
    )


# =============================================================================
# Merging
# =============================================================================


def rule_ids(rule: PolicyRule) -> set[str]:
    """IDs of a rule and every rule nested under it."""
    ids = {rule.id}
    if rule.nested is not None:
        for nested in rule.nested.rules:
            ids |= rule_ids(nested)
    return ids


def merge_chain(chain: list[PolicyDocument]) -> tuple[PolicyDocument, dict[str, str]]:
    """
    Merge validated documents, least specific first.

    Every non-rule field comes from the last (most specific) document.

    Returns:
        (merged document, rule origins)
    """
    base = chain[0]
    rules: list[PolicyRule] = list(base.rules)
    origins = {rule.id: base.name for rule in rules}

    for child in chain[1:]:
        match child.inheritance:
            case InheritanceMode.REPLACE:
                rules = list(child.rules)
                origins = {rule.id: child.name for rule in rules}
            case InheritanceMode.EXTEND:
                existing = set().union(*(rule_ids(rule) for rule in rules))
                for rule in child.rules:
                    ids = rule_ids(rule)
                    if existing.isdisjoint(ids):
                        rules.append(rule)
                        existing |= ids
                        origins[rule.id] = child.name
            case InheritanceMode.OVERRIDE:
                for rule in child.rules:
                    ids = rule_ids(rule)
                    clashing = [i for i, kept in enumerate(rules) if not ids.isdisjoint(rule_ids(kept))]
                    # The first clashing rule's slot keeps the order stable for equal priorities
                    for index in reversed(clashing[1:]):
                        origins.pop(rules.pop(index).id, None)
                    if clashing:
                        origins.pop(rules[clashing[0]].id, None)
                        rules[clashing[0]] = rule
                    else:
                        rules.append(rule)
                    origins[rule.id] = child.name
                rules = sorted(rules, key=lambda r: r.priority)

    merged = chain[-1].model_copy(update={"rules": rules})
    return merged, origins


# =============================================================================
# Resolver
# =============================================================================


class InheritanceResolver:
    """
    Resolves effective policies from a PolicyStore.

    Usage:
        resolver = InheritanceResolver(store)
        resolved = resolver.resolve_scope(org="acme", repo="acme/api")
        if resolved.valid:
            result = evaluate_policy(resolved.policy, context)
    """

    def __init__(
        self,
        store: PolicyStore | None,
        validator: PolicyValidator | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            store: Source of raw documents
            validator: Validator applied to every document and the merge
        """
        self.store = store
        self.validator = validator or PolicyValidator()

    def _require_store(self) -> PolicyStore:
        if self.store is None:
            raise StoreNotBoundError(component="InheritanceResolver")
        return self.store

    def resolve_scope(
        self,
        org: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
    ) -> ResolvedPolicy:
        """
        Resolve the effective policy for an org/repo/branch target.

        The chain is every global document, then those bound to the org,
        repo and branch targets that are given.
        """
        store = self._require_store()
        raw_chain = store.get_policy_chain(org, repo, branch)
        if not raw_chain:
            return self._empty_chain(org=org, repo=repo, branch=branch)

        issues: list[ValidationIssue] = []
        for raw in raw_chain:
            if raw_field(raw, "parentPolicyId"):
                _, lineage_issues = self._lineage(raw)
                issues.extend(lineage_issues)
        target = ":".join(part or "-" for part in (org, repo, branch))
        return self._resolve(raw_chain, issues, target=target)

    def resolve_policy(self, policy_id: str) -> ResolvedPolicy:
        """
        Resolve a document together with its parentPolicyId ancestors.

        Raises:
            PolicyNotFoundError: If policy_id is not in the store
        """
        store = self._require_store()
        raw = store.get_policy(policy_id)
        if raw is None:
            raise PolicyNotFoundError(policy_id=policy_id)

        raw_chain, issues = self._lineage(raw, key=policy_id)
        if issues:
            self._log_failure(policy_id, issues)
            return _failed(issues)
        return self._resolve(raw_chain, [], target=policy_id, linked=True)

    # =========================================================================
    # Internals
    # =========================================================================

    def _lineage(
        self,
        raw: Mapping[str, Any],
        key: str | None = None,
    ) -> tuple[list[Mapping[str, Any]], list[ValidationIssue]]:
        """Follow parent pointers; return (chain parent-first, issues)."""
        store = self._require_store()
        key = key or document_key(raw)
        name = str(raw.get("name") or key)
        chain: list[Mapping[str, Any]] = [raw]
        visited = [key]
        current = raw

        while parent_id := raw_field(current, "parentPolicyId"):
            if parent_id in visited:
                cycle = " -> ".join([*visited, parent_id])
                return chain, [
                    _inheritance_issue(
                        IssueCode.CIRCULAR_INHERITANCE,
                        f"Circular inheritance: {cycle}",
                        f"{name}.parentPolicyId",
                        "Break the cycle by removing one parentPolicyId",
                        cycle=[*visited, parent_id],
                    )
                ]
            parent = store.get_policy(parent_id)
            if parent is None:
                return chain, [
                    _inheritance_issue(
                        IssueCode.MISSING_PARENT_POLICY,
                        f"Parent policy '{parent_id}' of '{current.get('name', '')}' does not exist",
                        f"{current.get('name', '')}.parentPolicyId",
                        "Load the parent document or remove parentPolicyId",
                        parent_policy_id=parent_id,
                    )
                ]
            visited.append(parent_id)
            chain.insert(0, parent)
            current = parent

        return chain, []

    def _empty_chain(self, **target: str | None) -> ResolvedPolicy:
        issue = _inheritance_issue(
            IssueCode.EMPTY_CHAIN,
            "No policies apply to this target",
            "",
            "Add a global policy so every target has an effective policy",
            **target,
        )
        logger.warning("policy_resolution_failed", codes=[issue.code.value], **target)
        return _failed([issue])

    def _resolve(
        self,
        raw_chain: list[Mapping[str, Any]],
        issues: list[ValidationIssue],
        target: str,
        linked: bool = False,
    ) -> ResolvedPolicy:
        documents: list[PolicyDocument] = []
        for raw in raw_chain:
            name = str(raw.get("name") or document_key(raw))
            result = self.validator.validate(raw)
            issues.extend(issue.with_prefix(name) for issue in result.errors)
            issues.extend(issue.with_prefix(name) for issue in result.warnings)
            if result.policy is not None:
                documents.append(result.policy)

        if linked:
            issues.extend(self._check_link_scopes(documents))
        else:
            issues.extend(self._check_parent_scopes(documents))

        if any(issue.severity == Severity.ERROR for issue in issues):
            self._log_failure(target, issues)
            return _failed(issues, documents)

        merged, origins = merge_chain(documents)
        merged_result = self.validator.validate(merged)
        issues.extend(issue.with_prefix("merged") for issue in merged_result.errors)

        resolved = ResolvedPolicy(
            policy=merged_result.policy,
            chain=documents,
            rule_origins=origins if merged_result.valid else {},
            stats=ResolutionStats(
                chain_depth=len(documents),
                rules_before_merge=sum(len(d.rules) for d in documents),
                rules_after_merge=len(merged.rules),
            ),
            issues=issues,
        )
        if resolved.valid:
            logger.info(
                "policy_resolved",
                target=target,
                chain_depth=resolved.stats.chain_depth,
                rules_after_merge=resolved.stats.rules_after_merge,
            )
        else:
            self._log_failure(target, issues)
        return resolved

    def _check_link_scopes(self, documents: list[PolicyDocument]) -> list[ValidationIssue]:
        """Each document in a parent-pointer chain must narrow its parent's scope."""
        issues = []
        for parent, child in zip(documents, documents[1:]):
            if not is_more_specific(child.scope, parent.scope):
                issues.append(self._scope_issue(child, parent.scope))
        return issues

    def _check_parent_scopes(self, documents: list[PolicyDocument]) -> list[ValidationIssue]:
        """Documents in a scope chain that name a parent must narrow its scope."""
        store = self._require_store()
        issues = []
        for document in documents:
            if not document.parent_policy_id:
                continue
            parent = store.get_policy(document.parent_policy_id)
            if parent is None:
                continue
            try:
                parent_level = Scope(raw_field(parent, "scope", Scope.REPO.value))
            except ValueError:
                continue
            if not is_more_specific(document.scope, parent_level):
                issues.append(self._scope_issue(document, parent_level))
        return issues

    def _scope_issue(self, document: PolicyDocument, parent_level: Scope) -> ValidationIssue:
        return _inheritance_issue(
            IssueCode.INVALID_PARENT_SCOPE,
            f"'{document.name}' ({document.scope.value}) must be more specific "
            f"than its parent ({parent_level.value})",
            f"{document.name}.scope",
            f"Use a scope narrower than {parent_level.value} or pick another parent",
            scope=document.scope.value,
            parent_scope=parent_level.value,
        )

    def _log_failure(self, target: str, issues: list[ValidationIssue]) -> None:
        logger.warning(
            "policy_resolution_failed",
            target=target,
            codes=sorted({issue.code.value for issue in issues if issue.severity == Severity.ERROR}),
        )
