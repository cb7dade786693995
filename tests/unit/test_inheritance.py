"""
Unit tests for policy inheritance.

Tests cover:
- Scope helpers
- merge_chain() in replace, extend and override modes
- Scope-chain resolution and rule provenance
- Parent-pointer resolution: cycles, missing parents, scope violations
- Per-document validation inside a chain
"""

from typing import Any

import pytest

from warden.errors import PolicyNotFoundError, StoreNotBoundError
from warden.policy.inheritance import (
    InheritanceResolver,
    is_more_specific,
    merge_chain,
    parent_scope,
    scope_priority,
)
from warden.policy.validation import IssueCode
from warden.schema import PolicyDocument, Scope
from warden.store import InMemoryPolicyStore


def doc(name: str, scope: str, inheritance: str, rules: list[tuple[str, int]], **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "version": "2.0",
        "scope": scope,
        "name": name,
        "inheritance": inheritance,
        "rules": [
            {
                "id": rule_id,
                "name": f"{name} {rule_id}",
                "priority": priority,
                "conditions": [{"field": "action", "operator": "eq", "value": rule_id}],
                "action": {"effect": "allow"},
            }
            for rule_id, priority in rules
        ],
    }
    data.update(extra)
    return data


def with_nested(data: dict[str, Any], index: int, *rule_ids: str) -> dict[str, Any]:
    """Give rule `index` a nested group of sub-rules."""
    data["rules"][index]["nested"] = {"rules": [{"id": i, "name": f"Inner {i}"} for i in rule_ids]}
    return data


def model(data: dict[str, Any]) -> PolicyDocument:
    return PolicyDocument.model_validate(data)


@pytest.fixture
def resolver(policy_store: InMemoryPolicyStore) -> InheritanceResolver:
    return InheritanceResolver(policy_store)


class TestScopeHelpers:
    """Tests for the scope hierarchy."""

    def test_priority_order(self) -> None:
        assert [scope_priority(s) for s in ("global", "org", "repo", "branch")] == [0, 1, 2, 3]

    def test_more_specific(self) -> None:
        assert is_more_specific(Scope.REPO, Scope.ORG)
        assert not is_more_specific(Scope.ORG, Scope.ORG)
        assert not is_more_specific(Scope.GLOBAL, Scope.BRANCH)

    def test_parent_scope(self) -> None:
        assert parent_scope(Scope.BRANCH) == Scope.REPO
        assert parent_scope(Scope.GLOBAL) is None


class TestMergeChain:
    """The three inheritance modes."""

    @pytest.fixture
    def parent(self) -> PolicyDocument:
        return model(doc("Parent", "global", "override", [("p1", 10), ("shared", 20)]))

    def test_replace(self, parent: PolicyDocument) -> None:
        child = model(doc("Child", "org", "replace", [("c1", 5)]))
        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["c1"]
        assert origins == {"c1": "Child"}

    def test_extend_keeps_parent_rule_on_collision(self, parent: PolicyDocument) -> None:
        child = model(doc("Child", "org", "extend", [("shared", 1), ("c1", 5)]))
        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["p1", "shared", "c1"]
        assert merged.rules[1].priority == 20
        assert origins["shared"] == "Parent"
        assert origins["c1"] == "Child"

    def test_override_child_wins_and_resorts(self, parent: PolicyDocument) -> None:
        child = model(doc("Child", "org", "override", [("shared", 1), ("c1", 15)]))
        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["shared", "p1", "c1"]
        assert merged.rules[0].name == "Child shared"
        assert origins == {"p1": "Parent", "shared": "Child", "c1": "Child"}

    def test_override_replaces_rule_holding_a_nested_id(self) -> None:
        parent = model(with_nested(doc("Parent", "global", "override", [("p1", 10), ("p2", 20)]), 0, "x"))
        child = model(doc("Child", "org", "override", [("x", 5)]))

        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["x", "p2"]
        assert merged.rules[0].name == "Child x"
        assert origins == {"p2": "Parent", "x": "Child"}

    def test_override_with_nested_child_rule(self) -> None:
        parent = model(doc("Parent", "global", "override", [("p1", 10), ("y", 20)]))
        child = model(with_nested(doc("Child", "org", "override", [("c1", 5)]), 0, "y"))

        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["c1", "p1"]
        assert "y" not in origins

    def test_extend_skips_child_rule_with_inherited_nested_id(self) -> None:
        parent = model(with_nested(doc("Parent", "global", "override", [("p1", 10)]), 0, "x"))
        child = model(doc("Child", "org", "extend", [("x", 5), ("c1", 15)]))

        merged, origins = merge_chain([parent, child])
        assert [r.id for r in merged.rules] == ["p1", "c1"]
        assert origins == {"p1": "Parent", "c1": "Child"}

    def test_non_rule_fields_from_most_specific(self, parent: PolicyDocument) -> None:
        child = model(doc(
            "Child",
            "org",
            "extend",
            [],
            defaultAction={"effect": "allow", "reason": "Open by default"},
        ))
        merged, _ = merge_chain([parent, child])
        assert merged.name == "Child"
        assert merged.scope == Scope.ORG
        assert merged.default_action.reason == "Open by default"

    def test_single_document(self, parent: PolicyDocument) -> None:
        merged, origins = merge_chain([parent])
        assert merged == parent
        assert set(origins) == {"p1", "shared"}


class TestResolveScope:
    """Resolution of the global -> org -> repo chain."""

    def test_full_chain(self, resolver: InheritanceResolver) -> None:
        resolved = resolver.resolve_scope(org="acme", repo="acme/api")
        assert resolved.valid
        assert resolved.policy is not None
        assert resolved.policy.name == "API Repo Policy"
        assert [r.id for r in resolved.policy.rules] == [
            "block-force-push",
            "review-large-changes",
            "allow-merge-admins",
            "allow-read",
        ]
        assert resolved.rule_origins == {
            "block-force-push": "Global Baseline",
            "allow-read": "Global Baseline",
            "allow-merge-admins": "Acme Org Policy",
            "review-large-changes": "API Repo Policy",
        }
        assert resolved.stats.chain_depth == 3
        assert resolved.stats.rules_before_merge == 4
        assert resolved.stats.rules_after_merge == 4

    def test_policy_ids(self, resolver: InheritanceResolver) -> None:
        resolved = resolver.resolve_scope(org="acme", repo="acme/api")
        assert resolved.policy_ids == {
            "global:default:Global Baseline",
            "org:acme:Acme Org Policy",
            "repo:acme/api:API Repo Policy",
        }

    def test_org_only(self, resolver: InheritanceResolver) -> None:
        resolved = resolver.resolve_scope(org="acme")
        assert resolved.valid
        assert resolved.policy is not None
        assert resolved.policy.name == "Acme Org Policy"
        assert resolved.stats.chain_depth == 2

    def test_unknown_targets_fall_back_to_global(self, resolver: InheritanceResolver) -> None:
        resolved = resolver.resolve_scope(org="other", repo="other/thing")
        assert resolved.valid
        assert resolved.policy is not None
        assert resolved.policy.name == "Global Baseline"

    def test_empty_chain(self) -> None:
        resolved = InheritanceResolver(InMemoryPolicyStore()).resolve_scope(org="acme")
        assert not resolved.valid
        assert resolved.policy is None
        assert [i.code for i in resolved.issues] == [IssueCode.EMPTY_CHAIN]

    def test_invalid_document_in_chain(self, global_policy: dict[str, Any]) -> None:
        broken = doc("Broken Org", "org", "extend", [("needs-review", 5)], scopeTarget="acme")
        broken["rules"][0]["action"] = {"effect": "require_approval"}
        resolver = InheritanceResolver(InMemoryPolicyStore([global_policy, broken]))
        resolved = resolver.resolve_scope(org="acme")
        assert not resolved.valid
        assert resolved.policy is None
        assert [i.code for i in resolved.errors] == [IssueCode.MISSING_APPROVAL_CONFIG]
        assert resolved.errors[0].path == "Broken Org.rules[0].action.approval"

    def test_old_documents_are_migrated(self, global_policy: dict[str, Any]) -> None:
        legacy = doc("Legacy Org", "org", "extend", [("legacy", 5)], scopeTarget="acme", version="1.0")
        resolver = InheritanceResolver(InMemoryPolicyStore([global_policy, legacy]))
        resolved = resolver.resolve_scope(org="acme")
        assert resolved.valid
        assert resolved.chain[1].version == "2.0"

    def test_nested_id_reused_by_child_document(self) -> None:
        """Two valid documents sharing a nested rule ID still merge into a valid policy."""
        parent = with_nested(doc("Parent", "global", "override", [("p1", 10)]), 0, "x")
        child = doc("Child", "org", "override", [("x", 5)], scopeTarget="acme")
        resolver = InheritanceResolver(InMemoryPolicyStore([parent, child]))

        resolved = resolver.resolve_scope(org="acme")
        assert resolved.valid, [issue.code for issue in resolved.issues]
        assert [r.id for r in resolved.policy.rules] == ["x"]
        assert resolved.rule_origins == {"x": "Child"}

    def test_parent_pointer_scope_violation(self, global_policy: dict[str, Any]) -> None:
        repo = doc("Repo", "repo", "override", [("r1", 5)], id="repo-doc", scopeTarget="acme/api")
        org = doc("Org", "org", "extend", [("o1", 5)], scopeTarget="acme", parentPolicyId="repo-doc")
        resolver = InheritanceResolver(InMemoryPolicyStore([global_policy, repo, org]))
        resolved = resolver.resolve_scope(org="acme")
        assert not resolved.valid
        assert IssueCode.INVALID_PARENT_SCOPE in [i.code for i in resolved.errors]

    def test_without_store(self) -> None:
        with pytest.raises(StoreNotBoundError):
            InheritanceResolver(None).resolve_scope(org="acme")


class TestResolvePolicy:
    """Resolution by parentPolicyId."""

    def test_linked_chain(self) -> None:
        base = doc("Base", "global", "override", [("b1", 10)], id="base")
        team = doc("Team", "org", "extend", [("t1", 5)], id="team", scopeTarget="acme", parentPolicyId="base")
        resolved = InheritanceResolver(InMemoryPolicyStore([base, team])).resolve_policy("team")
        assert resolved.valid
        assert [d.name for d in resolved.chain] == ["Base", "Team"]
        assert resolved.rule_origins == {"b1": "Base", "t1": "Team"}

    def test_cycle(self) -> None:
        p1 = doc("P1", "repo", "extend", [("a", 1)], id="p1", scopeTarget="acme/api", parentPolicyId="p2")
        p2 = doc("P2", "org", "extend", [("b", 1)], id="p2", scopeTarget="acme", parentPolicyId="p1")
        resolved = InheritanceResolver(InMemoryPolicyStore([p1, p2])).resolve_policy("p1")
        assert not resolved.valid
        (issue,) = resolved.issues
        assert issue.code == IssueCode.CIRCULAR_INHERITANCE
        assert "p1 -> p2 -> p1" in issue.message
        assert issue.context["cycle"] == ["p1", "p2", "p1"]

    def test_missing_parent(self) -> None:
        orphan = doc("Orphan", "repo", "extend", [("a", 1)], id="orphan", parentPolicyId="ghost")
        resolved = InheritanceResolver(InMemoryPolicyStore([orphan])).resolve_policy("orphan")
        assert [i.code for i in resolved.issues] == [IssueCode.MISSING_PARENT_POLICY]
        assert resolved.issues[0].context["parent_policy_id"] == "ghost"

    def test_parent_must_be_less_specific(self) -> None:
        repo = doc("Repo", "repo", "override", [("a", 1)], id="repo")
        org = doc("Org", "org", "extend", [("b", 1)], id="org", parentPolicyId="repo")
        resolved = InheritanceResolver(InMemoryPolicyStore([repo, org])).resolve_policy("org")
        assert not resolved.valid
        assert [i.code for i in resolved.errors] == [IssueCode.INVALID_PARENT_SCOPE]

    def test_unknown_policy(self, resolver: InheritanceResolver) -> None:
        with pytest.raises(PolicyNotFoundError) as exc_info:
            resolver.resolve_policy("nope")
        assert exc_info.value.policy_id == "nope"
