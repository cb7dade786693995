"""
Unit tests for the storage layer.

Tests cover:
- Document keys
- Policy storage in memory and SQLite
- Scope chains
- Audit chains: append, ranges, head, integrity, soft-marks
- SQLite persistence across connections
"""

from collections.abc import Generator
from pathlib import Path

import pytest

from warden.audit.trail import AuditTrail
from warden.audit.verify import ChainVerifier
from warden.errors import StorageIntegrityError
from warden.schema import PolicyDocument, Scope
from warden.store import InMemoryAuditStore, InMemoryPolicyStore, WardenDB, document_key
from warden.store.base import AuditStore, PolicyStore, raw_field


@pytest.fixture(params=["memory", "sqlite"])
def policy_backend(request, temp_dir: Path) -> Generator[PolicyStore, None, None]:
    if request.param == "memory":
        yield InMemoryPolicyStore()
        return
    db = WardenDB(temp_dir / "policies.db")
    yield db
    db.close()


@pytest.fixture(params=["memory", "sqlite"])
def audit_backend(request, temp_dir: Path) -> Generator[AuditStore, None, None]:
    if request.param == "memory":
        yield InMemoryAuditStore()
        return
    db = WardenDB(temp_dir / "audit.db")
    yield db
    db.close()


class TestDocumentKeys:
    """Tests for document_key() and raw_field()."""

    def test_explicit_id(self) -> None:
        assert document_key({"id": "custom", "name": "x"}) == "custom"

    def test_derived_key(self, global_policy, repo_policy) -> None:
        assert document_key(global_policy) == "global:default:Global Baseline"
        assert document_key(repo_policy) == "repo:acme/api:API Repo Policy"

    def test_matches_model_key(self, repo_policy) -> None:
        assert document_key(repo_policy) == PolicyDocument.model_validate(repo_policy).policy_key

    def test_raw_field_accepts_snake_case(self) -> None:
        assert raw_field({"scope_target": "acme"}, "scopeTarget") == "acme"
        assert raw_field({"scopeTarget": "acme"}, "scopeTarget") == "acme"
        assert raw_field({}, "scopeTarget", "dflt") == "dflt"


class TestPolicyStore:
    """Behavior shared by both policy backends."""

    def test_put_and_get(self, policy_backend: PolicyStore, org_policy) -> None:
        key = policy_backend.put_policy(org_policy)
        assert key == "org:acme:Acme Org Policy"
        assert policy_backend.get_policy(key) == org_policy

    def test_get_missing(self, policy_backend: PolicyStore) -> None:
        assert policy_backend.get_policy("nope") is None

    def test_put_replaces(self, policy_backend: PolicyStore, org_policy) -> None:
        key = policy_backend.put_policy(org_policy)
        policy_backend.put_policy({**org_policy, "description": "updated"})
        stored = policy_backend.get_policy(key)
        assert stored is not None
        assert stored["description"] == "updated"

    def test_put_model(self, policy_backend: PolicyStore, repo_policy) -> None:
        key = policy_backend.put_policy(PolicyDocument.model_validate(repo_policy))
        stored = policy_backend.get_policy(key)
        assert stored is not None
        assert stored["scopeTarget"] == "acme/api"

    def test_returned_documents_are_snapshots(self, policy_backend: PolicyStore, org_policy) -> None:
        key = policy_backend.put_policy(org_policy)
        fetched = policy_backend.get_policy(key)
        assert fetched is not None
        fetched["rules"].clear()
        assert policy_backend.get_policy(key)["rules"]

    def test_policies_for_scope(self, policy_backend: PolicyStore, global_policy, org_policy) -> None:
        policy_backend.put_policy(global_policy)
        policy_backend.put_policy(org_policy)
        assert [d["name"] for d in policy_backend.get_policies_for_scope(Scope.GLOBAL, None)] == [
            "Global Baseline"
        ]
        assert [d["name"] for d in policy_backend.get_policies_for_scope("org", "acme")] == [
            "Acme Org Policy"
        ]
        assert policy_backend.get_policies_for_scope("org", "globex") == []

    def test_policy_chain(self, policy_backend: PolicyStore, global_policy, org_policy, repo_policy) -> None:
        for document in (repo_policy, org_policy, global_policy):
            policy_backend.put_policy(document)
        chain = policy_backend.get_policy_chain(org="acme", repo="acme/api")
        assert [d["name"] for d in chain] == ["Global Baseline", "Acme Org Policy", "API Repo Policy"]
        assert [d["name"] for d in policy_backend.get_policy_chain(org="acme")] == [
            "Global Baseline",
            "Acme Org Policy",
        ]


class TestAuditStore:
    """Behavior shared by both audit backends."""

    @pytest.fixture
    def backend_trail(self, audit_backend: AuditStore, clock) -> AuditTrail:
        return AuditTrail(audit_backend, clock=clock)

    def test_append_and_read(self, audit_backend: AuditStore, backend_trail: AuditTrail, make_draft) -> None:
        for i in range(3):
            backend_trail.append("acme", make_draft(index=i))
        events = audit_backend.get_audit_events("acme")
        assert [e.sequence for e in events] == [0, 1, 2]
        assert events[2].details == {"index": 2}
        assert audit_backend.get_latest_audit_event("acme").sequence == 2

    def test_range(self, audit_backend: AuditStore, backend_trail: AuditTrail, make_draft) -> None:
        for _ in range(5):
            backend_trail.append("acme", make_draft())
        assert [e.sequence for e in audit_backend.get_audit_events("acme", start=3)] == [3, 4]
        assert [e.sequence for e in audit_backend.get_audit_events("acme", end=1)] == [0, 1]

    def test_empty_tenant(self, audit_backend: AuditStore) -> None:
        assert audit_backend.get_audit_events("nobody") == []
        assert audit_backend.get_latest_audit_event("nobody") is None

    def test_duplicate_sequence_rejected(
        self, audit_backend: AuditStore, backend_trail: AuditTrail, make_draft
    ) -> None:
        event = backend_trail.append("acme", make_draft())
        with pytest.raises(StorageIntegrityError):
            audit_backend.append_audit_event("acme", event.model_copy(update={"event_id": "evt-other"}))

    def test_round_trip_keeps_hashes_verifiable(
        self, audit_backend: AuditStore, backend_trail: AuditTrail, make_draft
    ) -> None:
        backend_trail.append("acme", make_draft(note="ünïcode", amount=12.5, tags=["a", "b"]))
        backend_trail.append("acme", make_draft())
        assert ChainVerifier(audit_backend).verify("acme").valid

    def test_mark(self, audit_backend: AuditStore, backend_trail: AuditTrail, make_draft) -> None:
        original = backend_trail.append("acme", make_draft(secret="x"))
        assert audit_backend.mark_audit_event("acme", 0, {"redacted": True})
        marked = audit_backend.get_audit_events("acme")[0]
        assert marked.details == {"redacted": True}
        assert marked.hash == original.hash
        assert not audit_backend.mark_audit_event("acme", 42, {})


class TestWardenDB:
    """SQLite-specific behavior."""

    def test_persists_across_connections(self, temp_dir: Path, org_policy, clock, make_draft) -> None:
        path = temp_dir / "warden.db"
        with WardenDB(path) as db:
            db.put_policy(org_policy)
            AuditTrail(db, clock=clock).append("acme", make_draft())

        with WardenDB(path) as db:
            assert db.list_policy_ids() == ["org:acme:Acme Org Policy"]
            assert db.list_tenants() == ["acme"]
            assert len(db.get_audit_events("acme")) == 1

    def test_in_memory_database(self, org_policy) -> None:
        db = WardenDB(":memory:")
        db.put_policy(org_policy)
        assert db.get_policy("org:acme:Acme Org Policy") is not None
        db.close()

    def test_schema_version_recorded(self, temp_dir: Path) -> None:
        with WardenDB(temp_dir / "v.db") as db:
            row = db._conn.execute("SELECT version FROM schema_version").fetchone()
            assert row["version"] == 1


class TestInMemoryStores:
    """Helpers only the in-memory stores provide."""

    def test_policy_ids_and_len(self, policy_store: InMemoryPolicyStore) -> None:
        assert len(policy_store) == 3
        assert policy_store.list_policy_ids()[0] == "global:default:Global Baseline"

    def test_tenants(self, populated_trail: AuditTrail, audit_store: InMemoryAuditStore) -> None:
        assert audit_store.tenants() == ["acme"]
