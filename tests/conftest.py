"""
Pytest configuration and fixtures for Warden tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import logging
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Generator

import pytest
import structlog

from warden.audit.events import ActorType, AuditActor, AuditEventDraft, AuditResource
from warden.audit.trail import AuditTrail
from warden.schema import PolicyContext
from warden.store import InMemoryAuditStore, InMemoryPolicyStore

T0 = datetime(2026, 3, 2, 14, 30, tzinfo=UTC)  # a Monday


def pytest_configure(config: pytest.Config) -> None:
    """Keep structlog quiet during test runs."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING))


class StepClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Policy Documents
# =============================================================================


@pytest.fixture
def global_policy() -> dict[str, Any]:
    """Global baseline: block force pushes, allow reads."""
    return {
        "version": "2.0",
        "scope": "global",
        "name": "Global Baseline",
        "defaultAction": {"effect": "deny", "reason": "Denied by default"},
        "rules": [
            {
                "id": "block-force-push",
                "name": "Block force push",
                "priority": 10,
                "conditions": [{"field": "action", "operator": "eq", "value": "force_push"}],
                "action": {"effect": "deny", "reason": "Force pushes are never allowed"},
            },
            {
                "id": "allow-read",
                "name": "Allow reads",
                "priority": 100,
                "conditions": [{"field": "action", "operator": "eq", "value": "read"}],
                "action": {"effect": "allow", "reason": "Reads are allowed"},
            },
        ],
    }


@pytest.fixture
def org_policy() -> dict[str, Any]:
    """Org policy for acme: admins may merge (extends the baseline)."""
    return {
        "version": "2.0",
        "scope": "org",
        "scopeTarget": "acme",
        "name": "Acme Org Policy",
        "inheritance": "extend",
        "rules": [
            {
                "id": "allow-merge-admins",
                "name": "Admins may merge",
                "priority": 50,
                "conditions": [
                    {"field": "action", "operator": "eq", "value": "merge"},
                    {"type": "author", "roles": ["admin"]},
                ],
                "action": {"effect": "allow", "reason": "Admins may merge"},
            },
        ],
    }


@pytest.fixture
def repo_policy() -> dict[str, Any]:
    """Repo policy for acme/api: large changes need two approvals."""
    return {
        "version": "2.0",
        "scope": "repo",
        "scopeTarget": "acme/api",
        "name": "API Repo Policy",
        "inheritance": "override",
        "rules": [
            {
                "id": "review-large-changes",
                "name": "Review large changes",
                "priority": 20,
                "conditions": [{"type": "complexity", "operator": "gte", "threshold": 7}],
                "action": {
                    "effect": "require_approval",
                    "reason": "Large changes need review",
                    "approval": {"minApprovers": 2, "timeoutHours": 48},
                },
            },
        ],
    }


@pytest.fixture
def policy_store(
    global_policy: dict[str, Any],
    org_policy: dict[str, Any],
    repo_policy: dict[str, Any],
) -> InMemoryPolicyStore:
    """In-memory store holding the global, org and repo documents."""
    return InMemoryPolicyStore([global_policy, org_policy, repo_policy])


# =============================================================================
# Contexts
# =============================================================================


@pytest.fixture
def make_context() -> Callable[..., PolicyContext]:
    """Factory for request contexts."""

    def _make(
        action: str = "read",
        actor_type: str = "user",
        actor_id: str = "alice",
        roles: tuple[str, ...] = (),
        timestamp: datetime | None = T0,
        **attributes: Any,
    ) -> PolicyContext:
        return PolicyContext.model_validate({
            "actor": {"type": actor_type, "id": actor_id, "roles": list(roles)},
            "action": action,
            "resource": {"type": "pull_request", "id": "42", "attributes": attributes},
            "environment": {"timestamp": timestamp, "ipAddress": "10.0.0.7", "requestId": "req-1"},
        })

    return _make


# =============================================================================
# Audit
# =============================================================================


@pytest.fixture
def clock() -> StepClock:
    """Clock advancing one second per event."""
    return StepClock()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    """Empty in-memory audit store."""
    return InMemoryAuditStore()


@pytest.fixture
def trail(audit_store: InMemoryAuditStore, clock: StepClock) -> AuditTrail:
    """Audit trail on the in-memory store with a deterministic clock."""
    return AuditTrail(audit_store, clock=clock)


@pytest.fixture
def make_draft() -> Callable[..., AuditEventDraft]:
    """Factory for event drafts."""

    def _make(event_type: str = "repo.cloned", actor_id: str = "alice", **details: Any) -> AuditEventDraft:
        return AuditEventDraft(
            event_type=event_type,
            actor=AuditActor(type=ActorType.USER, id=actor_id, ip_address="10.0.0.7"),
            resource=AuditResource(type="repository", id="acme/api"),
            details=details,
        )

    return _make


@pytest.fixture
def populated_trail(trail: AuditTrail, make_draft: Callable[..., AuditEventDraft]) -> AuditTrail:
    """Trail with five events for tenant acme (sequences 0-4)."""
    for i in range(5):
        trail.append("acme", make_draft(index=i))
    return trail
