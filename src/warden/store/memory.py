"""
In-memory stores.

Used by tests, by the CLI when no database is given, and as the reference
behaviour for other backends. Each store guards its state with one lock
and hands out copies, so readers never observe a half-applied write.
"""

import copy
import threading
from collections.abc import Mapping
from typing import Any

from warden.audit.events import AuditEvent, AuditQuery, AuditQueryResult, paginate
from warden.errors import StorageIntegrityError
from warden.schema import PolicyDocument, Scope
from warden.store.base import (
    GLOBAL_TARGET,
    AuditStore,
    PolicyStore,
    as_raw_document,
    document_key,
    document_scope,
    document_target,
)


class InMemoryPolicyStore(PolicyStore):
    """Dict-backed policy store keyed by document key."""

    def __init__(self, documents: list[Mapping[str, Any] | PolicyDocument] | None = None) -> None:
        self._policies: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        for document in documents or []:
            self.put_policy(document)

    def get_policy(self, policy_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._policies.get(policy_id)
            return copy.deepcopy(document) if document is not None else None

    def get_policies_for_scope(self, scope: Scope | str, target: str | None) -> list[dict[str, Any]]:
        scope_value = scope.value if isinstance(scope, Scope) else scope
        target = target or GLOBAL_TARGET
        with self._lock:
            return [
                copy.deepcopy(document)
                for document in self._policies.values()
                if document_scope(document) == scope_value and document_target(document) == target
            ]

    def put_policy(self, document: Mapping[str, Any] | PolicyDocument) -> str:
        raw = copy.deepcopy(as_raw_document(document))
        key = document_key(raw)
        with self._lock:
            self._policies[key] = raw
        return key

    def list_policy_ids(self) -> list[str]:
        """Keys of all stored documents in insertion order."""
        with self._lock:
            return list(self._policies)

    def __len__(self) -> int:
        return len(self._policies)


class InMemoryAuditStore(AuditStore):
    """Per-tenant lists of frozen events."""

    def __init__(self) -> None:
        self._events: dict[str, list[AuditEvent]] = {}
        self._lock = threading.Lock()

    def append_audit_event(self, tenant_id: str, event: AuditEvent) -> None:
        with self._lock:
            chain = self._events.setdefault(tenant_id, [])
            if chain and chain[-1].sequence >= event.sequence:
                raise StorageIntegrityError(
                    operation="append_audit_event",
                    message=(
                        f"Sequence {event.sequence} already exists for tenant {tenant_id} "
                        f"(head is {chain[-1].sequence})"
                    ),
                )
            chain.append(event)

    def get_audit_events(
        self,
        tenant_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> list[AuditEvent]:
        with self._lock:
            chain = list(self._events.get(tenant_id, []))
        return [
            event
            for event in chain
            if (start is None or event.sequence >= start) and (end is None or event.sequence <= end)
        ]

    def get_latest_audit_event(self, tenant_id: str) -> AuditEvent | None:
        with self._lock:
            chain = self._events.get(tenant_id)
            return chain[-1] if chain else None

    def query_audit_events(self, tenant_id: str, query: AuditQuery) -> AuditQueryResult:
        with self._lock:
            chain = list(self._events.get(tenant_id, []))
        return paginate([event for event in chain if query.matches(event)], query)

    def count_audit_events(self, tenant_id: str, query: AuditQuery | None = None) -> int:
        with self._lock:
            chain = list(self._events.get(tenant_id, []))
        if query is None:
            return len(chain)
        return sum(1 for event in chain if query.matches(event))

    def mark_audit_event(self, tenant_id: str, sequence: int, details: dict[str, Any]) -> bool:
        with self._lock:
            chain = self._events.get(tenant_id, [])
            for index, event in enumerate(chain):
                if event.sequence == sequence:
                    chain[index] = event.model_copy(update={"details": dict(details)})
                    return True
        return False

    def replace_audit_event(self, tenant_id: str, event: AuditEvent) -> None:
        """
        Overwrite the stored event with the same sequence.

        Bypasses every append check. Exists so tamper scenarios can be
        reproduced in tests; never call it from application code.
        """
        with self._lock:
            chain = self._events.get(tenant_id, [])
            for index, existing in enumerate(chain):
                if existing.sequence == event.sequence:
                    chain[index] = event
                    return
            chain.append(event)
            chain.sort(key=lambda e: e.sequence)

    def delete_audit_event(self, tenant_id: str, sequence: int) -> None:
        """Remove one event (tamper simulation for tests)."""
        with self._lock:
            chain = self._events.get(tenant_id, [])
            self._events[tenant_id] = [e for e in chain if e.sequence != sequence]

    def tenants(self) -> list[str]:
        """Tenants with at least one event."""
        with self._lock:
            return [t for t, chain in self._events.items() if chain]
