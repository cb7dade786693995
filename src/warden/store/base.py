"""
Abstract store interfaces.

The policy engine reaches persistence only through these two interfaces.
Stores hold raw policy mappings (not models) because documents written
at older schema versions must pass through migration on every read.

Implementations must return snapshots: callers may mutate what they get
back without affecting the store.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from warden.schema import PolicyDocument, Scope, policy_key

if TYPE_CHECKING:
    from warden.audit.events import AuditEvent, AuditQuery, AuditQueryResult

# Target used for global-scope documents, which have none
GLOBAL_TARGET = "default"


def raw_field(document: Mapping[str, Any], name: str, default: Any = None) -> Any:
    """Read a camelCase field from a raw document, accepting snake_case too."""
    if name in document:
        return document[name]
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in name)
    return document.get(snake, default)


def document_scope(document: Mapping[str, Any]) -> str:
    """Scope of a raw document as a string (repo when absent)."""
    scope = raw_field(document, "scope", Scope.REPO.value)
    return scope.value if isinstance(scope, Scope) else str(scope)


def document_target(document: Mapping[str, Any]) -> str:
    """Scope target of a raw document ("default" when absent)."""
    target = raw_field(document, "scopeTarget")
    return target if isinstance(target, str) and target.strip() else GLOBAL_TARGET


def document_key(document: Mapping[str, Any]) -> str:
    """Store key for a raw document: explicit id, else scope:target:name."""
    explicit = document.get("id")
    if explicit:
        return str(explicit)
    target = document_target(document)
    return policy_key(
        document_scope(document),
        None if target == GLOBAL_TARGET else target,
        str(document.get("name", "")),
    )


def as_raw_document(document: Mapping[str, Any] | PolicyDocument) -> dict[str, Any]:
    """Convert a model to its persisted form; copy mappings as-is."""
    if isinstance(document, PolicyDocument):
        return document.to_document()
    return dict(document)


class PolicyStore(ABC):
    """Source of raw policy documents."""

    @abstractmethod
    def get_policy(self, policy_id: str) -> dict[str, Any] | None:
        """Return the raw document stored under policy_id, or None."""

    @abstractmethod
    def get_policies_for_scope(self, scope: Scope | str, target: str | None) -> list[dict[str, Any]]:
        """Return raw documents bound to (scope, target) in insertion order."""

    @abstractmethod
    def put_policy(self, document: Mapping[str, Any] | PolicyDocument) -> str:
        """Insert or replace a document; return its store key."""

    def get_policy_chain(
        self,
        org: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Return the documents that apply to a target, least specific first.

        Global documents always apply; org, repo and branch documents apply
        when the corresponding target is given.
        """
        chain = list(self.get_policies_for_scope(Scope.GLOBAL, GLOBAL_TARGET))
        for scope, target in ((Scope.ORG, org), (Scope.REPO, repo), (Scope.BRANCH, branch)):
            if target:
                chain.extend(self.get_policies_for_scope(scope, target))
        return chain


class AuditStore(ABC):
    """Append-only storage for per-tenant audit chains."""

    @abstractmethod
    def append_audit_event(self, tenant_id: str, event: "AuditEvent") -> None:
        """
        Append an event to a tenant's chain.

        Raises:
            StorageIntegrityError: If the sequence already exists
        """

    @abstractmethod
    def get_audit_events(
        self,
        tenant_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> list["AuditEvent"]:
        """Return events with start <= sequence <= end, ordered by sequence."""

    @abstractmethod
    def get_latest_audit_event(self, tenant_id: str) -> "AuditEvent | None":
        """Return the event with the highest sequence, or None."""

    @abstractmethod
    def mark_audit_event(self, tenant_id: str, sequence: int, details: dict[str, Any]) -> bool:
        """
        Replace the stored details of one event (legal redaction).

        The event's hash is left untouched, so verification flags the
        change. Returns False if the sequence does not exist.
        """

    @abstractmethod
    def query_audit_events(self, tenant_id: str, query: "AuditQuery") -> "AuditQueryResult":
        """Return one page of a tenant's events matching query, with the total match count."""

    @abstractmethod
    def count_audit_events(self, tenant_id: str, query: "AuditQuery | None" = None) -> int:
        """Count a tenant's events matching query's filters (all events if None)."""
