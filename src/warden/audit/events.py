"""
Audit event models and hash chaining.

Every tenant has its own append-only chain. Each event records the hash of
its predecessor, so any edit, insertion or deletion is detectable by
recomputing hashes from the start of the chain.

Canonical encoding:
    The hashed payload is the event's JSON-mode dump (camelCase keys,
    ISO-8601 UTC timestamps) with the "hash" field removed, serialized
    with sorted keys, compact separators and ensure_ascii=False, then
    UTF-8 encoded. The predecessor hash is part of that payload and is
    also appended to it:

        hash = sha256(canonical(event - hash) + (previousHash or ""))

    Sequences start at 0; the first event has previousHash = None.
"""

import hashlib
import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from warden.schema import WardenModel

# Event types written by Warden itself
POLICY_ALLOW = "policy.allow"
POLICY_DENY = "policy.deny"
CHAIN_BREAK_POINT = "audit.chain.break_point"

HIGH_RISK_EVENT_TYPES = frozenset({
    "git.force_push.attempted",
    "git.branch.deleted",
    "git.pr.merged",
    "secret.accessed",
    "secret.deleted",
    "secret.exposure.detected",
    "data.deleted",
    "data.exported",
    "tenant.deleted",
    "tenant.suspended",
    "rbac.role.changed",
    "rbac.role.removed",
    "connector.permission.granted",
    POLICY_DENY,
    "api.key.created",
    "api.key.revoked",
    "billing.subscription.updated",
})


def is_high_risk(event_type: str) -> bool:
    """Whether events of this type are flagged high-risk."""
    return event_type in HIGH_RISK_EVENT_TYPES


# =============================================================================
# Enums
# =============================================================================


class ActorType(str, Enum):
    """Kinds of principals that cause audit events."""

    USER = "user"
    AGENT = "agent"
    SERVICE = "service"
    SYSTEM = "system"
    WEBHOOK = "webhook"
    SCHEDULER = "scheduler"
    API_KEY = "api_key"


class Outcome(str, Enum):
    """What happened to the audited action."""

    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"
    BLOCKED = "blocked"
    PARTIAL = "partial"
    PENDING = "pending"


class EvidenceType(str, Enum):
    """Kinds of evidence attached to an event."""

    ARTIFACT = "artifact"
    LOG = "log"
    SNAPSHOT = "snapshot"
    SIGNATURE = "signature"
    ATTESTATION = "attestation"
    DIFF = "diff"
    APPROVAL = "approval"
    POLICY_EVAL = "policy_eval"


# =============================================================================
# Models
# =============================================================================


class AuditActor(WardenModel):
    """Who caused the event."""

    type: ActorType
    id: str = Field(..., min_length=1)
    display_name: str | None = None
    ip_address: str | None = None


class AuditResource(WardenModel):
    """What the event is about."""

    type: str
    id: str
    name: str | None = None
    parent_id: str | None = None


class Correlation(WardenModel):
    """Identifiers that tie an event to traces, runs and requests."""

    trace_id: str | None = None
    span_id: str | None = None
    run_id: str | None = None
    request_id: str | None = None
    session_id: str | None = None
    causation_id: str | None = None


class Evidence(WardenModel):
    """A reference to supporting material, optionally with its digest."""

    type: EvidenceType
    ref: str
    hash: str | None = None
    hash_algorithm: str = "sha256"


class AuditEventDraft(WardenModel):
    """
    The caller-supplied part of an event.

    The trail fills in sequence, eventId, timestamp (unless given),
    previousHash, hash and highRisk on append.
    """

    event_type: str = Field(..., min_length=1)
    actor: AuditActor
    resource: AuditResource | None = None
    outcome: Outcome = Outcome.SUCCESS
    correlation: Correlation = Field(default_factory=Correlation)
    evidence: list[Evidence] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None


class AuditEvent(WardenModel):
    """
    One link of a tenant's audit chain.

    Attributes:
        sequence: Position in the tenant chain (0, 1, 2, ...)
        event_id: evt-{epoch_ms}-{sequence}-{random}
        tenant_id: Owning tenant
        timestamp: UTC time the event was appended
        event_type: Dotted name, e.g. "policy.deny"
        previous_hash: Hash of event sequence-1 (None for sequence 0)
        hash: Hash of this event, see module docstring
        high_risk: Set automatically from HIGH_RISK_EVENT_TYPES
    """

    sequence: int = Field(..., ge=0)
    event_id: str
    tenant_id: str = Field(..., min_length=1)
    timestamp: datetime
    event_type: str = Field(..., min_length=1)
    actor: AuditActor
    resource: AuditResource | None = None
    outcome: Outcome = Outcome.SUCCESS
    correlation: Correlation = Field(default_factory=Correlation)
    evidence: list[Evidence] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str | None = None
    hash: str = ""
    high_risk: bool = False

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Store timestamps in UTC; naive values are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    def canonical_json(self) -> str:
        """The canonical encoding of this event without its hash."""
        return canonical_json(self.model_dump(mode="json", by_alias=True, exclude={"hash"}))

    def compute_hash(self) -> str:
        """Recompute this event's hash from its content."""
        return compute_event_hash(self)

    def seal(self) -> "AuditEvent":
        """Return a copy with the hash field set from the content."""
        return self.model_copy(update={"hash": self.compute_hash()})


# =============================================================================
# Queries
# =============================================================================


class SortOrder(str, Enum):
    """Order of query results by sequence."""

    ASC = "asc"
    DESC = "desc"


class AuditQuery(WardenModel):
    """
    Filters for searching one tenant's events.

    Every filter that is set must match. Time and sequence bounds are
    inclusive. Matching events are counted, ordered by sequence (newest
    first by default), then paginated with offset and limit.
    """

    actor_id: str | None = None
    actor_type: ActorType | None = None
    event_type: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    outcome: Outcome | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    start_sequence: int | None = Field(default=None, ge=0)
    end_sequence: int | None = Field(default=None, ge=0)
    high_risk_only: bool = False
    limit: int | None = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
    sort_order: SortOrder = SortOrder.DESC

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_bounds(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    def matches(self, event: AuditEvent) -> bool:
        """Whether an event passes every filter (pagination aside)."""
        resource = event.resource
        checks = (
            self.actor_id is None or event.actor.id == self.actor_id,
            self.actor_type is None or event.actor.type == self.actor_type,
            self.event_type is None or event.event_type == self.event_type,
            self.resource_type is None or (resource is not None and resource.type == self.resource_type),
            self.resource_id is None or (resource is not None and resource.id == self.resource_id),
            self.outcome is None or event.outcome == self.outcome,
            self.start_time is None or event.timestamp >= self.start_time,
            self.end_time is None or event.timestamp <= self.end_time,
            self.start_sequence is None or event.sequence >= self.start_sequence,
            self.end_sequence is None or event.sequence <= self.end_sequence,
            not self.high_risk_only or event.high_risk,
        )
        return all(checks)

    def unpaged(self) -> "AuditQuery":
        """The same filters without limit or offset."""
        return self.model_copy(update={"limit": None, "offset": 0})


class AuditQueryResult(WardenModel):
    """One page of query results."""

    events: list[AuditEvent] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


def paginate(events: list[AuditEvent], query: AuditQuery) -> AuditQueryResult:
    """Order and slice already-filtered events."""
    ordered = sorted(events, key=lambda e: e.sequence, reverse=query.sort_order == SortOrder.DESC)
    end = None if query.limit is None else query.offset + query.limit
    page = ordered[query.offset:end]
    return AuditQueryResult(
        events=page,
        total_count=len(ordered),
        has_more=query.offset + len(page) < len(ordered),
    )


# =============================================================================
# Hashing
# =============================================================================


def canonical_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators, raw UTF-8."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_event_hash(event: AuditEvent) -> str:
    """SHA-256 of the canonical payload followed by the predecessor hash."""
    payload = event.canonical_json() + (event.previous_hash or "")
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_hash(data: Any) -> str:
    """SHA-256 of arbitrary JSON-compatible data (or a string) in canonical form."""
    if isinstance(data, str):
        content = data
    else:
        content = canonical_json(data)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
