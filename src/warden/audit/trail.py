"""
Append side of the audit trail.

AuditTrail turns drafts into chained events and hands them to an
AuditStore. Appends for one tenant are serialized with a per-tenant lock
so sequences stay contiguous; different tenants never contend.

Policy decisions are recorded as policy.allow / policy.deny events whose
evidence carries the hash of the policy that made the decision.
"""

import secrets
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from warden.audit.events import (
    CHAIN_BREAK_POINT,
    POLICY_ALLOW,
    POLICY_DENY,
    ActorType,
    AuditActor,
    AuditEvent,
    AuditEventDraft,
    AuditQuery,
    AuditQueryResult,
    AuditResource,
    Correlation,
    Evidence,
    EvidenceType,
    Outcome,
    compute_hash,
    is_high_risk,
)
from warden.errors import (
    AuditAppendError,
    AuditEventNotFoundError,
    StorageError,
    StoreNotBoundError,
)
from warden.schema import Effect, EvaluationResult, PolicyContext
from warden.store.base import AuditStore

logger = structlog.get_logger()

_ACTOR_TYPES = {member.value for member in ActorType}


def generate_event_id(timestamp: datetime, sequence: int) -> str:
    """evt-{epoch_ms}-{sequence}-{6 random hex chars}"""
    epoch_ms = int(timestamp.timestamp() * 1000)
    return f"evt-{epoch_ms}-{sequence}-{secrets.token_hex(3)}"


def decision_outcome(result: EvaluationResult) -> Outcome:
    """Map a decision to an event outcome."""
    if result.action.effect == Effect.REQUIRE_APPROVAL:
        return Outcome.PENDING
    return Outcome.SUCCESS if result.allowed else Outcome.DENIED


class AuditTrail:
    """
    Per-tenant hash-chained event log.

    Usage:
        trail = AuditTrail(store)
        event = trail.append("acme", AuditEventDraft(
            event_type="secret.accessed",
            actor=AuditActor(type="user", id="alice"),
        ))
        assert event.sequence == 0 and event.previous_hash is None
    """

    def __init__(
        self,
        store: AuditStore | None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the trail.

        Args:
            store: Where events are persisted
            clock: Source of event timestamps (UTC now by default)
        """
        self.store = store
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _require_store(self) -> AuditStore:
        if self.store is None:
            raise StoreNotBoundError(component="AuditTrail")
        return self.store

    def _tenant_lock(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = threading.Lock()
            return lock

    def append(self, tenant_id: str, draft: AuditEventDraft) -> AuditEvent:
        """
        Chain a draft onto a tenant's log.

        Args:
            tenant_id: Owning tenant
            draft: Event content

        Returns:
            The stored event with sequence, hashes and flags filled in

        Raises:
            AuditAppendError: If the store rejects the event
        """
        store = self._require_store()

        with self._tenant_lock(tenant_id):
            latest = store.get_latest_audit_event(tenant_id)
            sequence = 0 if latest is None else latest.sequence + 1
            timestamp = draft.timestamp or self._clock()
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=UTC)

            event = AuditEvent(
                sequence=sequence,
                event_id=generate_event_id(timestamp, sequence),
                tenant_id=tenant_id,
                timestamp=timestamp,
                event_type=draft.event_type,
                actor=draft.actor,
                resource=draft.resource,
                outcome=draft.outcome,
                correlation=draft.correlation,
                evidence=draft.evidence,
                details=draft.details,
                previous_hash=None if latest is None else latest.hash,
                high_risk=is_high_risk(draft.event_type),
            ).seal()

            try:
                store.append_audit_event(tenant_id, event)
            except StorageError as e:
                logger.error(
                    "audit_append_failed",
                    tenant_id=tenant_id,
                    sequence=sequence,
                    error=e.message,
                )
                raise AuditAppendError(
                    tenant_id=tenant_id,
                    sequence=sequence,
                    underlying_error=e.message,
                ) from e

        logger.info(
            "audit_event_appended",
            tenant_id=tenant_id,
            sequence=event.sequence,
            event_type=event.event_type,
            high_risk=event.high_risk,
        )
        return event

    def record_decision(
        self,
        tenant_id: str,
        context: PolicyContext,
        result: EvaluationResult,
        correlation: Correlation | None = None,
        policy_hash: str | None = None,
        outcome: Outcome | None = None,
    ) -> AuditEvent:
        """
        Record a policy decision.

        Args:
            tenant_id: Owning tenant
            context: What was evaluated
            result: The decision
            correlation: Trace identifiers (defaults to the request ID)
            policy_hash: Hash of the effective policy document
            outcome: Override the outcome derived from the result

        Returns:
            The appended event (policy.allow or policy.deny)
        """
        actor_type = context.actor.type if context.actor.type in _ACTOR_TYPES else ActorType.SYSTEM
        reference = f"{result.audit.policy_name}@{result.audit.policy_version}"

        draft = AuditEventDraft(
            event_type=POLICY_ALLOW if result.allowed else POLICY_DENY,
            actor=AuditActor(
                type=actor_type,
                id=context.actor.id or "unknown",
                ip_address=context.environment.ip_address,
            ),
            resource=AuditResource(
                type=context.resource.type or "unknown",
                id=context.resource.id or "unknown",
            ),
            outcome=outcome or decision_outcome(result),
            correlation=correlation or Correlation(request_id=context.environment.request_id),
            evidence=[
                Evidence(
                    type=EvidenceType.POLICY_EVAL,
                    ref=reference,
                    hash=policy_hash or compute_hash(result.model_dump(mode="json", by_alias=True)),
                )
            ],
            details=_decision_details(context, result),
        )
        return self.append(tenant_id, draft)

    def soft_mark(
        self,
        tenant_id: str,
        sequence: int,
        reason: str,
        actor: AuditActor,
    ) -> AuditEvent:
        """
        Redact one event's details and record a break point.

        The marked event keeps its original hash, so verification reports
        an acknowledged break at that sequence instead of tampering.

        Returns:
            The appended audit.chain.break_point event

        Raises:
            AuditEventNotFoundError: If the sequence does not exist
        """
        store = self._require_store()
        marked = store.mark_audit_event(
            tenant_id,
            sequence,
            {"redacted": True, "reason": reason},
        )
        if not marked:
            raise AuditEventNotFoundError(tenant_id=tenant_id, sequence=sequence)

        logger.info("audit_event_soft_marked", tenant_id=tenant_id, sequence=sequence)
        return self.append(
            tenant_id,
            AuditEventDraft(
                event_type=CHAIN_BREAK_POINT,
                actor=actor,
                resource=AuditResource(type="audit_event", id=str(sequence)),
                details={"markedSequence": sequence, "reason": reason},
            ),
        )

    def events(
        self,
        tenant_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> list[AuditEvent]:
        """Events with start <= sequence <= end."""
        return self._require_store().get_audit_events(tenant_id, start, end)

    def query(self, tenant_id: str, query: AuditQuery | None = None) -> AuditQueryResult:
        """
        Search a tenant's events by actor, type, resource, outcome and time.

        Usage:
            page = trail.query("acme", AuditQuery(actor_id="alice", high_risk_only=True))
            for event in page.events:
                ...
        """
        return self._require_store().query_audit_events(tenant_id, query or AuditQuery())

    def count(self, tenant_id: str, query: AuditQuery | None = None) -> int:
        """Number of a tenant's events matching query (all of them if None)."""
        return self._require_store().count_audit_events(tenant_id, query)


def _decision_details(context: PolicyContext, result: EvaluationResult) -> dict[str, Any]:
    return {
        "action": context.action,
        "allowed": result.allowed,
        "effect": result.action.effect.value,
        "reason": result.reason,
        "reasons": list(result.reasons),
        "matchedRuleId": result.matched_rule_id,
        "policyName": result.audit.policy_name,
        "policyVersion": result.audit.policy_version,
        "rulesEvaluated": result.audit.rules_evaluated,
    }
