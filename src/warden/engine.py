"""
Decision Engine for Warden.

The Engine is the orchestration layer that turns a request into an
audited decision. It coordinates between:
- Inheritance Resolver: Builds the effective policy for a target
- Policy Cache: Keeps resolved policies per tenant and target
- Policy Evaluator: Decides whether the request is allowed
- Audit Trail: Records every decision in the tenant's hash chain

Decision Flow:
    1. Look up the effective policy in the cache
    2. On a miss: load the chain, validate and migrate each document,
       merge, validate the merge, cache it if valid
    3. Evaluate the merged policy against the request context
    4. Append the decision to the tenant's audit chain

Design Principles:
    - Fail-closed: An invalid effective policy denies the request and is
      recorded with outcome "blocked"
    - Full audit: Every decision is recorded, allowed or not
    - Reproducible: Same policies + context = same decision
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from warden.audit.events import AuditEvent, Correlation, Outcome, compute_hash
from warden.audit.export import AuditExporter, ExportResult
from warden.audit.trail import AuditTrail
from warden.audit.verify import ChainVerifier, VerificationReport
from warden.config import ExportOptions, Settings, VerifyOptions, get_settings
from warden.logging import bind_context
from warden.policy.cache import CacheKey, PolicyCache
from warden.policy.engine import evaluate_policy
from warden.policy.inheritance import InheritanceResolver, ResolvedPolicy
from warden.policy.validation import PolicyValidator
from warden.schema import (
    CURRENT_VERSION,
    Effect,
    EvaluationAudit,
    EvaluationResult,
    PolicyAction,
    PolicyContext,
    PolicyDocument,
)
from warden.store.base import (
    AuditStore,
    PolicyStore,
    as_raw_document,
    document_scope,
    document_target,
)

INVALID_POLICY_REASON = "Effective policy is invalid"


@dataclass(frozen=True)
class Decision:
    """
    Result of a single decide() call.

    Attributes:
        result: The evaluation result (a deny if the policy was invalid)
        resolved: The effective policy and its provenance
        event: The audit event recorded for this decision
    """

    result: EvaluationResult
    resolved: ResolvedPolicy
    event: AuditEvent | None = None

    @property
    def allowed(self) -> bool:
        """Whether the request may proceed."""
        return self.result.allowed


def blocked_result(
    resolved: ResolvedPolicy,
    context: PolicyContext,
    evaluated_at: datetime | None = None,
) -> EvaluationResult:
    """Deny built from the issues that made the effective policy invalid."""
    errors = resolved.errors or resolved.issues
    codes = sorted({issue.code.value for issue in errors})
    reason = f"{INVALID_POLICY_REASON}: {', '.join(codes)}" if codes else INVALID_POLICY_REASON
    source = resolved.chain[-1] if resolved.chain else None
    return EvaluationResult(
        allowed=False,
        action=PolicyAction(effect=Effect.DENY, reason=reason),
        reason=reason,
        reasons=[
            f"[{issue.code.value}] {issue.path + ': ' if issue.path else ''}{issue.message}"
            for issue in errors
        ],
        audit=EvaluationAudit(
            timestamp=evaluated_at or context.environment.timestamp,
            policy_name=source.name if source else "unresolved",
            policy_version=source.version if source else CURRENT_VERSION,
            rules_evaluated=0,
            context_snapshot=context.model_dump(mode="json", by_alias=True),
        ),
    )


class Engine:
    """
    Main decision engine for Warden.

    Usage:
        engine = Engine(policy_store, audit_store)
        decision = engine.decide("acme", context, org="acme", repo="acme/api")
        if not decision.allowed:
            print(decision.result.reason)

    Attributes:
        resolver: Builds effective policies from the policy store
        cache: Resolved-policy cache (None when caching is disabled)
        trail: Audit trail decisions are appended to
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        audit_store: AuditStore | None = None,
        cache: PolicyCache | None = None,
        settings: Settings | None = None,
        trail: AuditTrail | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            policy_store: Source of policy documents
            audit_store: Destination of decision events (None disables auditing)
            cache: Resolved-policy cache (built from settings if omitted)
            settings: Configuration (defaults to environment settings)
            trail: Audit trail (built on audit_store if omitted)
        """
        self.settings = settings or get_settings()
        self.policy_store = policy_store
        self.audit_store = audit_store
        self.validator = PolicyValidator(self.settings.validator_options())
        self.resolver = InheritanceResolver(policy_store, self.validator)
        if cache is None and self.settings.cache_enabled:
            cache = PolicyCache(self.settings.cache_config())
        self.cache = cache
        self.trail = trail or AuditTrail(audit_store)
        self.verifier = ChainVerifier(audit_store)
        self.exporter = AuditExporter(self.settings.export_options())

    # =========================================================================
    # Resolution
    # =========================================================================

    def effective_policy(
        self,
        tenant_id: str,
        org: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
    ) -> ResolvedPolicy:
        """Effective policy for a target, served from the cache when possible."""
        def load() -> ResolvedPolicy:
            return self.resolver.resolve_scope(org, repo, branch)

        if self.cache is None:
            return load()
        return self.cache.get_or_resolve(CacheKey.for_scope(tenant_id, org, repo, branch), load)

    def effective_policy_for(self, tenant_id: str, policy_id: str) -> ResolvedPolicy:
        """Effective policy of one document and its parentPolicyId ancestors."""
        def load() -> ResolvedPolicy:
            return self.resolver.resolve_policy(policy_id)

        if self.cache is None:
            return load()
        return self.cache.get_or_resolve(CacheKey.for_policy(tenant_id, policy_id), load)

    def put_policy(self, document: dict[str, Any] | PolicyDocument) -> str:
        """
        Store a document and drop cached resolutions it can change.

        That is every resolution whose chain used the previous version of
        the document, plus every target its scope now reaches.
        """
        raw = as_raw_document(document)
        key = self.policy_store.put_policy(raw)
        if self.cache is not None:
            self.cache.invalidate_policy(key)
            self.cache.invalidate_scope(document_scope(raw), document_target(raw))
        return key

    def invalidate_policy(self, policy_id: str) -> int:
        """Drop cached resolutions whose chain includes policy_id."""
        if self.cache is None:
            return 0
        return self.cache.invalidate_policy(policy_id)

    # =========================================================================
    # Decisions
    # =========================================================================

    def decide(
        self,
        tenant_id: str,
        context: PolicyContext,
        org: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
        correlation: Correlation | None = None,
        evaluated_at: datetime | None = None,
    ) -> Decision:
        """
        Decide a request and record the decision.

        Args:
            tenant_id: Tenant whose audit chain records the decision
            context: The request being decided
            org/repo/branch: Target used to resolve the effective policy
            correlation: Trace identifiers for the audit event
            evaluated_at: Timestamp for the result's audit block

        Returns:
            Decision with the result, the effective policy and the event
        """
        resolved = self.effective_policy(tenant_id, org, repo, branch)

        if resolved.valid:
            result = evaluate_policy(resolved.policy, context, evaluated_at=evaluated_at)
            outcome = None
            policy_hash = compute_hash(resolved.policy.to_document())
        else:
            result = blocked_result(resolved, context, evaluated_at)
            outcome = Outcome.BLOCKED
            policy_hash = None

        event = None
        if self.audit_store is not None:
            event = self.trail.record_decision(
                tenant_id,
                context,
                result,
                correlation=correlation,
                policy_hash=policy_hash,
                outcome=outcome,
            )

        log = bind_context(tenant_id=tenant_id, request_id=context.environment.request_id)
        log.info(
            "policy_decision",
            allowed=result.allowed,
            effect=result.action.effect.value,
            matched_rule_id=result.matched_rule_id,
            blocked=outcome == Outcome.BLOCKED,
            sequence=event.sequence if event else None,
        )
        return Decision(result=result, resolved=resolved, event=event)

    # =========================================================================
    # Audit
    # =========================================================================

    def verify(self, tenant_id: str, options: VerifyOptions | None = None) -> VerificationReport:
        """Verify a tenant's audit chain."""
        return self.verifier.verify(tenant_id, options or self.settings.verify_options())

    def export(
        self,
        tenant_id: str,
        options: ExportOptions | None = None,
        start: int | None = None,
        end: int | None = None,
    ) -> ExportResult:
        """Export a tenant's audit events."""
        events = self.trail.events(tenant_id, start, end)
        return self.exporter.export(events, options)
