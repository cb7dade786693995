"""
Audit module for Warden.

Every policy decision (and any other event an integration records) is
appended to a per-tenant hash chain. The chain can be verified end to end
and exported for SIEM ingestion.

Components:
    - AuditTrail: append, record_decision, soft_mark, query, count
    - ChainVerifier / verify_chain: enumerate integrity issues
    - AuditExporter: json, jsonl, csv, cef, syslog, optionally HMAC-signed
    - Redactor: strip secrets and PII before export
"""

from warden.audit.events import (
    HIGH_RISK_EVENT_TYPES,
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
    SortOrder,
    compute_event_hash,
    compute_hash,
)
from warden.audit.export import (
    AuditExporter,
    ExportResult,
    ExportSignature,
    sign_export,
    verify_export_signature,
)
from warden.audit.redact import Redactor
from warden.audit.trail import AuditTrail
from warden.audit.verify import (
    ChainVerifier,
    IntegrityIssue,
    IssueSeverity,
    IssueType,
    VerificationReport,
    verify_chain,
)

__all__ = [
    "HIGH_RISK_EVENT_TYPES",
    "ActorType",
    "AuditActor",
    "AuditEvent",
    "AuditEventDraft",
    "AuditQuery",
    "AuditQueryResult",
    "AuditResource",
    "Correlation",
    "Evidence",
    "EvidenceType",
    "Outcome",
    "SortOrder",
    "compute_event_hash",
    "compute_hash",
    "AuditExporter",
    "ExportResult",
    "ExportSignature",
    "sign_export",
    "verify_export_signature",
    "Redactor",
    "AuditTrail",
    "ChainVerifier",
    "IntegrityIssue",
    "IssueSeverity",
    "IssueType",
    "VerificationReport",
    "verify_chain",
]
