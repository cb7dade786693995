"""
JSON report generator for Warden.

Generates structured JSON output for programmatic consumption: chain
verification reports, validation results, evaluations, resolutions and
decisions.

Design Principles:
    - Complete data: every issue with its severity, sequence and hashes
    - Consistent schema: same top-level keys across reports
    - Human-readable keys: descriptive snake_case names
    - ISO timestamps: standard datetime format
"""

import json
from datetime import UTC, datetime
from typing import Any

from warden.audit.verify import VerificationReport
from warden.policy.engine import RuleTrace
from warden.policy.inheritance import ResolvedPolicy
from warden.policy.validation import ValidationResult
from warden.schema import EvaluationResult

REPORT_VERSION = "1.0"


def generate_json_report(report: VerificationReport, indent: int = 2) -> str:
    """
    Generate a JSON report for a chain verification.

    Args:
        report: The verification report
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string with the full report
    """
    return to_json(build_report_dict(report), indent=indent)


def build_report_dict(report: VerificationReport) -> dict[str, Any]:
    """Build a report dictionary for a chain verification."""
    stats = report.stats
    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "tenant_id": report.tenant_id,
        "valid": report.valid,
        "verified_at": report.verified_at.isoformat(),
        "duration_ms": report.duration_ms,
        "summary": report.summary,
        "statistics": {
            "total_entries": stats.total_entries,
            "entries_verified": stats.entries_verified,
            "sequence_range": list(stats.sequence_range) if stats.sequence_range else None,
            "time_range": (
                [t.isoformat() for t in stats.time_range] if stats.time_range else None
            ),
            "gaps_detected": stats.gaps_detected,
            "missing_entries": stats.missing_entries,
            "continuity_percent": stats.continuity_percent,
            "high_risk_count": stats.high_risk_count,
        },
        "issues": [
            {
                "type": issue.type.value,
                "severity": issue.severity.value,
                "sequence": issue.sequence,
                "message": issue.message,
                "expected": issue.expected,
                "actual": issue.actual,
            }
            for issue in report.issues
        ],
    }


def build_validation_dict(result: ValidationResult, source: str | None = None) -> dict[str, Any]:
    """Build a dictionary for a validation result."""
    return {
        "report_version": REPORT_VERSION,
        "source": source,
        "valid": result.valid,
        "migrated": result.migrated,
        "original_version": result.original_version,
        "applied_migrations": result.applied_migrations,
        "errors": [issue.model_dump(mode="json") for issue in result.errors],
        "warnings": [issue.model_dump(mode="json") for issue in result.warnings],
        "info": [issue.model_dump(mode="json") for issue in result.info],
    }


def build_evaluation_dict(
    result: EvaluationResult,
    traces: list[RuleTrace] | None = None,
) -> dict[str, Any]:
    """Build a dictionary for an evaluation, optionally with per-rule traces."""
    data = {
        "allowed": result.allowed,
        "effect": result.action.effect.value,
        "matched_rule_id": result.matched_rule_id,
        "matched_rule_name": result.matched_rule_name,
        "reason": result.reason,
        "reasons": result.reasons,
        "action": result.action.model_dump(mode="json", by_alias=True, exclude_none=True),
        "audit": result.audit.model_dump(mode="json", by_alias=True),
    }
    if traces is not None:
        data["rules"] = [
            {
                "rule_id": trace.rule_id,
                "name": trace.name,
                "priority": trace.priority,
                "enabled": trace.enabled,
                "matched": trace.matched,
                "conditions": [
                    {"condition": text, "result": outcome} for text, outcome in trace.conditions
                ],
            }
            for trace in traces
        ]
    return data


def build_resolution_dict(resolved: ResolvedPolicy) -> dict[str, Any]:
    """Build a dictionary for a resolved policy."""
    return {
        "valid": resolved.valid,
        "chain": [
            {"id": document.policy_key, "name": document.name, "scope": document.scope.value}
            for document in resolved.chain
        ],
        "rule_origins": resolved.rule_origins,
        "statistics": resolved.stats.model_dump(),
        "issues": [issue.model_dump(mode="json") for issue in resolved.issues],
        "policy": resolved.policy.to_document() if resolved.policy else None,
    }


def build_decision_dict(decision: Any) -> dict[str, Any]:
    """Build a dictionary for an engine decision."""
    event = decision.event
    return {
        "decision": build_evaluation_dict(decision.result),
        "resolution": {
            "valid": decision.resolved.valid,
            "chain": [document.policy_key for document in decision.resolved.chain],
            "issues": [issue.model_dump(mode="json") for issue in decision.resolved.issues],
        },
        "audit_event": event.model_dump(mode="json", by_alias=True) if event else None,
    }


def to_json(data: Any, indent: int | None = 2) -> str:
    """Serialize report data."""
    return json.dumps(data, indent=indent, default=_json_serializer)


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
