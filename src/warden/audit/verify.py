"""
Verification of audit chains.

The verifier walks a tenant's events in sequence order and recomputes
every hash. Problems are never raised; each one becomes an IntegrityIssue
in the VerificationReport, so a single pass enumerates every offending
sequence.

Checks per event:
    - content:   stored hash == recomputed hash
    - link:      previousHash == hash of the preceding event
    - sequence:  no gaps, no duplicates
    - first:     a full-chain walk starts at sequence 0 with no predecessor
    - timestamp: never earlier than the predecessor (beyond the skew
                 tolerance)

A content mismatch at a sequence named by an audit.chain.break_point event
is an acknowledged legal redaction: it is reported at info severity and
does not invalidate the chain.
"""

import time
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from warden.audit.events import CHAIN_BREAK_POINT, AuditEvent, compute_event_hash
from warden.config import VerifyOptions
from warden.errors import StoreNotBoundError
from warden.store.base import AuditStore

logger = structlog.get_logger()


class IssueType(str, Enum):
    """Kinds of integrity problems."""

    CONTENT_HASH_MISMATCH = "content_hash_mismatch"
    CHAIN_LINK_BROKEN = "chain_link_broken"
    SEQUENCE_GAP = "sequence_gap"
    SEQUENCE_DUPLICATE = "sequence_duplicate"
    FIRST_ENTRY_INVALID = "first_entry_invalid"
    TIMESTAMP_REGRESSION = "timestamp_regression"
    ACKNOWLEDGED_BREAK = "acknowledged_break"


class IssueSeverity(str, Enum):
    """Severity of an integrity issue, most severe first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    INFO = "info"


SEVERITY_BY_TYPE: dict[IssueType, IssueSeverity] = {
    IssueType.CONTENT_HASH_MISMATCH: IssueSeverity.CRITICAL,
    IssueType.CHAIN_LINK_BROKEN: IssueSeverity.CRITICAL,
    IssueType.SEQUENCE_GAP: IssueSeverity.HIGH,
    IssueType.SEQUENCE_DUPLICATE: IssueSeverity.HIGH,
    IssueType.FIRST_ENTRY_INVALID: IssueSeverity.HIGH,
    IssueType.TIMESTAMP_REGRESSION: IssueSeverity.MEDIUM,
    IssueType.ACKNOWLEDGED_BREAK: IssueSeverity.INFO,
}

_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(IssueSeverity)}


class IntegrityIssue(BaseModel):
    """One problem found in a chain."""

    model_config = ConfigDict(frozen=True)

    type: IssueType
    severity: IssueSeverity
    sequence: int
    message: str
    expected: str | None = None
    actual: str | None = None


class VerificationStats(BaseModel):
    """Coverage of a verification run."""

    model_config = ConfigDict(frozen=True)

    total_entries: int = 0
    entries_verified: int = 0
    sequence_range: tuple[int, int] | None = None
    time_range: tuple[datetime, datetime] | None = None
    gaps_detected: int = 0
    missing_entries: list[int] = Field(default_factory=list)
    continuity_percent: float = 100.0
    high_risk_count: int = 0


class VerificationReport(BaseModel):
    """
    Outcome of verifying one tenant chain.

    Attributes:
        tenant_id: Chain owner
        valid: True when no issue above info severity was found
        verified_at: When verification ran
        duration_ms: How long it took
        stats: Coverage figures
        issues: Every problem, most severe first, then by sequence
        summary: One-line description
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    valid: bool
    verified_at: datetime
    duration_ms: float
    stats: VerificationStats
    issues: list[IntegrityIssue] = Field(default_factory=list)
    summary: str

    def issues_of(self, issue_type: IssueType) -> list[IntegrityIssue]:
        """Issues of one type."""
        return [issue for issue in self.issues if issue.type == issue_type]


def _issue(
    issue_type: IssueType,
    sequence: int,
    message: str,
    expected: str | None = None,
    actual: str | None = None,
) -> IntegrityIssue:
    return IntegrityIssue(
        type=issue_type,
        severity=SEVERITY_BY_TYPE[issue_type],
        sequence=sequence,
        message=message,
        expected=expected,
        actual=actual,
    )


def acknowledged_sequences(events: Iterable[AuditEvent]) -> set[int]:
    """Sequences named by break-point events."""
    marked = set()
    for event in events:
        if event.event_type != CHAIN_BREAK_POINT:
            continue
        sequence = event.details.get("markedSequence")
        if isinstance(sequence, int) and not isinstance(sequence, bool):
            marked.add(sequence)
    return marked


def verify_chain(
    events: Iterable[AuditEvent],
    options: VerifyOptions | None = None,
    tenant_id: str = "",
) -> VerificationReport:
    """
    Verify a list of events from one tenant chain.

    Args:
        events: Events in any order; they are sorted by sequence
        options: Range, timestamp and early-exit settings
        tenant_id: Reported tenant (defaults to the first event's)

    Returns:
        VerificationReport enumerating every issue
    """
    options = options or VerifyOptions()
    started = time.perf_counter()

    everything = sorted(events, key=lambda e: e.sequence)
    acknowledged = acknowledged_sequences(everything)
    selected = [
        event
        for event in everything
        if (options.start_sequence is None or event.sequence >= options.start_sequence)
        and (options.end_sequence is None or event.sequence <= options.end_sequence)
    ]
    if options.max_entries is not None:
        selected = selected[: options.max_entries]
    tenant_id = tenant_id or (everything[0].tenant_id if everything else "")
    partial = bool(options.start_sequence)
    tolerance = timedelta(seconds=options.clock_skew_tolerance_seconds)

    issues: list[IntegrityIssue] = []
    missing: list[int] = []
    gaps = 0
    verified = 0
    high_risk = 0

    if selected and not partial:
        first = selected[0]
        if first.sequence != 0:
            issues.append(_issue(
                IssueType.FIRST_ENTRY_INVALID,
                first.sequence,
                f"Chain starts at sequence {first.sequence}, expected 0",
                expected="0",
                actual=str(first.sequence),
            ))
            missing.extend(range(0, first.sequence))
        if first.previous_hash is not None:
            issues.append(_issue(
                IssueType.FIRST_ENTRY_INVALID,
                first.sequence,
                "First entry has a previous hash",
                expected=None,
                actual=first.previous_hash,
            ))

    previous: AuditEvent | None = None
    for event in selected:
        verified += 1
        if event.high_risk:
            high_risk += 1

        recomputed = compute_event_hash(event)
        if recomputed != event.hash:
            if event.sequence in acknowledged:
                issues.append(_issue(
                    IssueType.ACKNOWLEDGED_BREAK,
                    event.sequence,
                    f"Event {event.sequence} was soft-marked; content no longer matches its hash",
                    expected=event.hash,
                    actual=recomputed,
                ))
            else:
                issues.append(_issue(
                    IssueType.CONTENT_HASH_MISMATCH,
                    event.sequence,
                    f"Event {event.sequence} content does not match its hash",
                    expected=event.hash,
                    actual=recomputed,
                ))

        if previous is not None:
            if event.sequence == previous.sequence:
                issues.append(_issue(
                    IssueType.SEQUENCE_DUPLICATE,
                    event.sequence,
                    f"Sequence {event.sequence} appears more than once",
                ))
            elif event.sequence > previous.sequence + 1:
                gap = list(range(previous.sequence + 1, event.sequence))
                gaps += 1
                missing.extend(gap)
                issues.append(_issue(
                    IssueType.SEQUENCE_GAP,
                    event.sequence,
                    f"Sequences {gap[0]}-{gap[-1]} are missing" if len(gap) > 1
                    else f"Sequence {gap[0]} is missing",
                    expected=str(previous.sequence + 1),
                    actual=str(event.sequence),
                ))
            elif event.previous_hash != previous.hash:
                issues.append(_issue(
                    IssueType.CHAIN_LINK_BROKEN,
                    event.sequence,
                    f"Event {event.sequence} does not link to event {previous.sequence}",
                    expected=previous.hash,
                    actual=event.previous_hash,
                ))

            if options.check_timestamps and event.timestamp < previous.timestamp - tolerance:
                issues.append(_issue(
                    IssueType.TIMESTAMP_REGRESSION,
                    event.sequence,
                    f"Event {event.sequence} is timestamped before event {previous.sequence}",
                    expected=f">= {previous.timestamp.isoformat()}",
                    actual=event.timestamp.isoformat(),
                ))

        if options.stop_on_first_error and any(
            issue.severity == IssueSeverity.CRITICAL for issue in issues
        ):
            break
        previous = event

    issues.sort(key=lambda issue: (_SEVERITY_RANK[issue.severity], issue.sequence))
    valid = not any(issue.severity != IssueSeverity.INFO for issue in issues)
    stats = _build_stats(everything, selected, verified, gaps, missing, high_risk, partial)
    report = VerificationReport(
        tenant_id=tenant_id,
        valid=valid,
        verified_at=datetime.now(UTC),
        duration_ms=round((time.perf_counter() - started) * 1000, 3),
        stats=stats,
        issues=issues,
        summary=_summarize(verified, issues),
    )

    if valid:
        logger.info("audit_verification_completed", tenant_id=tenant_id, entries=verified)
    else:
        logger.warning(
            "audit_verification_failed",
            tenant_id=tenant_id,
            entries=verified,
            issues=len(issues),
        )
    return report


def _build_stats(
    everything: list[AuditEvent],
    selected: list[AuditEvent],
    verified: int,
    gaps: int,
    missing: list[int],
    high_risk: int,
    partial: bool,
) -> VerificationStats:
    if not selected:
        return VerificationStats(total_entries=len(everything))

    first, last = selected[0].sequence, selected[-1].sequence
    span_start = first if partial else 0
    expected = last - span_start + 1
    present = len({event.sequence for event in selected})
    timestamps = [event.timestamp for event in selected]
    return VerificationStats(
        total_entries=len(everything),
        entries_verified=verified,
        sequence_range=(first, last),
        time_range=(min(timestamps), max(timestamps)),
        gaps_detected=gaps,
        missing_entries=sorted(set(missing)),
        continuity_percent=round(100.0 * min(present, expected) / expected, 2),
        high_risk_count=high_risk,
    )


def _summarize(verified: int, issues: list[IntegrityIssue]) -> str:
    if verified == 0:
        return "No entries to verify"
    counts: dict[str, int] = {}
    for issue in issues:
        counts[issue.severity.value] = counts.get(issue.severity.value, 0) + 1
    if not issues:
        return f"Verified {verified} entries: chain intact"
    breakdown = ", ".join(f"{count} {severity}" for severity, count in counts.items())
    return f"Verified {verified} entries: {len(issues)} issue(s) ({breakdown})"


class ChainVerifier:
    """
    Verifies chains loaded from an AuditStore.

    Usage:
        verifier = ChainVerifier(store)
        report = verifier.verify("acme", VerifyOptions(clock_skew_tolerance_seconds=2))
        for issue in report.issues:
            print(issue.sequence, issue.type, issue.message)
    """

    def __init__(self, store: AuditStore | None) -> None:
        self.store = store

    def verify(self, tenant_id: str, options: VerifyOptions | None = None) -> VerificationReport:
        """Verify one tenant chain."""
        if self.store is None:
            raise StoreNotBoundError(component="ChainVerifier")
        # Break points may sit after the range end, so the whole chain is loaded
        events = self.store.get_audit_events(tenant_id)
        return verify_chain(events, options, tenant_id=tenant_id)
