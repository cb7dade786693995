"""
Export of audit events for SIEM ingestion and archival.

Formats:
    - json:   {"metadata": {...}, "entries": [...]}
    - jsonl:  a metadata line (_type: metadata), then one event per line
    - csv:    fixed columns, every field quoted
    - cef:    ArcSight Common Event Format, one line per event
    - syslog: RFC 5424 with a structured-data element per event

Export is read-only: events are never mutated. When redaction is enabled
it runs first, on copies. When a signing key is configured the result
carries an HMAC-SHA256 signature over the content hash, checked with
verify_export_signature.
"""

import base64
import csv
import hashlib
import hmac
import io
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from warden.audit.events import AuditEvent, Outcome
from warden.audit.redact import Redactor
from warden.config import ExportFormat, ExportOptions
from warden.errors import UnsupportedExportFormatError

CSV_COLUMNS = (
    "id",
    "type",
    "timestamp",
    "actor_type",
    "actor_id",
    "target_type",
    "target_id",
    "ip_address",
)

CEF_EXTENSION_KEYS = (
    "rt",
    "suser",
    "act",
    "outcome",
    "src",
    "cs1",
    "cs1Label",
    "cs2",
    "cs2Label",
    "cs3",
    "cs3Label",
    "cn1",
    "cn1Label",
    "cs4",
    "cs4Label",
)

SYSLOG_FACILITY = 13
SYSLOG_SD_ID = "warden@32473"

CONTENT_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.JSONL: "application/x-ndjson",
    ExportFormat.CSV: "text/csv",
    ExportFormat.CEF: "text/plain",
    ExportFormat.SYSLOG: "text/plain",
}

FILE_EXTENSIONS = {
    ExportFormat.JSON: "json",
    ExportFormat.JSONL: "jsonl",
    ExportFormat.CSV: "csv",
    ExportFormat.CEF: "cef",
    ExportFormat.SYSLOG: "log",
}

_FAILED_OUTCOMES = (Outcome.FAILURE, Outcome.DENIED, Outcome.BLOCKED)

SIGNATURE_ALGORITHM = "HMAC-SHA256"

# RFC 5424 MSGID: 1-32 printable US-ASCII characters, no spaces
_MSGID_INVALID = re.compile(r"[^!-~]")


def parse_export_format(value: str | ExportFormat) -> ExportFormat:
    """
    Parse a format name.

    Raises:
        UnsupportedExportFormatError: If the name is not a known format
    """
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(value.lower())
    except ValueError as e:
        raise UnsupportedExportFormatError(export_format=value) from e


@dataclass(frozen=True)
class ExportSignature:
    """Attestation over an export's content hash."""

    algorithm: str
    key_id: str
    signed_at: datetime
    content_hash: str
    signature: str

    def to_dict(self) -> dict[str, str]:
        return {
            "algorithm": self.algorithm,
            "keyId": self.key_id,
            "signedAt": _iso(self.signed_at),
            "contentHash": self.content_hash,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class ExportResult:
    """A rendered export and its description."""

    content: str
    content_type: str
    filename: str
    entry_count: int
    sequence_range: tuple[int, int] | None
    content_hash: str
    signature: ExportSignature | None = None


# =============================================================================
# Signing
# =============================================================================


def export_content_hash(content: str) -> str:
    """SHA-256 hex digest of export content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _hmac(content_hash: str, key: str | bytes) -> str:
    secret = key.encode("utf-8") if isinstance(key, str) else key
    digest = hmac.new(secret, content_hash.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_export(
    content: str,
    key: str | bytes,
    key_id: str = "default",
    signed_at: datetime | None = None,
) -> ExportSignature:
    """Sign the SHA-256 of content with an HMAC key."""
    content_hash = export_content_hash(content)
    return ExportSignature(
        algorithm=SIGNATURE_ALGORITHM,
        key_id=key_id,
        signed_at=signed_at or datetime.now(UTC),
        content_hash=content_hash,
        signature=_hmac(content_hash, key),
    )


def verify_export_signature(content: str, signature: ExportSignature, key: str | bytes) -> bool:
    """
    Check that content is what was signed, with the given key.

    Returns False if the content changed, the algorithm is unknown or the
    signature was made with another key.
    """
    if signature.algorithm != SIGNATURE_ALGORITHM:
        return False
    content_hash = export_content_hash(content)
    if not hmac.compare_digest(content_hash, signature.content_hash):
        return False
    return hmac.compare_digest(_hmac(content_hash, key), signature.signature)


# =============================================================================
# Severity Mapping
# =============================================================================


def cef_severity(event: AuditEvent) -> int:
    """CEF severity: 8 high-risk, 5 failed, 3 partial, 1 otherwise."""
    if event.high_risk:
        return 8
    if event.outcome in _FAILED_OUTCOMES:
        return 5
    if event.outcome == Outcome.PARTIAL:
        return 3
    return 1


def syslog_severity(event: AuditEvent) -> int:
    """Syslog severity: 2 high-risk, 3 failure, 4 denied/blocked/partial, 6 otherwise."""
    if event.high_risk:
        return 2
    if event.outcome == Outcome.FAILURE:
        return 3
    if event.outcome in (Outcome.DENIED, Outcome.BLOCKED, Outcome.PARTIAL):
        return 4
    return 6


# =============================================================================
# Escaping
# =============================================================================


def escape_cef_header(value: str) -> str:
    """Escape backslash and pipe in a CEF header field."""
    return value.replace("\\", "\\\\").replace("|", "\\|")


def escape_cef_extension(value: str) -> str:
    """Escape backslash, equals and newlines in a CEF extension value."""
    return (
        value.replace("\\", "\\\\")
        .replace("=", "\\=")
        .replace("\r", "\\r")
        .replace("\n", "\\n")
    )


def escape_sd_param(value: str) -> str:
    """Escape a structured-data parameter value (RFC 5424 section 6.3.3)."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("]", "\\]")


def syslog_msgid(event_type: str) -> str:
    """Event type as an RFC 5424 MSGID (printable ASCII, no spaces, 32 max)."""
    return _MSGID_INVALID.sub("_", event_type)[:32] or "-"


# =============================================================================
# Exporter
# =============================================================================


class AuditExporter:
    """
    Renders events in one of the export formats.

    Usage:
        exporter = AuditExporter()
        result = exporter.export(events, ExportOptions(format="cef", redact=True))
        Path(result.filename).write_text(result.content)
    """

    def __init__(self, options: ExportOptions | None = None) -> None:
        self.options = options or ExportOptions()

    def export(
        self,
        events: Sequence[AuditEvent],
        options: ExportOptions | None = None,
    ) -> ExportResult:
        """
        Render events.

        Args:
            events: Events to export, in the order given
            options: Overrides the exporter's default options

        Returns:
            ExportResult with the rendered content and its SHA-256
        """
        options = options or self.options
        export_format = parse_export_format(options.format)
        if options.redact:
            events = Redactor.from_options(options).redact_events(events)
        else:
            events = list(events)

        sequences = [event.sequence for event in events]
        sequence_range = (min(sequences), max(sequences)) if sequences else None

        match export_format:
            case ExportFormat.JSON:
                content = self._to_json(events, options, sequence_range)
            case ExportFormat.JSONL:
                content = self._to_jsonl(events, options, sequence_range)
            case ExportFormat.CSV:
                content = self._to_csv(events)
            case ExportFormat.CEF:
                content = "".join(self._to_cef(event, options) + "\n" for event in events)
            case ExportFormat.SYSLOG:
                content = "".join(self._to_syslog(event, options) + "\n" for event in events)

        tenant = events[0].tenant_id if events else "empty"
        span = f"{sequence_range[0]}-{sequence_range[1]}" if sequence_range else "none"
        signature = None
        if options.signing_key is not None:
            signature = sign_export(content, options.signing_key.get_secret_value(), options.key_id)
        return ExportResult(
            content=content,
            content_type=CONTENT_TYPES[export_format],
            filename=f"audit-{tenant}-{span}.{FILE_EXTENSIONS[export_format]}",
            entry_count=len(events),
            sequence_range=sequence_range,
            content_hash=export_content_hash(content),
            signature=signature,
        )

    # =========================================================================
    # JSON
    # =========================================================================

    def _metadata(
        self,
        events: Sequence[AuditEvent],
        options: ExportOptions,
        sequence_range: tuple[int, int] | None,
    ) -> dict[str, Any]:
        return {
            "exportedAt": datetime.now(UTC).isoformat(),
            "tenantId": events[0].tenant_id if events else None,
            "entryCount": len(events),
            "sequenceRange": list(sequence_range) if sequence_range else None,
            "format": parse_export_format(options.format).value,
            "redacted": options.redact,
            "generator": f"{options.vendor} {options.product} {options.product_version}",
        }

    def _entry(self, event: AuditEvent, options: ExportOptions) -> dict[str, Any]:
        entry = event.model_dump(mode="json", by_alias=True)
        if not options.include_chain:
            for key in ("sequence", "previousHash", "hash"):
                entry.pop(key, None)
        return entry

    def _to_json(
        self,
        events: Sequence[AuditEvent],
        options: ExportOptions,
        sequence_range: tuple[int, int] | None,
    ) -> str:
        document = {
            "metadata": self._metadata(events, options, sequence_range),
            "entries": [self._entry(event, options) for event in events],
        }
        return json.dumps(document, indent=2 if options.pretty else None, ensure_ascii=False)

    def _to_jsonl(
        self,
        events: Sequence[AuditEvent],
        options: ExportOptions,
        sequence_range: tuple[int, int] | None,
    ) -> str:
        lines = [json.dumps({"_type": "metadata", **self._metadata(events, options, sequence_range)})]
        lines.extend(json.dumps(self._entry(event, options), ensure_ascii=False) for event in events)
        return "\n".join(lines) + "\n"

    # =========================================================================
    # CSV
    # =========================================================================

    def _to_csv(self, events: Sequence[AuditEvent]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for event in events:
            writer.writerow((
                event.event_id,
                event.event_type,
                _iso(event.timestamp),
                event.actor.type.value,
                event.actor.id,
                event.resource.type if event.resource else "",
                event.resource.id if event.resource else "",
                event.actor.ip_address or "",
            ))
        return buffer.getvalue()

    # =========================================================================
    # CEF
    # =========================================================================

    def _to_cef(self, event: AuditEvent, options: ExportOptions) -> str:
        resource = f"{event.resource.type}:{event.resource.id}" if event.resource else None
        values: dict[str, Any] = {
            "rt": int(event.timestamp.timestamp() * 1000),
            "suser": event.actor.id,
            "act": event.event_type,
            "outcome": event.outcome.value,
            "src": event.actor.ip_address,
            "cs1": event.tenant_id,
            "cs1Label": "tenantId",
            "cs2": event.event_id,
            "cs2Label": "eventId",
            "cs3": resource,
            "cs3Label": "resource" if resource else None,
            "cn1": event.sequence,
            "cn1Label": "sequence",
            "cs4": event.hash,
            "cs4Label": "hash",
        }
        extension = " ".join(
            f"{key}={escape_cef_extension(str(values[key]))}"
            for key in CEF_EXTENSION_KEYS
            if values[key] is not None
        )
        header = "|".join((
            "CEF:0",
            escape_cef_header(options.vendor),
            escape_cef_header(options.product),
            escape_cef_header(options.product_version),
            escape_cef_header(event.event_type),
            escape_cef_header(f"{event.event_type} {event.outcome.value}"),
            str(cef_severity(event)),
        ))
        return f"{header}|{extension}"

    # =========================================================================
    # Syslog
    # =========================================================================

    def _to_syslog(self, event: AuditEvent, options: ExportOptions) -> str:
        priority = SYSLOG_FACILITY * 8 + syslog_severity(event)
        params = {
            "tenantId": event.tenant_id,
            "eventId": event.event_id,
            "sequence": str(event.sequence),
            "outcome": event.outcome.value,
            "actorType": event.actor.type.value,
            "actorId": event.actor.id,
            "hash": event.hash,
        }
        structured = " ".join(f'{key}="{escape_sd_param(value)}"' for key, value in params.items())
        message_id = syslog_msgid(event.event_type)
        message = f"{event.event_type} by {event.actor.type.value}:{event.actor.id} outcome={event.outcome.value}"
        return (
            f"<{priority}>1 {_iso(event.timestamp)} {options.hostname or '-'} "
            f"{options.app_name or '-'} - {message_id} [{SYSLOG_SD_ID} {structured}] {message}"
        )


def _iso(timestamp: datetime) -> str:
    """RFC 3339 UTC timestamp with a Z suffix."""
    return timestamp.astimezone(UTC).isoformat().replace("+00:00", "Z")
