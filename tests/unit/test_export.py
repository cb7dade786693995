"""
Unit tests for audit export and redaction.

Tests cover:
- JSON, JSONL, CSV, CEF and syslog rendering
- Severity mapping and escaping
- Export metadata (filename, content type, hash)
- HMAC signatures over exports
- Redaction of secrets, actor PII and explicit paths
"""

import csv
import hashlib
import io
import json
from datetime import UTC, datetime

import pytest

from warden.audit.events import AuditEvent, Outcome
from warden.audit.export import (
    AuditExporter,
    ExportSignature,
    cef_severity,
    escape_cef_extension,
    escape_cef_header,
    escape_sd_param,
    parse_export_format,
    sign_export,
    syslog_msgid,
    syslog_severity,
    verify_export_signature,
)
from warden.audit.redact import REDACTED, Redactor, is_sensitive_key, normalize_key
from warden.audit.trail import AuditTrail
from warden.config import ExportFormat, ExportOptions
from warden.errors import UnsupportedExportFormatError


@pytest.fixture
def events(trail: AuditTrail, make_draft) -> list[AuditEvent]:
    trail.append("acme", make_draft())
    trail.append(
        "acme",
        make_draft(
            "secret.accessed",
            apiKey="sk-live-123",
            nested={"password": "hunter2", "keep": "visible"},
            customer={"email": "jane@example.com"},
        ),
    )
    return trail.events("acme")


@pytest.fixture
def exporter() -> AuditExporter:
    return AuditExporter()


class TestFormats:
    """Rendering in each format."""

    def test_json(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.JSON))
        document = json.loads(result.content)
        assert document["metadata"]["tenantId"] == "acme"
        assert document["metadata"]["entryCount"] == 2
        assert document["metadata"]["sequenceRange"] == [0, 1]
        assert document["metadata"]["redacted"] is False
        assert [e["sequence"] for e in document["entries"]] == [0, 1]
        assert document["entries"][1]["previousHash"] == events[0].hash
        assert result.content_type == "application/json"
        assert result.filename == "audit-acme-0-1.json"

    def test_json_without_chain_fields(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(include_chain=False))
        entry = json.loads(result.content)["entries"][0]
        assert "hash" not in entry
        assert "previousHash" not in entry
        assert "sequence" not in entry

    def test_jsonl(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.JSONL))
        lines = result.content.splitlines()
        assert len(lines) == 3
        assert json.loads(lines[0])["_type"] == "metadata"
        assert json.loads(lines[2])["eventType"] == "secret.accessed"
        assert result.filename.endswith(".jsonl")

    def test_csv(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.CSV))
        assert result.content.splitlines()[0] == (
            '"id","type","timestamp","actor_type","actor_id","target_type","target_id","ip_address"'
        )
        rows = list(csv.reader(io.StringIO(result.content)))
        assert rows[1] == [
            events[0].event_id,
            "repo.cloned",
            "2026-03-02T14:30:00Z",
            "user",
            "alice",
            "repository",
            "acme/api",
            "10.0.0.7",
        ]

    def test_cef(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.CEF))
        first, second = result.content.splitlines()
        assert first.startswith("CEF:0|Warden|PolicyEngine|0.1.0|repo.cloned|repo.cloned success|1|")
        assert "suser=alice" in first
        assert "src=10.0.0.7" in first
        assert "cs3=repository:acme/api cs3Label=resource" in first
        assert f"cs4={events[0].hash}" in first
        assert second.split("|")[6] == "8"

    def test_syslog(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.SYSLOG))
        first, second = result.content.splitlines()
        assert first.startswith("<110>1 2026-03-02T14:30:00Z - warden - repo.cloned [warden@32473 ")
        assert 'tenantId="acme"' in first
        assert first.endswith("repo.cloned by user:alice outcome=success")
        assert second.startswith("<106>1 ")
        assert result.filename.endswith(".log")

    def test_syslog_msgid_is_printable_ascii(self, trail: AuditTrail, make_draft) -> None:
        event = trail.append("acme", make_draft("user signed in"))
        line = AuditExporter().export([event], ExportOptions(format=ExportFormat.SYSLOG)).content
        header = line.split(" ")
        assert header[5] == "user_signed_in"
        assert header[6].startswith("[warden@32473")
        assert line.rstrip("\n").endswith("user signed in by user:alice outcome=success")

    def test_content_hash(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.CSV))
        assert result.content_hash == hashlib.sha256(result.content.encode("utf-8")).hexdigest()
        assert result.entry_count == 2

    def test_empty_export(self, exporter: AuditExporter) -> None:
        result = exporter.export([], ExportOptions(format=ExportFormat.JSON))
        assert result.filename == "audit-empty-none.json"
        assert result.sequence_range is None
        assert json.loads(result.content)["entries"] == []

    def test_export_does_not_mutate_events(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        before = [event.model_dump() for event in events]
        exporter.export(events, ExportOptions(redact=True, redact_actor_pii=True))
        assert [event.model_dump() for event in events] == before


class TestParseFormat:
    """Format names."""

    def test_known_formats(self) -> None:
        assert parse_export_format("CEF") == ExportFormat.CEF
        assert parse_export_format(ExportFormat.JSONL) == ExportFormat.JSONL

    def test_unknown_format(self) -> None:
        with pytest.raises(UnsupportedExportFormatError) as exc_info:
            parse_export_format("xml")
        assert exc_info.value.export_format == "xml"
        assert "json" in (exc_info.value.suggestion or "")


class TestSeverities:
    """Severity mapping."""

    @pytest.mark.parametrize(
        ("outcome", "high_risk", "cef", "syslog"),
        [
            (Outcome.SUCCESS, True, 8, 2),
            (Outcome.FAILURE, False, 5, 3),
            (Outcome.DENIED, False, 5, 4),
            (Outcome.BLOCKED, False, 5, 4),
            (Outcome.PARTIAL, False, 3, 4),
            (Outcome.SUCCESS, False, 1, 6),
            (Outcome.PENDING, False, 1, 6),
        ],
    )
    def test_mapping(
        self, events: list[AuditEvent], outcome: Outcome, high_risk: bool, cef: int, syslog: int
    ) -> None:
        event = events[0].model_copy(update={"outcome": outcome, "high_risk": high_risk})
        assert cef_severity(event) == cef
        assert syslog_severity(event) == syslog


class TestEscaping:
    """Format-specific escaping."""

    def test_cef_header(self) -> None:
        assert escape_cef_header("a|b\\c") == "a\\|b\\\\c"

    def test_cef_extension(self) -> None:
        assert escape_cef_extension("k=v\nnext") == "k\\=v\\nnext"

    def test_sd_param(self) -> None:
        assert escape_sd_param('say "hi" ]') == 'say \\"hi\\" \\]'

    @pytest.mark.parametrize(
        ("event_type", "expected"),
        [
            ("policy.deny", "policy.deny"),
            ("user signed in", "user_signed_in"),
            ("café\tau lait", "caf__au_lait"),
            ("x" * 40, "x" * 32),
            ("", "-"),
        ],
    )
    def test_syslog_msgid(self, event_type: str, expected: str) -> None:
        assert syslog_msgid(event_type) == expected


class TestRedaction:
    """Secrets and PII."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [("apiKey", "api_key"), ("API-Key", "api_key"), ("clientSecret", "client_secret")],
    )
    def test_normalize_key(self, key: str, expected: str) -> None:
        assert normalize_key(key) == expected

    def test_sensitive_keys(self) -> None:
        assert is_sensitive_key("apiKey")
        assert is_sensitive_key("db_password")
        assert is_sensitive_key("Authorization")
        assert not is_sensitive_key("username")

    def test_redact_details(self, events: list[AuditEvent]) -> None:
        redacted = Redactor().redact_event(events[1])
        assert redacted.details["apiKey"] == REDACTED
        assert redacted.details["nested"] == {"password": REDACTED, "keep": "visible"}
        assert redacted.actor.ip_address == "10.0.0.7"

    def test_redact_actor_pii(self, events: list[AuditEvent]) -> None:
        redacted = Redactor(redact_actor_pii=True).redact_event(events[1])
        assert redacted.actor.ip_address == REDACTED

    def test_redact_paths(self, events: list[AuditEvent]) -> None:
        redacted = Redactor(extra_paths=["details.customer.email", "details.missing.path"]).redact_event(events[1])
        assert redacted.details["customer"] == {"email": REDACTED}

    def test_redacted_export(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        result = exporter.export(events, ExportOptions(format=ExportFormat.JSONL, redact=True))
        assert "sk-live-123" not in result.content
        assert "hunter2" not in result.content
        assert json.loads(result.content.splitlines()[0])["redacted"] is True


class TestSigning:
    """HMAC signatures over export content."""

    KEY = "export-signing-key"

    def test_unsigned_by_default(self, exporter: AuditExporter, events: list[AuditEvent]) -> None:
        assert exporter.export(events).signature is None

    def test_signed_export_verifies(self, events: list[AuditEvent]) -> None:
        result = AuditExporter(ExportOptions(signing_key=self.KEY, key_id="k-2026")).export(events)
        signature = result.signature
        assert signature is not None
        assert signature.algorithm == "HMAC-SHA256"
        assert signature.key_id == "k-2026"
        assert signature.content_hash == result.content_hash
        assert verify_export_signature(result.content, signature, self.KEY)

    def test_tampered_content_fails(self, events: list[AuditEvent]) -> None:
        result = AuditExporter(ExportOptions(signing_key=self.KEY)).export(events)
        assert result.signature is not None
        tampered = result.content.replace("alice", "mallory")
        assert not verify_export_signature(tampered, result.signature, self.KEY)

    def test_wrong_key_fails(self) -> None:
        signature = sign_export("content", self.KEY)
        assert verify_export_signature("content", signature, self.KEY.encode("utf-8"))
        assert not verify_export_signature("content", signature, "another-key")

    def test_forged_fields_fail(self) -> None:
        signature = sign_export("content", self.KEY)
        rehashed = ExportSignature(
            algorithm=signature.algorithm,
            key_id=signature.key_id,
            signed_at=signature.signed_at,
            content_hash=hashlib.sha256(b"other").hexdigest(),
            signature=signature.signature,
        )
        assert not verify_export_signature("other", rehashed, self.KEY)

        other_algorithm = ExportSignature(
            algorithm="RSA-SHA256",
            key_id=signature.key_id,
            signed_at=signature.signed_at,
            content_hash=signature.content_hash,
            signature=signature.signature,
        )
        assert not verify_export_signature("content", other_algorithm, self.KEY)

    def test_to_dict(self) -> None:
        signed_at = datetime(2026, 3, 2, 14, 30, tzinfo=UTC)
        data = sign_export("content", self.KEY, key_id="k1", signed_at=signed_at).to_dict()
        assert data["keyId"] == "k1"
        assert data["signedAt"] == "2026-03-02T14:30:00Z"
        assert data["contentHash"] == hashlib.sha256(b"content").hexdigest()

    def test_key_is_hidden_in_options(self) -> None:
        options = ExportOptions(signing_key=self.KEY)
        assert self.KEY not in repr(options)
