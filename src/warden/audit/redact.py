"""
Redaction of audit events before export.

Redaction produces new event objects; stored events are never touched.
A redacted event no longer matches its hash, so redacted exports are for
sharing, not for verification.
"""

import re
from collections.abc import Iterable
from typing import Any

from warden.audit.events import AuditEvent
from warden.config import ExportOptions

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password",
    "secret",
    "token",
    "api_key",
    "authorization",
    "credential",
    "private_key",
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: str) -> str:
    """apiKey, API-Key and api_key all normalize to api_key."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


def is_sensitive_key(key: str) -> bool:
    """True if the key names a secret (substring match after normalization)."""
    normalized = normalize_key(key)
    return any(marker in normalized for marker in SENSITIVE_KEYS)


class Redactor:
    """
    Replaces secrets and optional PII in events with "[REDACTED]".

    Attributes:
        redact_actor_pii: Also redact actor.ipAddress and actor.displayName
        extra_paths: Dotted paths into the event (camelCase), e.g.
                     "details.customer.email"
    """

    def __init__(self, redact_actor_pii: bool = False, extra_paths: Iterable[str] = ()) -> None:
        self.redact_actor_pii = redact_actor_pii
        self.extra_paths = tuple(extra_paths)

    @classmethod
    def from_options(cls, options: ExportOptions) -> "Redactor":
        """Build a redactor from export options."""
        return cls(redact_actor_pii=options.redact_actor_pii, extra_paths=options.redact_paths)

    def redact_value(self, value: Any) -> Any:
        """Recursively redact sensitive keys in nested mappings and lists."""
        if isinstance(value, dict):
            return {
                key: REDACTED if is_sensitive_key(str(key)) else self.redact_value(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self.redact_value(item) for item in value]
        return value

    def redact_event(self, event: AuditEvent) -> AuditEvent:
        """Return a redacted copy of an event."""
        data = event.model_dump(mode="json", by_alias=True)
        data["details"] = self.redact_value(data.get("details", {}))

        if self.redact_actor_pii:
            actor = data["actor"]
            for key in ("ipAddress", "displayName"):
                if actor.get(key) is not None:
                    actor[key] = REDACTED

        for path in self.extra_paths:
            _redact_path(data, path.split("."))

        return AuditEvent.model_validate(data)

    def redact_events(self, events: Iterable[AuditEvent]) -> list[AuditEvent]:
        """Redact a sequence of events."""
        return [self.redact_event(event) for event in events]


def _redact_path(data: Any, parts: list[str]) -> None:
    if not parts or not isinstance(data, dict):
        return
    head, rest = parts[0], parts[1:]
    if head not in data:
        return
    if rest:
        _redact_path(data[head], rest)
    elif data[head] is not None:
        data[head] = REDACTED
