"""
Exception hierarchy for Warden.

All Warden exceptions inherit from WardenError, allowing callers to catch
all Warden-specific exceptions with a single except clause.

Expected failures (an invalid policy document, a broken inheritance chain,
a tampered audit log) are NOT raised. They are returned as structured
results so batch tooling can report every problem in one pass. The
exceptions here cover programmer errors and I/O failures only.

Exception Categories:
    - ConditionParseError: Malformed textual condition expression
    - PolicyNotFoundError: Resolving a document ID the store doesn't know
    - PolicyValidationError: require_valid() on an invalid result
    - MigrationError: A version transform could not be applied
    - AuditError: Append/lookup/export failures in the audit trail
    - StorageError: Database operation failed
    - StoreNotBoundError: Component used without a store handle

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (policy, tenant, sequence where applicable)
    - All errors provide actionable suggestions where possible
    - Errors are designed to be both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_CONDITION_PARSE = 1101
ERROR_POLICY_NOT_FOUND = 1201
ERROR_POLICY_INVALID = 1301
ERROR_MIGRATION_FAILED = 1401

# Audit errors: 2xxx
ERROR_AUDIT_APPEND = 2001
ERROR_AUDIT_EVENT_NOT_FOUND = 2002
ERROR_AUDIT_EXPORT_FORMAT = 2101

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003
ERROR_STORAGE_INTEGRITY = 5004

# Configuration errors: 9xxx
ERROR_STORE_NOT_BOUND = 9001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class WardenError(Exception):
    """
    Base exception for all Warden errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class ConditionParseError(WardenError):
    """
    Raised when a textual condition expression cannot be parsed.

    Attributes:
        expression: The full expression being parsed
        token: The offending token (or the text where parsing stopped)
        position: Character offset of the offending token
    """

    expression: str = ""
    token: str = ""
    position: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unexpected token {self.token!r} at position {self.position}"
        if self.code == 0:
            self.code = ERROR_CONDITION_PARSE
        if not self.suggestion:
            self.suggestion = (
                "Use the form <field> <op> <value> with one of "
                "==, !=, >, >=, <, <=, in, contains, joined by 'and' or '&&'"
            )
        self.context.update({
            "expression": self.expression,
            "token": self.token,
            "position": self.position,
        })


@dataclass
class PolicyNotFoundError(WardenError):
    """Raised when a policy document ID is not present in the store."""

    policy_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy not found: {self.policy_id}"
        if self.code == 0:
            self.code = ERROR_POLICY_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check the policy ID or load the document into the store first"
        self.context["policy_id"] = self.policy_id


@dataclass
class PolicyValidationError(WardenError):
    """
    Raised when a caller explicitly demands a valid document.

    Validation itself never raises; this error exists for callers that
    opt into exceptions via ValidationResult.require_valid().

    Attributes:
        issues: Serialized fatal issues
    """

    issues: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy document is invalid ({len(self.issues)} error(s))"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID
        if not self.suggestion and self.issues:
            self.suggestion = self.issues[0].get("suggestion")
        self.context["issues"] = self.issues


@dataclass
class MigrationError(WardenError):
    """Raised by a version transform that cannot upgrade a document."""

    from_version: str = ""
    to_version: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Migration {self.from_version} -> {self.to_version} failed: "
                f"{self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_MIGRATION_FAILED
        if not self.suggestion:
            self.suggestion = "Fix the document by hand or re-author it at the current version"
        self.context.update({
            "from_version": self.from_version,
            "to_version": self.to_version,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Audit Errors
# =============================================================================


@dataclass
class AuditError(WardenError):
    """
    Base class for audit trail errors.

    Integrity problems are reported through VerificationReport, never
    raised. These errors cover operational failures only.

    Attributes:
        tenant_id: Tenant whose chain was being accessed
    """

    tenant_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["tenant_id"] = self.tenant_id


@dataclass
class AuditAppendError(AuditError):
    """Raised when an event cannot be appended to a tenant chain."""

    sequence: int | None = None
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Failed to append audit event {self.sequence} "
                f"for tenant {self.tenant_id}: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_AUDIT_APPEND
        super().__post_init__()
        self.context.update({
            "sequence": self.sequence,
            "underlying_error": self.underlying_error,
        })


@dataclass
class AuditEventNotFoundError(AuditError):
    """Raised when soft-marking a sequence that doesn't exist."""

    sequence: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit event {self.sequence} not found for tenant {self.tenant_id}"
        if self.code == 0:
            self.code = ERROR_AUDIT_EVENT_NOT_FOUND
        super().__post_init__()
        self.context["sequence"] = self.sequence


@dataclass
class UnsupportedExportFormatError(AuditError):
    """Raised when an export format is not recognized."""

    export_format: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unsupported export format: {self.export_format}"
        if self.code == 0:
            self.code = ERROR_AUDIT_EXPORT_FORMAT
        if not self.suggestion:
            self.suggestion = "Use one of: json, jsonl, csv, cef, syslog"
        super().__post_init__()
        self.context["export_format"] = self.export_format


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(WardenError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "insert", "query")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageIntegrityError(StorageError):
    """Raised when the store refuses a write that would break an invariant."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Database integrity check failed"
        if self.code == 0:
            self.code = ERROR_STORAGE_INTEGRITY
        if not self.suggestion:
            self.suggestion = "A concurrent writer may have appended the same sequence; retry the append"
        super().__post_init__()


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class StoreNotBoundError(WardenError):
    """Raised when a component that needs a store is used without one."""

    component: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.component} has no store bound"
        if self.code == 0:
            self.code = ERROR_STORE_NOT_BOUND
        if not self.suggestion:
            self.suggestion = "Pass a PolicyStore/AuditStore instance to the constructor"
        self.context["component"] = self.component
