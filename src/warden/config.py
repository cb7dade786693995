"""
Configuration for Warden.

Two layers:
    - Option models (ValidatorOptions, CacheConfig, VerifyOptions,
      ExportOptions): frozen structs passed by value into constructors.
      Components never read global state.
    - Settings: environment-based defaults (WARDEN_ prefix, optional .env)
      used by the CLI and Engine to build the option models.
"""

from collections.abc import Callable
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Option Models
# =============================================================================


class ValidatorOptions(BaseModel):
    """
    Options for PolicyValidator.

    Attributes:
        auto_migrate: Upgrade older schema versions before validating
        include_warnings: Report non-fatal warnings
        include_info: Report informational messages (migrations, inheritance)
        max_rules_warning: Rule count above which HIGH_COMPLEXITY is raised
        max_nesting_depth: Deepest allowed nested rule group
        custom_rules: Extra checks, each (PolicyDocument) -> list[ValidationIssue]
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    auto_migrate: bool = True
    include_warnings: bool = True
    include_info: bool = True
    max_rules_warning: int = Field(default=50, ge=1)
    max_nesting_depth: int = Field(default=8, ge=1)
    custom_rules: tuple[Callable[..., Any], ...] = ()


class CacheConfig(BaseModel):
    """Options for PolicyCache."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_entries: int = Field(default=1000, ge=1)
    ttl_seconds: float = Field(default=300.0, gt=0)
    enable_ttl: bool = True


class VerifyOptions(BaseModel):
    """
    Options for audit chain verification.

    Attributes:
        start_sequence: First sequence to verify (None = from the start)
        end_sequence: Last sequence to verify, inclusive (None = to the head)
        check_timestamps: Report timestamps that go backwards
        clock_skew_tolerance_seconds: Regressions up to this size are tolerated
        stop_on_first_error: Stop walking at the first critical issue
        max_entries: Cap on entries walked (None = unbounded)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    start_sequence: int | None = Field(default=None, ge=0)
    end_sequence: int | None = Field(default=None, ge=0)
    check_timestamps: bool = True
    clock_skew_tolerance_seconds: float = Field(default=0.0, ge=0)
    stop_on_first_error: bool = False
    max_entries: int | None = Field(default=None, ge=1)


class ExportFormat(str, Enum):
    """Supported audit export formats."""

    JSON = "json"
    JSONL = "jsonl"
    CSV = "csv"
    CEF = "cef"
    SYSLOG = "syslog"


class ExportOptions(BaseModel):
    """
    Options for AuditExporter.

    Attributes:
        format: Output format
        redact: Run the redaction pass before serialization
        redact_actor_pii: Also redact actor IP address and display name
        redact_paths: Extra dotted paths (e.g. "details.customer.email") to redact
        include_chain: Include sequence/hash fields in JSON exports
        pretty: Indent JSON output
        vendor/product/product_version: CEF header fields
        hostname/app_name: Syslog header fields
        signing_key: HMAC key; when set the export carries a signature
        key_id: Identifies signing_key to whoever verifies the export
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    format: ExportFormat = ExportFormat.JSON
    redact: bool = False
    redact_actor_pii: bool = False
    redact_paths: tuple[str, ...] = ()
    include_chain: bool = True
    pretty: bool = False
    vendor: str = "Warden"
    product: str = "PolicyEngine"
    product_version: str = "0.1.0"
    hostname: str = "-"
    app_name: str = "warden"
    signing_key: SecretStr | None = None
    key_id: str = "default"


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """Application settings, loaded from WARDEN_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WARDEN_",
        extra="ignore",
    )

    # Storage
    db_path: str = "warden.db"

    # Logging
    log_level: str = "WARNING"
    log_json: bool = False

    # Validation
    auto_migrate: bool = True
    max_rules_warning: int = 50

    # Cache
    cache_enabled: bool = True
    cache_max_entries: int = 1000
    cache_ttl_seconds: float = 300.0

    # Audit
    clock_skew_tolerance_seconds: float = 0.0

    # Export
    export_vendor: str = "Warden"
    export_product: str = "PolicyEngine"
    export_hostname: str = "-"
    export_app_name: str = "warden"
    export_signing_key: str | None = None
    export_key_id: str = "default"

    def validator_options(self, **overrides: Any) -> ValidatorOptions:
        """Build validator options from settings."""
        values: dict[str, Any] = {
            "auto_migrate": self.auto_migrate,
            "max_rules_warning": self.max_rules_warning,
        }
        values.update(overrides)
        return ValidatorOptions(**values)

    def cache_config(self) -> CacheConfig:
        """Build cache configuration from settings."""
        return CacheConfig(
            max_entries=self.cache_max_entries,
            ttl_seconds=self.cache_ttl_seconds,
        )

    def verify_options(self, **overrides: Any) -> VerifyOptions:
        """Build verification options from settings."""
        values: dict[str, Any] = {
            "clock_skew_tolerance_seconds": self.clock_skew_tolerance_seconds,
        }
        values.update(overrides)
        return VerifyOptions(**values)

    def export_options(self, **overrides: Any) -> ExportOptions:
        """Build export options from settings."""
        from warden import __version__

        values: dict[str, Any] = {
            "vendor": self.export_vendor,
            "product": self.export_product,
            "product_version": __version__,
            "hostname": self.export_hostname,
            "app_name": self.export_app_name,
            "signing_key": self.export_signing_key,
            "key_id": self.export_key_id,
        }
        values.update(overrides)
        return ExportOptions(**values)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
