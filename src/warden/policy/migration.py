"""
Schema version migration for policy documents.

Older documents are upgraded through an ordered chain of version-specific
transforms operating on the raw mapping, before structural validation:

    1.0 -> 1.1   add default metadata {revision: 1, changelog: []}
    1.1 -> 2.0   add inheritance: override and a deny-with-reason defaultAction

Transforms only add what is missing and never overwrite author-supplied
values, so migrating an already-migrated document is a no-op.
"""

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from warden.errors import MigrationError
from warden.schema import CURRENT_VERSION, DEFAULT_DENY_REASON, SUPPORTED_VERSIONS


@dataclass(frozen=True)
class Migration:
    """One step in the migration chain."""

    from_version: str
    to_version: str
    description: str
    transform: Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class MigrationOutcome:
    """Result of migrating one document."""

    document: dict[str, Any]
    original_version: str
    applied: list[str] = field(default_factory=list)

    @property
    def migrated(self) -> bool:
        """Whether any transform ran."""
        return bool(self.applied)


def _add_default_metadata(document: dict[str, Any]) -> dict[str, Any]:
    metadata = document.get("metadata")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, Mapping):
        msg = f"metadata must be a mapping, got {type(metadata).__name__}"
        raise TypeError(msg)
    document["metadata"] = {"revision": 1, "changelog": [], **metadata}
    return document


def _add_inheritance_defaults(document: dict[str, Any]) -> dict[str, Any]:
    if "inheritance" not in document:
        document["inheritance"] = "override"
    if "defaultAction" not in document and "default_action" not in document:
        document["defaultAction"] = {"effect": "deny", "reason": DEFAULT_DENY_REASON}
    return document


MIGRATIONS: tuple[Migration, ...] = (
    Migration("1.0", "1.1", "Add default metadata", _add_default_metadata),
    Migration("1.1", "2.0", "Add inheritance mode and default action", _add_inheritance_defaults),
)


def normalize_version(value: Any) -> str:
    """
    Normalize a version field to its string form.

    YAML reads an unquoted 1.0 as a float and 2 as an int; both are
    accepted. A missing version means the current version.
    """
    if value is None:
        return CURRENT_VERSION
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return f"{float(value):.1f}"
    return str(value).strip()


def needs_migration(document: Mapping[str, Any]) -> bool:
    """True if the document is a supported version older than current."""
    version = normalize_version(document.get("version"))
    return version in SUPPORTED_VERSIONS and version != CURRENT_VERSION


def migrate_document(document: Mapping[str, Any]) -> MigrationOutcome:
    """
    Upgrade a raw document to the current schema version.

    The input mapping is never mutated.

    Args:
        document: Raw policy document mapping

    Returns:
        MigrationOutcome with the upgraded document and applied steps

    Raises:
        MigrationError: If the version is unknown or a transform fails
    """
    original = normalize_version(document.get("version"))
    if original not in SUPPORTED_VERSIONS:
        raise MigrationError(
            from_version=original,
            to_version=CURRENT_VERSION,
            underlying_error=f"no migration path from version {original!r}",
        )

    current = copy.deepcopy(dict(document))
    version = original
    applied: list[str] = []

    for step in MIGRATIONS:
        if step.from_version != version:
            continue
        try:
            current = step.transform(current)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise MigrationError(
                from_version=step.from_version,
                to_version=step.to_version,
                underlying_error=str(e),
            ) from e
        current["version"] = step.to_version
        version = step.to_version
        applied.append(f"{step.from_version}->{step.to_version}")

    current["version"] = version
    return MigrationOutcome(document=current, original_version=original, applied=applied)
