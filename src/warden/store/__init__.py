"""
Storage module for Warden.

The engine reaches persistence only through the PolicyStore and AuditStore
interfaces. Two implementations ship with Warden:

    - InMemoryPolicyStore / InMemoryAuditStore: lock-guarded dicts
    - WardenDB: a single SQLite file implementing both interfaces

Tables (WardenDB):
    - policies: Raw policy documents indexed by scope and target
    - audit_events: Per-tenant hash chains, UNIQUE(tenant_id, sequence)
    - schema_version: Applied schema versions
"""

from warden.store.base import AuditStore, PolicyStore, document_key
from warden.store.db import WardenDB
from warden.store.memory import InMemoryAuditStore, InMemoryPolicyStore

__all__ = [
    "AuditStore",
    "PolicyStore",
    "document_key",
    "WardenDB",
    "InMemoryAuditStore",
    "InMemoryPolicyStore",
]
