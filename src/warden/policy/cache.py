"""
Cache of resolved policies.

Resolving a target means loading, migrating, validating and merging a
chain of documents. The cache keeps the resulting ResolvedPolicy per
(tenant, scope, target) so the decision hot path skips all of that.

Design Principles:
    - Explicit: constructed with a CacheConfig and injected, never global
    - Snapshots: entries are frozen; a hit returns the stored object
      without re-validating it
    - Lock-free reads: get() is a plain dict lookup; puts, evictions and
      invalidations take the lock
    - Valid only: failed resolutions are never cached, so fixing a
      document takes effect on the next call
    - Last writer wins: two concurrent misses may both resolve; the later
      put replaces the earlier one

Eviction drops the oldest insertion once max_entries is reached. Entries
expire ttl_seconds after insertion when enable_ttl is set.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from warden.config import CacheConfig
from warden.policy.inheritance import ResolvedPolicy

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached resolution."""

    tenant_id: str
    scope: str
    scope_target: str

    @classmethod
    def for_scope(
        cls,
        tenant_id: str,
        org: str | None = None,
        repo: str | None = None,
        branch: str | None = None,
    ) -> "CacheKey":
        """Key for an org/repo/branch resolution, named after its most specific level."""
        if branch:
            scope = "branch"
        elif repo:
            scope = "repo"
        elif org:
            scope = "org"
        else:
            scope = "global"
        return cls(tenant_id, scope, ":".join(part or "" for part in (org, repo, branch)))

    @classmethod
    def for_policy(cls, tenant_id: str, policy_id: str) -> "CacheKey":
        """Key for a parent-pointer resolution of one document."""
        return cls(tenant_id, "policy", policy_id)

    def reached_by(self, scope: str, target: str) -> bool:
        """
        Whether a document bound to (scope, target) belongs in this key's chain.

        Global documents reach every scope key; org, repo and branch
        documents reach keys whose matching part equals their target.
        Parent-pointer keys follow explicit links only and are never reached.
        """
        if self.scope == "policy":
            return False
        if scope == "global":
            return True
        org, repo, branch = (self.scope_target.split(":", 2) + ["", ""])[:3]
        parts = {"org": org, "repo": repo, "branch": branch}
        return parts.get(scope) == target


@dataclass(frozen=True)
class CacheEntry:
    """A cached resolution and the documents it was built from."""

    resolved: ResolvedPolicy
    policy_ids: frozenset[str]
    created_at: float
    expires_at: float | None


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache counters."""

    hits: int
    misses: int
    evictions: int
    invalidations: int
    expirations: int
    size: int
    max_entries: int
    hit_rate: float


class PolicyCache:
    """
    Bounded, optionally expiring cache of ResolvedPolicy objects.

    Usage:
        cache = PolicyCache(CacheConfig(max_entries=500))
        key = CacheKey.for_scope("acme", org="acme", repo="acme/api")
        resolved = cache.get_or_resolve(key, lambda: resolver.resolve_scope("acme", "acme/api"))
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._expirations = 0

    def get(self, key: CacheKey) -> ResolvedPolicy | None:
        """Return the cached resolution, or None on a miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("cache_miss", tenant_id=key.tenant_id, scope=key.scope, target=key.scope_target)
            return None

        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
                    self._expirations += 1
            self._misses += 1
            logger.debug("cache_miss", tenant_id=key.tenant_id, scope=key.scope, expired=True)
            return None

        self._hits += 1
        return entry.resolved

    def put(self, key: CacheKey, resolved: ResolvedPolicy) -> bool:
        """
        Store a resolution.

        Returns:
            False (and stores nothing) if the resolution is invalid
        """
        if not resolved.valid:
            return False

        now = self._clock()
        entry = CacheEntry(
            resolved=resolved,
            policy_ids=resolved.policy_ids,
            created_at=now,
            expires_at=now + self.config.ttl_seconds if self.config.enable_ttl else None,
        )
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.config.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._evictions += 1
                logger.debug("cache_evict", tenant_id=oldest.tenant_id, scope=oldest.scope)
            self._entries[key] = entry
        return True

    def get_or_resolve(
        self,
        key: CacheKey,
        loader: Callable[[], ResolvedPolicy],
    ) -> ResolvedPolicy:
        """Return the cached resolution, or run loader and cache a valid result."""
        cached = self.get(key)
        if cached is not None:
            return cached
        resolved = loader()
        self.put(key, resolved)
        return resolved

    def invalidate(self, key: CacheKey) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._invalidations += 1
        if removed:
            logger.debug("cache_invalidate", tenant_id=key.tenant_id, scope=key.scope)
        return removed

    def invalidate_policy(self, policy_id: str) -> int:
        """Drop every entry whose chain includes policy_id. Returns the count."""
        with self._lock:
            stale = [key for key, entry in self._entries.items() if policy_id in entry.policy_ids]
            for key in stale:
                del self._entries[key]
            self._invalidations += len(stale)
        logger.debug("cache_invalidate", policy_id=policy_id, entries=len(stale))
        return len(stale)

    def invalidate_scope(self, scope: str, target: str) -> int:
        """
        Drop every entry a document bound to (scope, target) could change.

        A document new to a target is in no cached chain yet, so
        invalidate_policy does not reach the entries it now belongs to.
        Applies to every tenant; the policy store is shared.
        """
        with self._lock:
            stale = [key for key in self._entries if key.reached_by(scope, target)]
            for key in stale:
                del self._entries[key]
            self._invalidations += len(stale)
        logger.debug("cache_invalidate", scope=scope, target=target, entries=len(stale))
        return len(stale)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every entry of one tenant. Returns the count."""
        with self._lock:
            stale = [key for key in self._entries if key.tenant_id == tenant_id]
            for key in stale:
                del self._entries[key]
            self._invalidations += len(stale)
        logger.debug("cache_invalidate", tenant_id=tenant_id, entries=len(stale))
        return len(stale)

    def clear(self) -> None:
        """Drop everything. Counters are kept."""
        with self._lock:
            self._invalidations += len(self._entries)
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Snapshot of the counters."""
        lookups = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            invalidations=self._invalidations,
            expirations=self._expirations,
            size=len(self._entries),
            max_entries=self.config.max_entries,
            hit_rate=self._hits / lookups if lookups else 0.0,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
