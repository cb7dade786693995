"""
Warden - Policy decision engine with scope inheritance and a tamper-evident audit trail.

Warden decides whether an agent- or human-initiated action is permitted
and keeps a verifiable record of every decision. It provides:
- Prioritized, first-match policy rules with a deny-by-default fallback
- Policy inheritance across global, org, repo and branch scopes
- Schema validation with automatic migration of older documents
- Per-tenant hash-chained audit logs with verification and SIEM export

Example usage:
    $ warden validate policy.yaml
    $ warden evaluate policy.yaml --context request.yaml --explain
    $ warden audit verify acme --db warden.db
"""

__version__ = "0.1.0"
__author__ = "Warden Contributors"

__all__ = [
    "__version__",
    "__author__",
]
