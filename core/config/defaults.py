# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Default configuration values
# PURPOSE: Centralized limits for hierarchy edits, queries, rollups, storage
# CREATED: 06 OCT 2026
# ============================================================================
"""
Configuration Defaults

Limits and timeouts for the asset hierarchy engine.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StorageBackend(str, Enum):
    """Where assets and states live."""
    MEMORY = "memory"
    POSTGRES = "postgres"


@dataclass(frozen=True)
class HierarchyDefaults:
    """
    Limits for structural operations (create/move/delete).

    max_subtree_size is checked before any lock is taken, so an oversized
    move fails fast instead of blocking the tree.
    """
    max_subtree_size: int = 10000
    max_tree_depth: int = 32
    structural_lock_timeout: float = 5.0  # seconds
    move_retry_attempts: int = 3

    @classmethod
    def from_env(cls) -> "HierarchyDefaults":
        """Create from environment variables."""
        return cls(
            max_subtree_size=int(os.getenv("HIERARCHY_MAX_SUBTREE_SIZE", 10000)),
            max_tree_depth=int(os.getenv("HIERARCHY_MAX_DEPTH", 32)),
            structural_lock_timeout=float(os.getenv("HIERARCHY_LOCK_TIMEOUT_SECONDS", 5.0)),
            move_retry_attempts=int(os.getenv("HIERARCHY_MOVE_RETRIES", 3)),
        )


@dataclass(frozen=True)
class QueryDefaults:
    """Bounds for read-side traversals and listings."""
    default_tree_depth: int = 5
    max_result_count: int = 5000
    default_page_size: int = 100
    max_page_size: int = 1000

    def clamp_page(self, take: Optional[int]) -> int:
        """Page size within [1, max_page_size]."""
        if take is None:
            return self.default_page_size
        return max(1, min(int(take), self.max_page_size))

    @classmethod
    def from_env(cls) -> "QueryDefaults":
        """Create from environment variables."""
        return cls(
            default_tree_depth=int(os.getenv("QUERY_DEFAULT_TREE_DEPTH", 5)),
            max_result_count=int(os.getenv("QUERY_MAX_RESULTS", 5000)),
            default_page_size=int(os.getenv("QUERY_PAGE_SIZE", 100)),
            max_page_size=int(os.getenv("QUERY_MAX_PAGE_SIZE", 1000)),
        )


@dataclass(frozen=True)
class RollupDefaults:
    """Striped lock timeout for the rollup walk."""
    stripe_lock_timeout: float = 2.0  # seconds
    rollup_unmapped_fields: bool = False

    @classmethod
    def from_env(cls) -> "RollupDefaults":
        """Create from environment variables."""
        return cls(
            stripe_lock_timeout=float(os.getenv("ROLLUP_LOCK_TIMEOUT_SECONDS", 2.0)),
            rollup_unmapped_fields=os.getenv("ROLLUP_UNMAPPED_FIELDS", "false").lower() == "true",
        )


@dataclass(frozen=True)
class StorageDefaults:
    """
    Backend selection and PostgreSQL pool settings.

    Advisory locks run on a separate autocommit pool. Each task holds at
    most one lock connection for all of its overlapping lock scopes, so
    lock_pool_max_size caps concurrent structural edits and rollup walks
    per process; further callers wait for a free lock connection.
    """
    backend: StorageBackend = StorageBackend.MEMORY
    schema_name: str = "twin"
    pool_min_size: int = 2
    pool_max_size: int = 20
    statement_timeout_ms: int = 30000
    lock_pool_max_size: int = 10

    @classmethod
    def from_env(cls) -> "StorageDefaults":
        """Create from environment variables."""
        return cls(
            backend=StorageBackend(os.getenv("ASSET_STORE_BACKEND", "memory").lower()),
            schema_name=os.getenv("ASSET_DB_SCHEMA", "twin"),
            pool_min_size=int(os.getenv("DB_POOL_MIN", 2)),
            pool_max_size=int(os.getenv("DB_POOL_MAX", 20)),
            statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", 30000)),
            lock_pool_max_size=int(os.getenv("DB_LOCK_POOL_MAX", 10)),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    hierarchy: HierarchyDefaults = field(default_factory=HierarchyDefaults)
    query: QueryDefaults = field(default_factory=QueryDefaults)
    rollup: RollupDefaults = field(default_factory=RollupDefaults)
    storage: StorageDefaults = field(default_factory=StorageDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            hierarchy=HierarchyDefaults.from_env(),
            query=QueryDefaults.from_env(),
            rollup=RollupDefaults.from_env(),
            storage=StorageDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StorageBackend",
    "HierarchyDefaults",
    "QueryDefaults",
    "RollupDefaults",
    "StorageDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
