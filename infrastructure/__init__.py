# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Infrastructure - Concurrency primitives
# PURPOSE: Lock managers shared by hierarchy and rollup services
# CREATED: 09 OCT 2026
# ============================================================================
"""
Infrastructure module for the asset hierarchy engine.

Provides:
- StripedLockManager: in-process per-key asyncio locks
- AdvisoryLockManager: PostgreSQL advisory locks for multi-process deployments

Usage:
    from infrastructure import StripedLockManager, asset_lock_key

    locks = StripedLockManager()
    async with locks.acquire([asset_lock_key(tenant_id, asset_id)], timeout=2.0):
        ...
"""

from infrastructure.locking import (
    LockManager,
    StripedLockManager,
    AdvisoryLockManager,
    asset_lock_key,
    rollup_lock_key,
    hash_to_lock_id,
)

__all__ = [
    'LockManager',
    'StripedLockManager',
    'AdvisoryLockManager',
    'asset_lock_key',
    'rollup_lock_key',
    'hash_to_lock_id',
]
