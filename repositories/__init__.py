# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Storage layer
# PURPOSE: Asset, state and mapping persistence (memory or PostgreSQL)
# CREATED: 08 OCT 2026
# ============================================================================
"""
Repositories Module

Two interchangeable backends with the same async contract:

    InMemoryAssetRepository / AssetRepository
    InMemoryStateRepository / StateRepository
    InMemoryMappingRegistry / MappingRepository

Usage:
    from repositories import get_pool, AssetRepository

    pool = await get_pool()
    asset_repo = AssetRepository(pool)
    asset = await asset_repo.get(tenant_id, asset_id)
"""

from .database import get_pool, init_pool, init_lock_pool, close_pool
from .schema import deploy_schema
from .asset_repo import AssetRepository
from .state_repo import StateRepository
from .mapping_repo import MappingRepository
from .memory import InMemoryAssetRepository, InMemoryStateRepository, InMemoryMappingRegistry

__all__ = [
    "get_pool",
    "init_pool",
    "init_lock_pool",
    "close_pool",
    "deploy_schema",
    "AssetRepository",
    "StateRepository",
    "MappingRepository",
    "InMemoryAssetRepository",
    "InMemoryStateRepository",
    "InMemoryMappingRegistry",
]
