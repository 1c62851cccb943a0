# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Business logic layer
# PURPOSE: Asset CRUD, hierarchy edits, rollups and read-side queries
# CREATED: 10 OCT 2026
# ============================================================================
"""
Services Module

Business logic for the asset hierarchy engine. Services coordinate
repositories and locks; repositories never raise domain errors.

Usage:
    from services import AssetTwinService

    service = AssetTwinService.build(assets, states, mappings, locks)
    tree = await service.get_tree(site_id, "tenant-1", max_depth=3)
"""

from .asset_store import AssetStore, require_tenant
from .hierarchy_service import HierarchyManager
from .rollup_service import MappingProvider, RollupEngine
from .query_service import AssetTreeNode, QueryEngine
from .twin_service import AssetTwinService

__all__ = [
    "AssetStore",
    "require_tenant",
    "HierarchyManager",
    "RollupEngine",
    "MappingProvider",
    "QueryEngine",
    "AssetTreeNode",
    "AssetTwinService",
]
