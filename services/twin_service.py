# ============================================================================
# ASSET TWIN SERVICE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain service - External contract facade
# PURPOSE: One entry point for the API layer and the telemetry pipeline
# CREATED: 12 OCT 2026
# ============================================================================
"""
AssetTwinService

Composes AssetStore, HierarchyManager, RollupEngine and QueryEngine into
the surface the HTTP layer and the telemetry pipeline call. Adds log
context per call and the one cross-component rule the individual services
cannot see: decommissioning an asset withdraws it from rollups.

Usage:
    service = AssetTwinService.build(
        assets=InMemoryAssetRepository(),
        states=InMemoryStateRepository(),
        mappings=InMemoryMappingRegistry(),
        locks=StripedLockManager(),
    )
    site = await service.create_asset("tenant-1", name="Plant A", asset_type="site")
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.config import Defaults, get_defaults
from core.contracts import AlarmSeverity, AssetStatus, AssetType
from core.logging import ComponentType, get_logger, log_context
from core.models import Asset, AssetState
from infrastructure.locking import LockManager
from services.asset_store import AssetStore
from services.hierarchy_service import HierarchyManager
from services.query_service import AssetTreeNode, QueryEngine
from services.rollup_service import MappingProvider, RollupEngine

logger = get_logger(__name__, ComponentType.SERVICE)


class AssetTwinService:
    """Asset hierarchy + live state facade."""

    def __init__(
        self,
        store: AssetStore,
        hierarchy: HierarchyManager,
        rollups: RollupEngine,
        queries: QueryEngine,
    ):
        self.store = store
        self.hierarchy = hierarchy
        self.rollups = rollups
        self.queries = queries

    @classmethod
    def build(
        cls,
        assets,
        states,
        mappings: MappingProvider,
        locks: LockManager,
        stripes: Optional[LockManager] = None,
        defaults: Optional[Defaults] = None,
    ) -> "AssetTwinService":
        """Wire the four services over one set of repositories."""
        defaults = defaults or get_defaults()
        store = AssetStore(assets, locks, defaults.hierarchy)
        hierarchy = HierarchyManager(store, locks, defaults.hierarchy, defaults.query)
        rollups = RollupEngine(
            hierarchy,
            states,
            mappings,
            stripes or locks,
            defaults.rollup,
            max_depth=defaults.hierarchy.max_tree_depth,
        )
        hierarchy.attach_state_cache(rollups)
        queries = QueryEngine(store, rollups, defaults.query, defaults.hierarchy.max_tree_depth)
        return cls(store, hierarchy, rollups, queries)

    # ================================================================
    # ASSETS
    # ================================================================

    async def create_asset(self, tenant_id: str, actor: Optional[str] = None, **fields: Any) -> Asset:
        with log_context(tenant_id=tenant_id, actor=actor, operation="create_asset"):
            asset = self.store.build(tenant_id, created_by=actor, updated_by=actor, **fields)
            return await self.store.create(asset)

    async def get_asset(self, asset_id: str, tenant_id: str) -> Asset:
        return await self.store.get(asset_id, tenant_id)

    async def update_asset(
        self,
        asset_id: str,
        tenant_id: str,
        changes: Dict[str, Any],
        actor: Optional[str] = None,
    ) -> Asset:
        """Apply non-structural changes; decommissioning withdraws rollups."""
        with log_context(tenant_id=tenant_id, asset_id=asset_id, actor=actor, operation="update_asset"):
            current = await self.store.get(asset_id, tenant_id)
            updated = self.store.apply_changes(current, changes)
            was_decommissioned = current.is_decommissioned
            result = await self.store.update(updated, actor)
            if result.is_decommissioned and not was_decommissioned:
                await self.rollups.withdraw_asset(asset_id, tenant_id)
            return result

    async def set_status(
        self, asset_id: str, tenant_id: str, status: AssetStatus, actor: Optional[str] = None
    ) -> Asset:
        return await self.update_asset(asset_id, tenant_id, {"status": AssetStatus(status)}, actor)

    async def delete_asset(self, asset_id: str, tenant_id: str, cascade: bool = False) -> List[str]:
        return await self.hierarchy.delete_asset(asset_id, tenant_id, cascade)

    async def move_asset(
        self,
        asset_id: str,
        new_parent_id: Optional[str],
        tenant_id: str,
        actor: Optional[str] = None,
    ) -> Asset:
        return await self.hierarchy.move_asset(asset_id, new_parent_id, tenant_id, actor)

    # ================================================================
    # HIERARCHY READS
    # ================================================================

    async def get_children(self, asset_id: str, tenant_id: str) -> List[Asset]:
        return await self.hierarchy.get_children(asset_id, tenant_id)

    async def get_descendants(self, asset_id: str, tenant_id: str) -> List[Asset]:
        return await self.hierarchy.get_descendants(asset_id, tenant_id)

    async def get_ancestors(self, asset_id: str, tenant_id: str) -> List[Asset]:
        return await self.hierarchy.get_ancestors(asset_id, tenant_id)

    async def get_root_assets(self, tenant_id: str) -> List[Asset]:
        return await self.hierarchy.get_roots(tenant_id)

    async def search_assets(
        self,
        tenant_id: str,
        search_term: Optional[str] = None,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
        parent_id: Optional[str] = None,
        skip: int = 0,
        take: Optional[int] = None,
    ) -> Tuple[List[Asset], int]:
        return await self.queries.search_assets(
            tenant_id, search_term, asset_type, status, parent_id, skip, take
        )

    async def get_all_assets(self, tenant_id: str, skip: int = 0, take: Optional[int] = None) -> List[Asset]:
        return await self.queries.get_all_assets(tenant_id, skip, take)

    async def count_assets(
        self,
        tenant_id: str,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
    ) -> int:
        return await self.queries.count_assets(tenant_id, asset_type, status)

    async def get_path_names(self, asset_id: str, tenant_id: str) -> str:
        return await self.queries.get_path_names(asset_id, tenant_id)

    async def get_tree(
        self,
        root_id: str,
        tenant_id: str,
        max_depth: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AssetTreeNode:
        with log_context(tenant_id=tenant_id, asset_id=root_id, operation="get_tree"):
            return await self.queries.get_tree(root_id, tenant_id, max_depth, cancel)

    async def child_counts(self, tenant_id: str, assets: Iterable[Asset]) -> Dict[str, int]:
        return await self.queries.child_counts(tenant_id, assets)

    # ================================================================
    # STATE
    # ================================================================

    async def update_state(
        self,
        asset_id: str,
        tenant_id: str,
        values: Dict[str, Any],
        source_device_id: Optional[str] = None,
    ) -> AssetState:
        with log_context(tenant_id=tenant_id, asset_id=asset_id, operation="update_state"):
            return await self.rollups.update_state(asset_id, tenant_id, values, source_device_id)

    async def get_state(self, asset_id: str, tenant_id: str) -> AssetState:
        return await self.rollups.get_state(asset_id, tenant_id)

    async def get_bulk_states(self, asset_ids: Iterable[str], tenant_id: str) -> Dict[str, AssetState]:
        return await self.queries.get_bulk_states(asset_ids, tenant_id)

    async def open_alarm(
        self, asset_id: str, tenant_id: str, alarm_id: str, severity: AlarmSeverity
    ) -> AssetState:
        with log_context(tenant_id=tenant_id, asset_id=asset_id, operation="open_alarm"):
            return await self.rollups.open_alarm(asset_id, tenant_id, alarm_id, severity)

    async def resolve_alarm(self, asset_id: str, tenant_id: str, alarm_id: str) -> AssetState:
        with log_context(tenant_id=tenant_id, asset_id=asset_id, operation="resolve_alarm"):
            return await self.rollups.resolve_alarm(asset_id, tenant_id, alarm_id)

    async def reset_window(self, asset_id: str, tenant_id: str) -> AssetState:
        with log_context(tenant_id=tenant_id, asset_id=asset_id, operation="reset_window"):
            return await self.rollups.reset_window(asset_id, tenant_id)


__all__ = ["AssetTwinService"]
