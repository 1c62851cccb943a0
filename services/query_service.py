# ============================================================================
# QUERY ENGINE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain service - Read-side composition
# PURPOSE: Trees, listings, search, breadcrumbs and bulk state reads
# CREATED: 12 OCT 2026
# ============================================================================
"""
QueryEngine

Stateless reads over AssetStore + RollupEngine. Never mutates.

GetTree is a single path-prefix range read bounded by depth and by the
result ceiling, followed by in-memory nesting: rows come back ordered by
path, so every parent is seen before its children.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.config import QueryDefaults, get_defaults
from core.contracts import AssetStatus, AssetType
from core.errors import QueryCancelledError, TraversalLimitExceededError
from core.logging import ComponentType, get_logger
from core.models import Asset, AssetState
from services.asset_store import AssetStore, require_tenant

logger = get_logger(__name__, ComponentType.SERVICE)

# Nodes nested between cancellation checks
_CANCEL_CHECK_EVERY = 256


class AssetTreeNode(BaseModel):
    """One node of a GetTree response."""

    asset: Asset
    state: Optional[AssetState] = None
    child_count: int = 0
    truncated: bool = Field(default=False, description="Children exist below max_depth")
    children: List["AssetTreeNode"] = Field(default_factory=list)


AssetTreeNode.model_rebuild()


class QueryEngine:
    """Read-side queries."""

    def __init__(
        self,
        store: AssetStore,
        rollups,
        defaults: Optional[QueryDefaults] = None,
        max_tree_depth: Optional[int] = None,
    ):
        self.store = store
        self.assets = store.assets
        self.rollups = rollups
        self.defaults = defaults or get_defaults().query
        self.max_tree_depth = max_tree_depth or get_defaults().hierarchy.max_tree_depth

    # ================================================================
    # TREE
    # ================================================================

    async def get_tree(
        self,
        root_id: str,
        tenant_id: str,
        max_depth: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
        include_state: bool = True,
    ) -> AssetTreeNode:
        """
        Nested subtree of `root_id`, at most `max_depth` levels below it.

        Raises:
            NotFoundError: root not in tenant.
            TraversalLimitExceededError: more than max_result_count nodes.
            QueryCancelledError: `cancel` was set during the traversal.
        """
        depth = self.defaults.default_tree_depth if max_depth is None else max_depth
        depth = max(0, min(depth, self.max_tree_depth))
        limit = self.defaults.max_result_count

        self._check_cancel(cancel, root_id)
        root = await self.store.get(root_id, tenant_id)
        rows = await self.assets.list_subtree(
            tenant_id, root.path, max_level=root.level + depth, limit=limit + 1
        )
        if len(rows) > limit:
            raise TraversalLimitExceededError(root_id, limit)
        self._check_cancel(cancel, root_id)

        ids = [a.asset_id for a in rows]
        child_counts = await self.assets.count_children(tenant_id, ids)
        states: Dict[str, AssetState] = {}
        if include_state:
            states = await self.rollups.get_bulk_states(ids, tenant_id)
        self._check_cancel(cancel, root_id)

        nodes: Dict[str, AssetTreeNode] = {}
        boundary = root.level + depth
        for index, asset in enumerate(rows):
            if index % _CANCEL_CHECK_EVERY == 0:
                self._check_cancel(cancel, root_id)
            node = AssetTreeNode(
                asset=asset,
                state=states.get(asset.asset_id),
                child_count=child_counts.get(asset.asset_id, 0),
            )
            node.truncated = asset.level == boundary and node.child_count > 0
            nodes[asset.asset_id] = node
            parent = nodes.get(asset.parent_id) if asset.asset_id != root_id else None
            if parent is not None:
                parent.children.append(node)

        for node in nodes.values():
            node.children.sort(key=lambda n: n.asset.name)

        logger.debug(f"Tree of {root_id}: {len(rows)} nodes, depth {depth}")
        return nodes[root_id]

    @staticmethod
    def _check_cancel(cancel: Optional[asyncio.Event], root_id: str) -> None:
        if cancel is not None and cancel.is_set():
            raise QueryCancelledError(root_id)

    # ================================================================
    # LISTINGS
    # ================================================================

    async def get_all_assets(self, tenant_id: str, skip: int = 0, take: Optional[int] = None) -> List[Asset]:
        require_tenant(tenant_id)
        return await self.assets.list_all(tenant_id, max(0, skip), self.defaults.clamp_page(take))

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
        """Case-insensitive name/description search. Returns (page, total)."""
        require_tenant(tenant_id)
        term = search_term.strip() if search_term else None
        return await self.assets.search(
            tenant_id,
            search_term=term or None,
            asset_type=asset_type,
            status=status,
            parent_id=parent_id,
            skip=max(0, skip),
            take=self.defaults.clamp_page(take),
        )

    async def count_assets(
        self,
        tenant_id: str,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
    ) -> int:
        return await self.assets.count(require_tenant(tenant_id), asset_type=asset_type, status=status)

    async def get_path_names(self, asset_id: str, tenant_id: str) -> str:
        """Breadcrumb "Root > Child > Leaf" from one batched lookup."""
        asset = await self.store.get(asset_id, tenant_id)
        chain = await self.assets.get_many(tenant_id, asset.path)
        return " > ".join(a.name for a in chain)

    async def child_counts(self, tenant_id: str, assets: Iterable[Asset]) -> Dict[str, int]:
        return await self.assets.count_children(tenant_id, [a.asset_id for a in assets])

    # ================================================================
    # STATE
    # ================================================================

    async def get_bulk_states(self, asset_ids: Iterable[str], tenant_id: str) -> Dict[str, AssetState]:
        return await self.rollups.get_bulk_states(asset_ids, tenant_id)


__all__ = ["QueryEngine", "AssetTreeNode"]
