# ============================================================================
# HIERARCHY MANAGER
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain service - Multi-node tree operations
# PURPOSE: Move/delete subtrees and path-index lookups under tree invariants
# CREATED: 10 OCT 2026
# ============================================================================
"""
HierarchyManager

Enforces the tree invariants across multi-node operations:

    path(asset)  = path(parent) + [asset_id]      level = len(path) - 1
    no asset appears in its own path except last  (acyclic)
    one tenant per path

Move protocol:
    1. load asset + new parent (NotFound / CrossTenant)
    2. reject cycles (target is self or a descendant)
    3. subtree size check, before any lock (SubtreeTooLarge)
    4. lock Path(asset) + Path(new parent) in sorted order, bounded wait
    5. re-read; if a concurrent edit changed either path, release and retry
    6. one batch rewrite of every path in the subtree, committed while the
       moved root's rollup stripe is pinned
    7. transfer the subtree's aggregates from the old chain to the new one

Ancestor/descendant lookups come straight from the path index: ancestors
are the elements of path(asset), descendants are one prefix range read.
"""

from contextlib import nullcontext
from typing import Awaitable, List, Optional, Tuple

from core.config import HierarchyDefaults, QueryDefaults, get_defaults
from core.errors import (
    ConcurrentModificationError,
    CycleDetectedError,
    HasChildrenError,
    SubtreeTooLargeError,
    TraversalLimitExceededError,
    ValidationError,
)
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import Asset
from infrastructure.locking import LockManager, asset_lock_key
from services.asset_store import AssetStore, require_tenant

logger = get_logger(__name__, ComponentType.SERVICE)


class HierarchyManager:
    """Structural edits and path-index lookups."""

    def __init__(
        self,
        store: AssetStore,
        locks: LockManager,
        defaults: Optional[HierarchyDefaults] = None,
        query_defaults: Optional[QueryDefaults] = None,
    ):
        self.store = store
        self.assets = store.assets
        self.locks = locks
        self.defaults = defaults or get_defaults().hierarchy
        self.query_defaults = query_defaults or get_defaults().query
        self._rollups = None

    def attach_state_cache(self, rollups) -> None:
        """Wire the RollupEngine notified on structural changes."""
        self._rollups = rollups

    def _pinned(self, tenant_id: str, asset_id: str):
        if self._rollups is None:
            return nullcontext()
        return self._rollups.pinned(tenant_id, asset_id)

    def _lock_keys(self, tenant_id: str, *paths: List[str]) -> List[str]:
        return [asset_lock_key(tenant_id, a) for a in {a for path in paths for a in path}]

    # ================================================================
    # STRUCTURE LOOKUPS (used by RollupEngine)
    # ================================================================

    async def get_asset(self, asset_id: str, tenant_id: str) -> Asset:
        return await self.store.get(asset_id, tenant_id)

    async def get_node(self, tenant_id: str, asset_id: str) -> Optional[Asset]:
        """Committed snapshot of one node, None if absent."""
        return await self.assets.get(tenant_id, asset_id)

    async def get_nodes(self, tenant_id: str, asset_ids: List[str]) -> List[Asset]:
        return await self.assets.get_many(tenant_id, asset_ids)

    async def list_child_ids(self, tenant_id: str, asset_id: str) -> List[str]:
        return [c.asset_id for c in await self.assets.list_children(tenant_id, asset_id)]

    # ================================================================
    # MOVE
    # ================================================================

    async def move_asset(
        self,
        asset_id: str,
        new_parent_id: Optional[str],
        tenant_id: str,
        actor: Optional[str] = None,
    ) -> Asset:
        """
        Re-parent `asset_id` (None = make it a root).

        Raises:
            NotFoundError / CrossTenantError: asset or new parent not in tenant.
            CycleDetectedError: new parent is the asset or one of its descendants.
            SubtreeTooLargeError: subtree exceeds max_subtree_size.
            ValidationError: decommissioned target, name clash, depth limit.
            ConcurrentModificationError: lock timeout or retries exhausted.
        """
        require_tenant(tenant_id)
        attempts = max(1, self.defaults.move_retry_attempts)

        with log_context(tenant_id=tenant_id, asset_id=asset_id, actor=actor, operation="move"):
            for attempt in range(1, attempts + 1):
                asset, new_parent = await self._validate_move(asset_id, new_parent_id, tenant_id)
                if asset.parent_id == new_parent_id:
                    logger.info(f"Asset {asset_id} already under {new_parent_id}; nothing to move")
                    return asset
                await self._check_subtree_size(asset)

                parent_path = new_parent.path if new_parent else []
                async with self.locks.acquire(
                    self._lock_keys(tenant_id, asset.path, parent_path),
                    self.defaults.structural_lock_timeout,
                ):
                    fresh, fresh_parent = await self._validate_move(asset_id, new_parent_id, tenant_id)
                    if fresh.path != asset.path or (fresh_parent and fresh_parent.path != parent_path):
                        logger.info(f"Tree changed before move of {asset_id} was locked (attempt {attempt})")
                        continue

                    subtree = await self._bounded_subtree(fresh)
                    self._check_depth(fresh, fresh_parent, subtree)
                    await self._check_sibling_name(fresh, new_parent_id)

                    async with self._pinned(tenant_id, asset_id):
                        moved = await self.assets.move_subtree(
                            tenant_id, asset_id, fresh.path, list(parent_path), actor
                        )
                        if moved == 0:
                            raise ConcurrentModificationError(
                                f"Asset '{asset_id}' changed during move", asset_id
                            )
                        if self._rollups is not None:
                            transfer = self._rollups.transfer_subtree(
                                tenant_id,
                                asset_id,
                                fresh.parent_id,
                                new_parent_id,
                                [a.asset_id for a in subtree],
                            )
                            await self._after_commit("Rollup transfer", asset_id, transfer)

                log_checkpoint("asset_moved", {
                    "asset_id": asset_id,
                    "old_parent_id": fresh.parent_id,
                    "new_parent_id": new_parent_id,
                    "subtree_size": moved,
                })
                logger.info(f"Moved asset {asset_id} ({moved} nodes) under {new_parent_id}")
                return await self.store.get(asset_id, tenant_id)

        raise ConcurrentModificationError(
            f"Asset '{asset_id}' could not be moved: tree kept changing ({attempts} attempts)",
            asset_id,
        )

    async def _validate_move(
        self, asset_id: str, new_parent_id: Optional[str], tenant_id: str
    ) -> Tuple[Asset, Optional[Asset]]:
        asset = await self.store.get(asset_id, tenant_id)
        if new_parent_id is None:
            return asset, None
        if new_parent_id == asset_id:
            raise CycleDetectedError(asset_id, new_parent_id)
        new_parent = await self.store.get(new_parent_id, tenant_id)
        if asset_id in new_parent.path:
            raise CycleDetectedError(asset_id, new_parent_id)
        if new_parent.is_decommissioned:
            raise ValidationError(
                f"Parent asset '{new_parent_id}' is decommissioned and accepts no children",
                new_parent_id,
            )
        return asset, new_parent

    async def _check_subtree_size(self, asset: Asset) -> int:
        size = await self.assets.count_subtree(asset.tenant_id, asset.path)
        if size > self.defaults.max_subtree_size:
            raise SubtreeTooLargeError(asset.asset_id, size, self.defaults.max_subtree_size)
        return size

    async def _bounded_subtree(self, asset: Asset) -> List[Asset]:
        limit = self.defaults.max_subtree_size
        subtree = await self.assets.list_subtree(asset.tenant_id, asset.path, limit=limit + 1)
        if len(subtree) > limit:
            size = await self.assets.count_subtree(asset.tenant_id, asset.path)
            raise SubtreeTooLargeError(asset.asset_id, size, limit)
        return subtree

    def _check_depth(self, asset: Asset, new_parent: Optional[Asset], subtree: List[Asset]) -> None:
        relative = max(a.level for a in subtree) - asset.level
        new_level = new_parent.level + 1 if new_parent else 0
        if new_level + relative >= self.defaults.max_tree_depth:
            raise ValidationError(
                f"Moving asset '{asset.asset_id}' would exceed the maximum tree depth "
                f"({self.defaults.max_tree_depth})",
                asset.asset_id,
            )

    async def _check_sibling_name(self, asset: Asset, new_parent_id: Optional[str]) -> None:
        if new_parent_id is None:
            siblings = await self.assets.list_roots(asset.tenant_id)
        else:
            siblings = await self.assets.list_children(asset.tenant_id, new_parent_id)
        if any(s.name == asset.name for s in siblings):
            raise ValidationError(
                f"Asset '{asset.asset_id}': target already has a child named '{asset.name}'",
                asset.asset_id,
            )

    # ================================================================
    # DELETE
    # ================================================================

    async def delete_asset(
        self, asset_id: str, tenant_id: str, cascade: bool = False
    ) -> List[str]:
        """
        Delete an asset; with cascade, the whole subtree in one batch.

        Returns:
            Ids of removed assets.

        Raises:
            NotFoundError / CrossTenantError: asset not in tenant.
            HasChildrenError: children present and cascade is False.
            SubtreeTooLargeError: cascade over more than max_subtree_size nodes.
        """
        require_tenant(tenant_id)
        with log_context(tenant_id=tenant_id, asset_id=asset_id, operation="delete"):
            asset = await self.store.get(asset_id, tenant_id)
            await self._require_childless(asset, cascade)
            await self._check_subtree_size(asset)

            async with self.locks.acquire(
                self._lock_keys(tenant_id, asset.path),
                self.defaults.structural_lock_timeout,
            ):
                asset = await self.store.get(asset_id, tenant_id)
                await self._require_childless(asset, cascade)
                async with self._pinned(tenant_id, asset_id):
                    if cascade:
                        removed = await self.assets.delete_subtree(tenant_id, asset.path)
                    else:
                        await self.store.delete(asset_id, tenant_id)
                        removed = [asset_id]
                    if self._rollups is not None:
                        await self._after_commit(
                            "Rollup withdrawal",
                            asset_id,
                            self._rollups.drop_subtree(tenant_id, asset_id, asset.parent_id, removed),
                        )

            log_checkpoint("subtree_deleted", {
                "asset_id": asset_id,
                "cascade": cascade,
                "removed": len(removed),
            })
            logger.info(f"Deleted asset {asset_id} ({len(removed)} nodes, cascade={cascade})")
            return removed

    async def _after_commit(self, what: str, asset_id: str, step: Awaitable[None]) -> None:
        """Run a rollup step whose structural change is already committed."""
        try:
            await step
        except Exception as e:
            logger.error(
                f"{what} for asset {asset_id} failed after the tree change committed; "
                f"ancestor rollups are stale until re-derived: {e}"
            )
            raise

    async def _require_childless(self, asset: Asset, cascade: bool) -> None:
        if cascade:
            return
        counts = await self.assets.count_children(asset.tenant_id, [asset.asset_id])
        if counts.get(asset.asset_id, 0):
            raise HasChildrenError(asset.asset_id, counts[asset.asset_id])

    # ================================================================
    # PATH-INDEX LOOKUPS
    # ================================================================

    async def get_ancestors(self, asset_id: str, tenant_id: str) -> List[Asset]:
        """Ancestors root-first (the elements of path(asset) without itself)."""
        asset = await self.store.get(asset_id, tenant_id)
        return await self.assets.get_many(tenant_id, asset.ancestor_ids)

    async def get_descendants(self, asset_id: str, tenant_id: str) -> List[Asset]:
        """
        All descendants ordered by path, one range read.

        Raises:
            TraversalLimitExceededError: more than max_result_count descendants.
        """
        asset = await self.store.get(asset_id, tenant_id)
        limit = self.query_defaults.max_result_count
        subtree = await self.assets.list_subtree(tenant_id, asset.path, limit=limit + 2)
        descendants = [a for a in subtree if a.asset_id != asset_id]
        if len(descendants) > limit:
            raise TraversalLimitExceededError(asset_id, limit)
        return descendants

    async def get_children(self, asset_id: str, tenant_id: str) -> List[Asset]:
        await self.store.get(asset_id, tenant_id)
        return await self.assets.list_children(tenant_id, asset_id)

    async def get_roots(self, tenant_id: str) -> List[Asset]:
        return await self.assets.list_roots(require_tenant(tenant_id))


__all__ = ["HierarchyManager"]
