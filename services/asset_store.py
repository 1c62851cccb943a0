# ============================================================================
# ASSET STORE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain service - Single-node asset CRUD
# PURPOSE: Tenant-scoped create/get/update/delete with path assignment
# CREATED: 10 OCT 2026
# ============================================================================
"""
AssetStore

Durable per-tenant CRUD over Asset records. Owns materialized-path
computation for creates; never changes parent_id/path/level on update
(those belong to HierarchyManager).

Rules:
- Every call names its tenant; there is no default tenant.
- An asset that exists under another tenant is reported exactly like a
  missing one (CrossTenantError is a NotFoundError with the same message).
- Creates under a parent lock Path(parent), so a concurrent move of any
  ancestor cannot leave the new child with a stale path.
- Decommissioned parents accept no children.

Pattern: constructor injection of the asset repository (memory or
PostgreSQL) and a structural LockManager; async methods; services raise,
repositories return False/None.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from core.config import HierarchyDefaults, get_defaults
from core.errors import (
    ConcurrentModificationError,
    CrossTenantError,
    HasChildrenError,
    NotFoundError,
    ParentNotFoundError,
    ValidationError,
)
from core.logging import ComponentType, get_logger
from core.models import Asset
from infrastructure.locking import LockManager, asset_lock_key

logger = get_logger(__name__, ComponentType.SERVICE)

# Fields owned by HierarchyManager or fixed at creation
STRUCTURAL_FIELDS = frozenset({"asset_id", "tenant_id", "parent_id", "path", "level"})
AUDIT_FIELDS = frozenset({"created_at", "created_by", "updated_at", "updated_by", "version"})


def require_tenant(tenant_id: Optional[str]) -> str:
    """Reject a missing tenant rather than falling back to a default."""
    if not tenant_id or not str(tenant_id).strip():
        raise ValidationError("A tenant id is required")
    return tenant_id


class AssetStore:
    """Tenant-scoped CRUD for single assets."""

    def __init__(
        self,
        assets,
        locks: LockManager,
        defaults: Optional[HierarchyDefaults] = None,
    ):
        self.assets = assets
        self.locks = locks
        self.defaults = defaults or get_defaults().hierarchy

    # ================================================================
    # BUILD / VALIDATE
    # ================================================================

    @staticmethod
    def build(tenant_id: str, **fields: Any) -> Asset:
        """
        Construct a new Asset from raw fields.

        Raises:
            ValidationError: malformed metadata/location/name, or structural
                fields supplied by the caller.
        """
        require_tenant(tenant_id)
        forbidden = {"path", "level", "version"} & set(fields)
        if forbidden:
            raise ValidationError(f"Fields {sorted(forbidden)} are assigned by the store")
        fields = {k: v for k, v in fields.items() if v is not None}
        try:
            return Asset(tenant_id=tenant_id, **fields)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, fields.get("asset_id"))

    @staticmethod
    def apply_changes(asset: Asset, changes: Dict[str, Any]) -> Asset:
        """
        Return a validated copy of `asset` with non-structural `changes`.

        Raises:
            ValidationError: structural field in `changes` or invalid value.
        """
        structural = (STRUCTURAL_FIELDS | AUDIT_FIELDS) & set(changes)
        if structural:
            raise ValidationError(
                f"Asset '{asset.asset_id}': {sorted(structural)} cannot be changed by an update; "
                f"use move for re-parenting",
                asset.asset_id,
            )
        try:
            return Asset(**{**dict(asset), **changes})
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, asset.asset_id)

    # ================================================================
    # CREATE
    # ================================================================

    async def create(self, asset: Asset) -> Asset:
        """
        Persist a new asset; path/level come from the parent snapshot.

        Raises:
            ParentNotFoundError: parent_id set but absent in this tenant.
            ValidationError: decommissioned parent, depth limit, duplicate
                sibling name or id.
        """
        tenant_id = require_tenant(asset.tenant_id)

        if asset.parent_id is None:
            asset.place_under(None)
            await self._insert(asset)
            logger.info(f"Created root asset {asset.asset_id} '{asset.name}'")
            return asset

        parent = await self._load_parent(tenant_id, asset.parent_id)
        async with self.locks.acquire(
            [asset_lock_key(tenant_id, a) for a in parent.path],
            self.defaults.structural_lock_timeout,
        ):
            # Re-read under the lock: the parent may have moved or gone
            parent = await self._load_parent(tenant_id, asset.parent_id)
            if parent.is_decommissioned:
                raise ValidationError(
                    f"Parent asset '{parent.asset_id}' is decommissioned and accepts no children",
                    parent.asset_id,
                )
            if parent.level + 1 >= self.defaults.max_tree_depth:
                raise ValidationError(
                    f"Asset '{asset.asset_id}' would exceed the maximum tree depth "
                    f"({self.defaults.max_tree_depth})",
                    asset.asset_id,
                )
            asset.place_under(parent)
            await self._insert(asset)

        logger.info(
            f"Created asset {asset.asset_id} '{asset.name}' under {parent.asset_id} "
            f"(level {asset.level})"
        )
        return asset

    async def _insert(self, asset: Asset) -> None:
        if not await self.assets.insert(asset):
            raise ValidationError(
                f"Asset '{asset.asset_id}': an asset with this id, or a sibling named "
                f"'{asset.name}', already exists",
                asset.asset_id,
            )

    async def _load_parent(self, tenant_id: str, parent_id: str) -> Asset:
        parent = await self.assets.get(tenant_id, parent_id)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        return parent

    # ================================================================
    # READ
    # ================================================================

    async def get(self, asset_id: str, tenant_id: str) -> Asset:
        """
        Raises:
            NotFoundError: absent, or owned by another tenant (CrossTenantError).
        """
        require_tenant(tenant_id)
        asset = await self.assets.get(tenant_id, asset_id)
        if asset is not None:
            return asset
        if await self.assets.exists_in_other_tenant(tenant_id, asset_id):
            logger.warning(f"Cross-tenant reference to asset {asset_id} rejected")
            raise CrossTenantError(asset_id)
        raise NotFoundError(asset_id)

    async def find(self, asset_id: str, tenant_id: str) -> Optional[Asset]:
        return await self.assets.get(require_tenant(tenant_id), asset_id)

    # ================================================================
    # UPDATE
    # ================================================================

    async def update(self, asset: Asset, actor: Optional[str] = None) -> Asset:
        """
        Persist non-structural edits with optimistic locking.

        Raises:
            NotFoundError: asset absent in this tenant.
            ValidationError: structural change, invalid status transition,
                sibling name clash.
            ConcurrentModificationError: version conflict.
        """
        current = await self.get(asset.asset_id, asset.tenant_id)

        if (
            asset.parent_id != current.parent_id
            or list(asset.path) != list(current.path)
            or asset.level != current.level
        ):
            raise ValidationError(
                f"Asset '{asset.asset_id}': parent/path/level cannot be changed by an update; "
                f"use move for re-parenting",
                asset.asset_id,
            )
        if asset.status != current.status:
            # Validates direction; raises on backwards transitions
            current.transition_status(asset.status, actor)

        asset.touch(actor)
        if await self.assets.update(asset):
            logger.info(f"Updated asset {asset.asset_id} (version {asset.version})")
            return asset

        if asset.name != current.name and await self._sibling_named(asset):
            raise ValidationError(
                f"Asset '{asset.asset_id}': a sibling named '{asset.name}' already exists",
                asset.asset_id,
            )
        raise ConcurrentModificationError(
            f"Asset '{asset.asset_id}' was modified concurrently (expected version {asset.version})",
            asset.asset_id,
        )

    async def _sibling_named(self, asset: Asset) -> bool:
        if asset.parent_id is None:
            siblings = await self.assets.list_roots(asset.tenant_id)
        else:
            siblings = await self.assets.list_children(asset.tenant_id, asset.parent_id)
        return any(s.name == asset.name and s.asset_id != asset.asset_id for s in siblings)

    # ================================================================
    # DELETE (single node)
    # ================================================================

    async def delete(self, asset_id: str, tenant_id: str) -> Asset:
        """
        Delete a childless asset.

        Raises:
            NotFoundError: asset absent in this tenant.
            HasChildrenError: asset still has children.
        """
        asset = await self.get(asset_id, tenant_id)
        counts = await self.assets.count_children(tenant_id, [asset_id])
        if counts.get(asset_id, 0):
            raise HasChildrenError(asset_id, counts[asset_id])
        if not await self.assets.delete(tenant_id, asset_id):
            # Lost a race: either a child appeared or the asset is gone
            await self.get(asset_id, tenant_id)
            counts = await self.assets.count_children(tenant_id, [asset_id])
            raise HasChildrenError(asset_id, counts.get(asset_id, 0))
        logger.info(f"Deleted asset {asset_id}")
        return asset


__all__ = ["AssetStore", "require_tenant", "STRUCTURAL_FIELDS"]
