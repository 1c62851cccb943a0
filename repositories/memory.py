# ============================================================================
# IN-MEMORY REPOSITORIES
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Arena + sorted path index backend
# PURPOSE: Single-process asset/state storage for tests and local runs
# CREATED: 08 OCT 2026
# ============================================================================
"""
In-Memory Repositories

Same contract as the PostgreSQL repositories, backed by:

    arena       {(tenant_id, asset_id): Asset}
    path index  per tenant, a sorted list of dotted path keys

Descendant scans are a contiguous bisect range over the path index
("a.b" -> every key in ["a.b.", "a.b/") ), never a per-level traversal.

Every method body runs without awaiting between its reads and writes, so
each call is atomic with respect to other coroutines on the loop. Readers
receive deep copies of the committed snapshot and never see a half-applied
batch.
"""

import bisect
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from core.contracts import AssetStatus, AssetType
from core.models import Asset, AssetState, DataPointMapping, PATH_SEPARATOR

logger = logging.getLogger(__name__)

# '/' sorts immediately after '.', bounding the descendant range
_RANGE_END = chr(ord(PATH_SEPARATOR) + 1)


def _key(path: Iterable[str]) -> str:
    return PATH_SEPARATOR.join(path)


class InMemoryAssetRepository:
    """Arena of assets plus a per-tenant sorted path index."""

    def __init__(self):
        self._assets: Dict[Tuple[str, str], Asset] = {}
        self._tenants_of: Dict[str, Set[str]] = {}
        self._path_index: Dict[str, List[str]] = {}
        self._id_by_key: Dict[Tuple[str, str], str] = {}
        self._names: Dict[Tuple[str, Optional[str]], Dict[str, str]] = {}

    # =========================================================================
    # INDEX MAINTENANCE
    # =========================================================================

    def _index_add(self, asset: Asset) -> None:
        keys = self._path_index.setdefault(asset.tenant_id, [])
        key = asset.path_key
        bisect.insort(keys, key)
        self._id_by_key[(asset.tenant_id, key)] = asset.asset_id

    def _index_remove(self, asset: Asset) -> None:
        keys = self._path_index.get(asset.tenant_id, [])
        key = asset.path_key
        pos = bisect.bisect_left(keys, key)
        if pos < len(keys) and keys[pos] == key:
            keys.pop(pos)
        self._id_by_key.pop((asset.tenant_id, key), None)

    def _subtree_keys(self, tenant_id: str, path: List[str]) -> List[str]:
        """Path keys of the node at `path` and all its descendants, sorted."""
        keys = self._path_index.get(tenant_id, [])
        prefix = _key(path)
        result = []
        pos = bisect.bisect_left(keys, prefix)
        if pos < len(keys) and keys[pos] == prefix:
            result.append(prefix)
        lo = bisect.bisect_left(keys, prefix + PATH_SEPARATOR)
        hi = bisect.bisect_left(keys, prefix + _RANGE_END)
        result.extend(keys[lo:hi])
        return result

    def _sibling_names(self, tenant_id: str, parent_id: Optional[str]) -> Dict[str, str]:
        return self._names.setdefault((tenant_id, parent_id), {})

    # =========================================================================
    # SINGLE-NODE CRUD
    # =========================================================================

    async def insert(self, asset: Asset) -> bool:
        """Insert a new asset. False on duplicate id or sibling name."""
        key = (asset.tenant_id, asset.asset_id)
        if key in self._assets:
            logger.warning(f"Duplicate asset id {asset.asset_id} in tenant {asset.tenant_id}")
            return False
        siblings = self._sibling_names(asset.tenant_id, asset.parent_id)
        if asset.name in siblings:
            logger.warning(
                f"Duplicate name '{asset.name}' under parent {asset.parent_id}"
            )
            return False
        stored = asset.model_copy(deep=True)
        self._assets[key] = stored
        self._tenants_of.setdefault(asset.asset_id, set()).add(asset.tenant_id)
        siblings[asset.name] = asset.asset_id
        self._index_add(stored)
        logger.debug(f"Inserted asset {asset.asset_id} at {stored.path_key}")
        return True

    async def get(self, tenant_id: str, asset_id: str) -> Optional[Asset]:
        asset = self._assets.get((tenant_id, asset_id))
        return asset.model_copy(deep=True) if asset else None

    async def exists_in_other_tenant(self, tenant_id: str, asset_id: str) -> bool:
        """Used only to classify a miss as cross-tenant for logging."""
        return bool(self._tenants_of.get(asset_id, set()) - {tenant_id})

    async def get_many(self, tenant_id: str, asset_ids: Iterable[str]) -> List[Asset]:
        result = []
        for asset_id in asset_ids:
            asset = self._assets.get((tenant_id, asset_id))
            if asset is not None:
                result.append(asset.model_copy(deep=True))
        return result

    async def update(self, asset: Asset) -> bool:
        """
        Update non-structural columns with optimistic locking.

        Returns:
            True if update succeeded, False on version conflict or name clash.
        """
        current = self._assets.get((asset.tenant_id, asset.asset_id))
        if current is None or current.version != asset.version:
            return False
        siblings = self._sibling_names(current.tenant_id, current.parent_id)
        if asset.name != current.name:
            if asset.name in siblings:
                return False
            siblings.pop(current.name, None)
            siblings[asset.name] = current.asset_id

        current.name = asset.name
        current.description = asset.description
        current.asset_type = asset.asset_type
        current.category = asset.category
        current.metadata = dict(asset.metadata)
        current.location = asset.location
        current.status = asset.status
        current.updated_at = asset.updated_at
        current.updated_by = asset.updated_by
        current.version += 1
        asset.version = current.version
        return True

    async def delete(self, tenant_id: str, asset_id: str) -> bool:
        """Delete a single childless asset."""
        asset = self._assets.get((tenant_id, asset_id))
        if asset is None:
            return False
        if len(self._subtree_keys(tenant_id, asset.path)) > 1:
            return False
        self._drop(asset)
        return True

    def _drop(self, asset: Asset) -> None:
        self._index_remove(asset)
        self._assets.pop((asset.tenant_id, asset.asset_id), None)
        tenants = self._tenants_of.get(asset.asset_id, set())
        tenants.discard(asset.tenant_id)
        if not tenants:
            self._tenants_of.pop(asset.asset_id, None)
        siblings = self._sibling_names(asset.tenant_id, asset.parent_id)
        if siblings.get(asset.name) == asset.asset_id:
            siblings.pop(asset.name)

    # =========================================================================
    # STRUCTURAL BATCHES
    # =========================================================================

    async def move_subtree(
        self,
        tenant_id: str,
        asset_id: str,
        expected_path: List[str],
        new_parent_path: List[str],
        actor: Optional[str] = None,
    ) -> int:
        """
        Rewrite path/level of `asset_id` and all descendants in one batch.

        Returns the number of rewritten nodes, or 0 if the asset's path no
        longer matches `expected_path` (concurrent structural change) or
        the new sibling name is taken.
        """
        root = self._assets.get((tenant_id, asset_id))
        if root is None or root.path != expected_path:
            return 0
        new_parent_id = new_parent_path[-1] if new_parent_path else None
        new_siblings = self._sibling_names(tenant_id, new_parent_id)
        if new_siblings.get(root.name, asset_id) != asset_id:
            return 0

        members = [
            self._assets[(tenant_id, self._id_by_key[(tenant_id, key)])]
            for key in self._subtree_keys(tenant_id, expected_path)
        ]
        cut = len(expected_path) - 1
        # Compute everything first, then apply; nothing below can fail
        rewrites = [(m, list(new_parent_path) + m.path[cut:]) for m in members]

        for member, _ in rewrites:
            self._index_remove(member)
        old_siblings = self._sibling_names(tenant_id, root.parent_id)
        if old_siblings.get(root.name) == asset_id:
            old_siblings.pop(root.name)
        root.parent_id = new_parent_id
        new_siblings[root.name] = asset_id

        for member, new_path in rewrites:
            member.path = new_path
            member.level = len(new_path) - 1
            member.version += 1
            self._index_add(member)
        root.touch(actor)
        logger.debug(f"Rewrote {len(rewrites)} paths under {asset_id}")
        return len(rewrites)

    async def delete_subtree(self, tenant_id: str, path: List[str]) -> List[str]:
        """Remove the node at `path` and every descendant. Returns removed ids."""
        members = [
            self._assets[(tenant_id, self._id_by_key[(tenant_id, key)])]
            for key in self._subtree_keys(tenant_id, path)
        ]
        for member in members:
            self._drop(member)
        return [m.asset_id for m in members]

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_subtree(
        self,
        tenant_id: str,
        path: List[str],
        max_level: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Asset]:
        """Node at `path` plus descendants, ordered by path (one range read)."""
        result = []
        for key in self._subtree_keys(tenant_id, path):
            asset = self._assets[(tenant_id, self._id_by_key[(tenant_id, key)])]
            if max_level is not None and asset.level > max_level:
                continue
            result.append(asset.model_copy(deep=True))
            if limit is not None and len(result) >= limit:
                break
        return result

    async def count_subtree(self, tenant_id: str, path: List[str]) -> int:
        return len(self._subtree_keys(tenant_id, path))

    async def list_children(self, tenant_id: str, parent_id: str) -> List[Asset]:
        ids = self._names.get((tenant_id, parent_id), {})
        children = [self._assets[(tenant_id, i)] for i in ids.values()]
        return [c.model_copy(deep=True) for c in sorted(children, key=lambda a: a.name)]

    async def count_children(self, tenant_id: str, parent_ids: Iterable[str]) -> Dict[str, int]:
        return {pid: len(self._names.get((tenant_id, pid), {})) for pid in parent_ids}

    async def list_roots(self, tenant_id: str) -> List[Asset]:
        return await self._list_named(tenant_id, None)

    async def _list_named(self, tenant_id: str, parent_id: Optional[str]) -> List[Asset]:
        ids = self._names.get((tenant_id, parent_id), {})
        items = sorted((self._assets[(tenant_id, i)] for i in ids.values()), key=lambda a: a.name)
        return [a.model_copy(deep=True) for a in items]

    async def list_all(self, tenant_id: str, skip: int = 0, take: int = 100) -> List[Asset]:
        keys = self._path_index.get(tenant_id, [])[skip:skip + take]
        return [
            self._assets[(tenant_id, self._id_by_key[(tenant_id, k)])].model_copy(deep=True)
            for k in keys
        ]

    async def search(
        self,
        tenant_id: str,
        search_term: Optional[str] = None,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
        parent_id: Optional[str] = None,
        skip: int = 0,
        take: int = 100,
    ) -> Tuple[List[Asset], int]:
        """Filtered listing ordered by name. Returns (page, total)."""
        term = search_term.lower() if search_term else None
        matches = []
        for (tid, _), asset in self._assets.items():
            if tid != tenant_id:
                continue
            if term and term not in asset.name.lower() and term not in (asset.description or "").lower():
                continue
            if asset_type is not None and asset.asset_type != asset_type:
                continue
            if status is not None and asset.status != status:
                continue
            if parent_id is not None and asset.parent_id != parent_id:
                continue
            matches.append(asset)
        matches.sort(key=lambda a: (a.name, a.asset_id))
        page = [a.model_copy(deep=True) for a in matches[skip:skip + take]]
        return page, len(matches)

    async def count(
        self,
        tenant_id: str,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
    ) -> int:
        _, total = await self.search(tenant_id, asset_type=asset_type, status=status, take=0)
        return total


class InMemoryStateRepository:
    """AssetState rows keyed by (tenant_id, asset_id), optimistic versioning."""

    def __init__(self):
        self._states: Dict[Tuple[str, str], AssetState] = {}

    async def get(self, tenant_id: str, asset_id: str) -> Optional[AssetState]:
        state = self._states.get((tenant_id, asset_id))
        return state.model_copy(deep=True) if state else None

    async def get_many(self, tenant_id: str, asset_ids: Iterable[str]) -> Dict[str, AssetState]:
        result = {}
        for asset_id in asset_ids:
            state = self._states.get((tenant_id, asset_id))
            if state is not None:
                result[asset_id] = state.model_copy(deep=True)
        return result

    async def save(self, state: AssetState) -> bool:
        """
        Insert (version 0) or update (version match) a state row.

        Returns:
            True on success, False on version conflict.
        """
        key = (state.tenant_id, state.asset_id)
        current = self._states.get(key)
        current_version = current.version if current else 0
        if current_version != state.version:
            logger.warning(
                f"Version conflict saving state {state.asset_id} "
                f"(expected {state.version}, found {current_version})"
            )
            return False
        state.version += 1
        self._states[key] = state.model_copy(deep=True)
        return True

    async def delete_many(self, tenant_id: str, asset_ids: Iterable[str]) -> int:
        removed = 0
        for asset_id in asset_ids:
            if self._states.pop((tenant_id, asset_id), None) is not None:
                removed += 1
        return removed


class InMemoryMappingRegistry:
    """Read-only mapping provider with a registration helper for local runs."""

    def __init__(self, mappings: Optional[Iterable[DataPointMapping]] = None):
        self._by_asset: Dict[Tuple[str, str], Dict[str, DataPointMapping]] = {}
        for mapping in mappings or []:
            self.register(mapping)

    def register(self, mapping: DataPointMapping) -> None:
        self._by_asset.setdefault((mapping.tenant_id, mapping.asset_id), {})[mapping.label] = mapping

    async def get_mappings(self, tenant_id: str, asset_id: str) -> Dict[str, DataPointMapping]:
        return dict(self._by_asset.get((tenant_id, asset_id), {}))


__all__ = [
    "InMemoryAssetRepository",
    "InMemoryStateRepository",
    "InMemoryMappingRegistry",
]
