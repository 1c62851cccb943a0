# ============================================================================
# ASSET REPOSITORY
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Asset tree persistence (PostgreSQL)
# PURPOSE: Database access for twin.assets with materialized TEXT[] paths
# CREATED: 08 OCT 2026
# ============================================================================
"""
Asset Repository

PostgreSQL implementation of the asset store contract (see
repositories.memory.InMemoryAssetRepository for the in-process twin).
All SQL uses psycopg sql.SQL composition for injection safety.

Subtree reads are a single GIN-indexed query:

    WHERE tenant_id = %s AND path @> ARRAY[%s]

and a move rewrites the whole subtree with one UPDATE that splices the
new parent path in front of each member's suffix.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import AssetCategory, AssetStatus, AssetType
from core.models import Asset, GeoLocation, unwrap_map
from .database import TABLE_ASSETS

logger = logging.getLogger(__name__)


class AssetRepository:
    """Repository for Asset tree nodes."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    # =========================================================================
    # SINGLE-NODE CRUD
    # =========================================================================

    async def insert(self, asset: Asset) -> bool:
        """
        Insert a new asset.

        Returns:
            True if inserted, False on duplicate id or sibling name.
        """
        try:
            async with self.pool.connection() as conn:
                await conn.execute(
                    sql.SQL("""
                        INSERT INTO {} (
                            tenant_id, asset_id, parent_id, name, description,
                            asset_type, category, metadata, location, status,
                            path, level, created_at, updated_at,
                            created_by, updated_by, version
                        ) VALUES (
                            %(tenant_id)s, %(asset_id)s, %(parent_id)s, %(name)s, %(description)s,
                            %(asset_type)s, %(category)s, %(metadata)s, %(location)s, %(status)s,
                            %(path)s, %(level)s, %(created_at)s, %(updated_at)s,
                            %(created_by)s, %(updated_by)s, %(version)s
                        )
                    """).format(TABLE_ASSETS),
                    self._to_params(asset),
                )
        except pg_errors.UniqueViolation as e:
            logger.warning(f"Insert of asset {asset.asset_id} rejected: {e.diag.constraint_name}")
            return False
        logger.info(f"Created asset {asset.asset_id} (tenant={asset.tenant_id}, level={asset.level})")
        return True

    async def get(self, tenant_id: str, asset_id: str) -> Optional[Asset]:
        """Get an asset by ID within a tenant."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE tenant_id = %s AND asset_id = %s").format(TABLE_ASSETS),
                (tenant_id, asset_id),
            )
            row = await result.fetchone()
            return self._row_to_model(row) if row else None

    async def exists_in_other_tenant(self, tenant_id: str, asset_id: str) -> bool:
        """Used only to classify a miss as cross-tenant for logging."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL(
                    "SELECT 1 FROM {} WHERE asset_id = %s AND tenant_id <> %s LIMIT 1"
                ).format(TABLE_ASSETS),
                (asset_id, tenant_id),
            )
            return await result.fetchone() is not None

    async def get_many(self, tenant_id: str, asset_ids: Iterable[str]) -> List[Asset]:
        ids = list(asset_ids)
        if not ids:
            return []
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE tenant_id = %s AND asset_id = ANY(%s)").format(TABLE_ASSETS),
                (tenant_id, ids),
            )
            rows = await result.fetchall()
            by_id = {row["asset_id"]: self._row_to_model(row) for row in rows}
            return [by_id[i] for i in ids if i in by_id]

    async def update(self, asset: Asset) -> bool:
        """
        Update non-structural columns with optimistic locking.

        Returns:
            True if update succeeded, False on version conflict or name clash.
        """
        try:
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                        UPDATE {} SET
                            name = %(name)s,
                            description = %(description)s,
                            asset_type = %(asset_type)s,
                            category = %(category)s,
                            metadata = %(metadata)s,
                            location = %(location)s,
                            status = %(status)s,
                            updated_at = %(updated_at)s,
                            updated_by = %(updated_by)s,
                            version = version + 1
                        WHERE tenant_id = %(tenant_id)s
                          AND asset_id = %(asset_id)s
                          AND version = %(version)s
                    """).format(TABLE_ASSETS),
                    self._to_params(asset),
                )
        except pg_errors.UniqueViolation:
            logger.warning(f"Rename of asset {asset.asset_id} collides with a sibling")
            return False

        if result.rowcount == 0:
            logger.warning(
                f"Version conflict updating asset {asset.asset_id} "
                f"(expected version {asset.version})"
            )
            return False

        asset.version += 1
        return True

    async def delete(self, tenant_id: str, asset_id: str) -> bool:
        """Delete a single childless asset."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                    DELETE FROM {t} a
                    WHERE a.tenant_id = %s AND a.asset_id = %s
                      AND NOT EXISTS (
                          SELECT 1 FROM {t} c
                          WHERE c.tenant_id = a.tenant_id AND c.parent_id = a.asset_id
                      )
                """).format(t=TABLE_ASSETS),
                (tenant_id, asset_id),
            )
            return result.rowcount > 0

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
        Rewrite path/level of `asset_id` and all descendants in one transaction.

        Returns the number of rewritten rows, or 0 if the stored path no
        longer matches `expected_path` or the new sibling name is taken.
        """
        # Postgres arrays are 1-based: the suffix starting at the moved node
        suffix_start = len(expected_path)
        shift = len(new_parent_path) - (len(expected_path) - 1)
        new_parent_id = new_parent_path[-1] if new_parent_path else None

        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    result = await conn.execute(
                        sql.SQL(
                            "SELECT path FROM {} WHERE tenant_id = %s AND asset_id = %s FOR UPDATE"
                        ).format(TABLE_ASSETS),
                        (tenant_id, asset_id),
                    )
                    row = await result.fetchone()
                    if row is None or list(row[0]) != list(expected_path):
                        logger.warning(f"Path of asset {asset_id} changed since it was read")
                        return 0

                    result = await conn.execute(
                        sql.SQL("""
                            UPDATE {} SET
                                path = %(prefix)s::text[] || path[%(start)s:cardinality(path)],
                                level = level + %(shift)s,
                                version = version + 1
                            WHERE tenant_id = %(tenant_id)s
                              AND path @> ARRAY[%(asset_id)s]::text[]
                        """).format(TABLE_ASSETS),
                        {
                            "prefix": list(new_parent_path),
                            "start": suffix_start,
                            "shift": shift,
                            "tenant_id": tenant_id,
                            "asset_id": asset_id,
                        },
                    )
                    rewritten = result.rowcount

                    await conn.execute(
                        sql.SQL("""
                            UPDATE {} SET
                                parent_id = %s,
                                updated_at = NOW(),
                                updated_by = COALESCE(%s, updated_by)
                            WHERE tenant_id = %s AND asset_id = %s
                        """).format(TABLE_ASSETS),
                        (new_parent_id, actor, tenant_id, asset_id),
                    )
        except pg_errors.UniqueViolation:
            logger.warning(f"Move of asset {asset_id} collides with a sibling name")
            return 0

        logger.debug(f"Rewrote {rewritten} paths under {asset_id}")
        return rewritten

    async def delete_subtree(self, tenant_id: str, path: List[str]) -> List[str]:
        """Remove the node at `path` and every descendant. Returns removed ids."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                    DELETE FROM {} WHERE tenant_id = %s AND path @> ARRAY[%s]::text[]
                    RETURNING asset_id
                """).format(TABLE_ASSETS),
                (tenant_id, path[-1]),
            )
            rows = await result.fetchall()
            return [row[0] for row in rows]

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
        clauses = [
            sql.SQL("tenant_id = %(tenant_id)s"),
            sql.SQL("path @> ARRAY[%(asset_id)s]::text[]"),
        ]
        params: Dict[str, Any] = {"tenant_id": tenant_id, "asset_id": path[-1]}
        if max_level is not None:
            clauses.append(sql.SQL("level <= %(max_level)s"))
            params["max_level"] = max_level
        query = sql.SQL("SELECT * FROM {} WHERE {} ORDER BY path").format(
            TABLE_ASSETS, sql.SQL(" AND ").join(clauses)
        )
        if limit is not None:
            query = sql.SQL("{} LIMIT %(limit)s").format(query)
            params["limit"] = limit

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(query, params)
            rows = await result.fetchall()
            return [self._row_to_model(row) for row in rows]

    async def count_subtree(self, tenant_id: str, path: List[str]) -> int:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL(
                    "SELECT COUNT(*) FROM {} WHERE tenant_id = %s AND path @> ARRAY[%s]::text[]"
                ).format(TABLE_ASSETS),
                (tenant_id, path[-1]),
            )
            row = await result.fetchone()
            return row[0]

    async def list_children(self, tenant_id: str, parent_id: str) -> List[Asset]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL(
                    "SELECT * FROM {} WHERE tenant_id = %s AND parent_id = %s ORDER BY name"
                ).format(TABLE_ASSETS),
                (tenant_id, parent_id),
            )
            rows = await result.fetchall()
            return [self._row_to_model(row) for row in rows]

    async def count_children(self, tenant_id: str, parent_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(parent_ids)
        counts = {pid: 0 for pid in ids}
        if not ids:
            return counts
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                    SELECT parent_id, COUNT(*) FROM {}
                    WHERE tenant_id = %s AND parent_id = ANY(%s)
                    GROUP BY parent_id
                """).format(TABLE_ASSETS),
                (tenant_id, ids),
            )
            for parent_id, count in await result.fetchall():
                counts[parent_id] = count
        return counts

    async def list_roots(self, tenant_id: str) -> List[Asset]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL(
                    "SELECT * FROM {} WHERE tenant_id = %s AND parent_id IS NULL ORDER BY name"
                ).format(TABLE_ASSETS),
                (tenant_id,),
            )
            rows = await result.fetchall()
            return [self._row_to_model(row) for row in rows]

    async def list_all(self, tenant_id: str, skip: int = 0, take: int = 100) -> List[Asset]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL(
                    "SELECT * FROM {} WHERE tenant_id = %s ORDER BY path OFFSET %s LIMIT %s"
                ).format(TABLE_ASSETS),
                (tenant_id, skip, take),
            )
            rows = await result.fetchall()
            return [self._row_to_model(row) for row in rows]

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
        clauses = [sql.SQL("tenant_id = %(tenant_id)s")]
        params: Dict[str, Any] = {"tenant_id": tenant_id, "skip": skip, "take": take}
        if search_term:
            clauses.append(sql.SQL("(name ILIKE %(term)s OR description ILIKE %(term)s)"))
            params["term"] = f"%{search_term}%"
        if asset_type is not None:
            clauses.append(sql.SQL("asset_type = %(asset_type)s"))
            params["asset_type"] = asset_type.value
        if status is not None:
            clauses.append(sql.SQL("status = %(status)s"))
            params["status"] = status.value
        if parent_id is not None:
            clauses.append(sql.SQL("parent_id = %(parent_id)s"))
            params["parent_id"] = parent_id
        where = sql.SQL(" AND ").join(clauses)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT COUNT(*) AS total FROM {} WHERE {}").format(TABLE_ASSETS, where),
                params,
            )
            total = (await result.fetchone())["total"]
            result = await conn.execute(
                sql.SQL(
                    "SELECT * FROM {} WHERE {} ORDER BY name, asset_id OFFSET %(skip)s LIMIT %(take)s"
                ).format(TABLE_ASSETS, where),
                params,
            )
            rows = await result.fetchall()
            return [self._row_to_model(row) for row in rows], total

    async def count(
        self,
        tenant_id: str,
        asset_type: Optional[AssetType] = None,
        status: Optional[AssetStatus] = None,
    ) -> int:
        _, total = await self.search(tenant_id, asset_type=asset_type, status=status, take=0)
        return total

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _to_params(self, asset: Asset) -> Dict[str, Any]:
        return {
            "tenant_id": asset.tenant_id,
            "asset_id": asset.asset_id,
            "parent_id": asset.parent_id,
            "name": asset.name,
            "description": asset.description,
            "asset_type": asset.asset_type.value,
            "category": asset.category.value,
            "metadata": Json(unwrap_map(asset.metadata)),
            "location": Json(asset.location.model_dump()) if asset.location else None,
            "status": asset.status.value,
            "path": list(asset.path),
            "level": asset.level,
            "created_at": asset.created_at,
            "updated_at": asset.updated_at,
            "created_by": asset.created_by,
            "updated_by": asset.updated_by,
            "version": asset.version,
        }

    def _row_to_model(self, row: Dict[str, Any]) -> Asset:
        """Convert a database row to an Asset instance."""
        location = row.get("location")
        return Asset(
            asset_id=row["asset_id"],
            tenant_id=row["tenant_id"],
            parent_id=row.get("parent_id"),
            name=row["name"],
            description=row.get("description"),
            asset_type=AssetType(row["asset_type"]),
            category=AssetCategory(row["category"]),
            metadata=row.get("metadata") or {},
            location=GeoLocation(**location) if location else None,
            status=AssetStatus(row["status"]),
            path=list(row["path"]),
            level=row["level"],
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            created_by=row.get("created_by"),
            updated_by=row.get("updated_by"),
            version=row.get("version", 1),
        )


__all__ = ["AssetRepository"]
