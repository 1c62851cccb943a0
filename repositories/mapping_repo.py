# ============================================================================
# DATA POINT MAPPING REPOSITORY
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Read-only mapping lookup (PostgreSQL)
# PURPOSE: Aggregation method / rollup flag per asset field label
# CREATED: 09 OCT 2026
# ============================================================================
"""
Mapping Repository

Mappings are authored elsewhere; this repository only reads them.
"""

import logging
from typing import Dict

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.contracts import AggregationMethod
from core.models import DataPointMapping
from .database import TABLE_MAPPINGS

logger = logging.getLogger(__name__)


class MappingRepository:
    """Read-only DataPointMapping provider."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def get_mappings(self, tenant_id: str, asset_id: str) -> Dict[str, DataPointMapping]:
        """Mappings for one asset keyed by label."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE tenant_id = %s AND asset_id = %s").format(
                    TABLE_MAPPINGS
                ),
                (tenant_id, asset_id),
            )
            rows = await result.fetchall()
            return {row["label"]: self._row_to_model(row) for row in rows}

    def _row_to_model(self, row) -> DataPointMapping:
        return DataPointMapping(
            mapping_id=row["mapping_id"],
            tenant_id=row["tenant_id"],
            asset_id=row["asset_id"],
            json_path=row["json_path"],
            label=row["label"],
            unit=row.get("unit"),
            aggregation_method=AggregationMethod(row["aggregation_method"]),
            rollup_enabled=row["rollup_enabled"],
        )


__all__ = ["MappingRepository"]
