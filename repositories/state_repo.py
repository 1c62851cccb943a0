# ============================================================================
# ASSET STATE REPOSITORY
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Live state persistence (PostgreSQL)
# PURPOSE: Database access for twin.asset_states with optimistic versioning
# CREATED: 09 OCT 2026
# ============================================================================
"""
AssetState Repository

Field statistics, rollup aggregates and alarm counters are stored as JSONB
documents (pydantic model_dump(mode="json")). A state with version 0 has
never been persisted and is inserted; otherwise the UPDATE is guarded by
the version column.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import AssetState
from .database import TABLE_ASSET_STATES

logger = logging.getLogger(__name__)


class StateRepository:
    """Repository for AssetState rows."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def get(self, tenant_id: str, asset_id: str) -> Optional[AssetState]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE tenant_id = %s AND asset_id = %s").format(
                    TABLE_ASSET_STATES
                ),
                (tenant_id, asset_id),
            )
            row = await result.fetchone()
            return self._row_to_model(row) if row else None

    async def get_many(self, tenant_id: str, asset_ids: Iterable[str]) -> Dict[str, AssetState]:
        ids = list(asset_ids)
        if not ids:
            return {}
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE tenant_id = %s AND asset_id = ANY(%s)").format(
                    TABLE_ASSET_STATES
                ),
                (tenant_id, ids),
            )
            rows = await result.fetchall()
            return {row["asset_id"]: self._row_to_model(row) for row in rows}

    async def save(self, state: AssetState) -> bool:
        """
        Insert (version 0) or update (version match) a state row.

        Returns:
            True on success, False on version conflict.
        """
        params = self._to_params(state)
        async with self.pool.connection() as conn:
            if state.version == 0:
                try:
                    await conn.execute(
                        sql.SQL("""
                            INSERT INTO {} (
                                tenant_id, asset_id, fields, rollups, own_alarms,
                                alarm_counters, last_update_time, last_update_device_id, withdrawn, version
                            ) VALUES (
                                %(tenant_id)s, %(asset_id)s, %(fields)s, %(rollups)s, %(own_alarms)s,
                                %(alarm_counters)s, %(last_update_time)s, %(last_update_device_id)s, %(withdrawn)s, 1
                            )
                        """).format(TABLE_ASSET_STATES),
                        params,
                    )
                except pg_errors.UniqueViolation:
                    logger.warning(f"State row for {state.asset_id} was created concurrently")
                    return False
            else:
                result = await conn.execute(
                    sql.SQL("""
                        UPDATE {} SET
                            fields = %(fields)s,
                            rollups = %(rollups)s,
                            own_alarms = %(own_alarms)s,
                            alarm_counters = %(alarm_counters)s,
                            last_update_time = %(last_update_time)s,
                            last_update_device_id = %(last_update_device_id)s,
                            withdrawn = %(withdrawn)s,
                            version = version + 1
                        WHERE tenant_id = %(tenant_id)s
                          AND asset_id = %(asset_id)s
                          AND version = %(version)s
                    """).format(TABLE_ASSET_STATES),
                    params,
                )
                if result.rowcount == 0:
                    logger.warning(
                        f"Version conflict saving state {state.asset_id} "
                        f"(expected version {state.version})"
                    )
                    return False

        state.version += 1
        return True

    async def delete_many(self, tenant_id: str, asset_ids: Iterable[str]) -> int:
        ids = list(asset_ids)
        if not ids:
            return 0
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("DELETE FROM {} WHERE tenant_id = %s AND asset_id = ANY(%s)").format(
                    TABLE_ASSET_STATES
                ),
                (tenant_id, ids),
            )
            return result.rowcount

    def _to_params(self, state: AssetState) -> Dict[str, Any]:
        dumped = state.model_dump(mode="json")
        return {
            "tenant_id": state.tenant_id,
            "asset_id": state.asset_id,
            "fields": Json(dumped["fields"]),
            "rollups": Json(dumped["rollups"]),
            "own_alarms": Json(dumped["own_alarms"]),
            "alarm_counters": Json(dumped["alarm_counters"]),
            "last_update_time": state.last_update_time,
            "last_update_device_id": state.last_update_device_id,
            "withdrawn": state.withdrawn,
            "version": state.version,
        }

    def _row_to_model(self, row: Dict[str, Any]) -> AssetState:
        return AssetState.model_validate({
            "asset_id": row["asset_id"],
            "tenant_id": row["tenant_id"],
            "fields": row.get("fields") or {},
            "rollups": row.get("rollups") or {},
            "own_alarms": row.get("own_alarms") or {},
            "alarm_counters": row.get("alarm_counters") or {},
            "last_update_time": row.get("last_update_time"),
            "last_update_device_id": row.get("last_update_device_id"),
            "withdrawn": row.get("withdrawn", False),
            "version": row.get("version", 1),
        })


__all__ = ["StateRepository"]
