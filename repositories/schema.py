# ============================================================================
# SCHEMA DEPLOYMENT
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Idempotent DDL for the twin schema
# PURPOSE: Create assets, asset_states and data_point_mappings tables
# CREATED: 08 OCT 2026
# ============================================================================
"""
Schema Deployment

Idempotent (IF NOT EXISTS) DDL, composed with psycopg.sql so the schema
name is always quoted. The materialized path is a TEXT[] with a GIN index;
subtree membership is `path @> ARRAY[asset_id]`.
"""

import logging
from typing import List

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from .database import SCHEMA, TABLE_ASSETS, TABLE_ASSET_STATES, TABLE_MAPPINGS

logger = logging.getLogger(__name__)


def build_statements() -> List[sql.Composed]:
    """DDL statements in dependency order."""
    return [
        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),
        sql.SQL("""
            CREATE TABLE IF NOT EXISTS {} (
                tenant_id     VARCHAR(64)  NOT NULL,
                asset_id      VARCHAR(64)  NOT NULL,
                parent_id     VARCHAR(64),
                name          VARCHAR(200) NOT NULL,
                description   VARCHAR(2000),
                asset_type    VARCHAR(32)  NOT NULL,
                category      VARCHAR(32)  NOT NULL,
                metadata      JSONB        NOT NULL DEFAULT '{{}}',
                location      JSONB,
                status        VARCHAR(32)  NOT NULL DEFAULT 'active',
                path          TEXT[]       NOT NULL,
                level         INTEGER      NOT NULL DEFAULT 0,
                created_at    TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
                updated_at    TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
                created_by    VARCHAR(100),
                updated_by    VARCHAR(100),
                version       INTEGER      NOT NULL DEFAULT 1,
                PRIMARY KEY (tenant_id, asset_id),
                CONSTRAINT ck_assets_level CHECK (level = cardinality(path) - 1)
            )
        """).format(TABLE_ASSETS),
        # Ids are unique per tenant only; earlier schemas made them global
        sql.SQL("ALTER TABLE {} DROP CONSTRAINT IF EXISTS uq_assets_asset_id").format(TABLE_ASSETS),
        # NULLS NOT DISTINCT keeps root names unique per tenant (PostgreSQL 15+)
        sql.SQL("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_assets_sibling_name
            ON {} (tenant_id, parent_id, name) NULLS NOT DISTINCT
        """).format(TABLE_ASSETS),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_assets_parent ON {} (tenant_id, parent_id)").format(TABLE_ASSETS),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_assets_level ON {} (tenant_id, level)").format(TABLE_ASSETS),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_assets_status ON {} (tenant_id, status)").format(TABLE_ASSETS),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_assets_path ON {} USING GIN (path)").format(TABLE_ASSETS),
        sql.SQL("""
            CREATE TABLE IF NOT EXISTS {} (
                tenant_id              VARCHAR(64) NOT NULL,
                asset_id               VARCHAR(64) NOT NULL,
                fields                 JSONB       NOT NULL DEFAULT '{{}}',
                rollups                JSONB       NOT NULL DEFAULT '{{}}',
                own_alarms             JSONB       NOT NULL DEFAULT '{{}}',
                alarm_counters         JSONB       NOT NULL DEFAULT '{{}}',
                last_update_time       TIMESTAMPTZ,
                last_update_device_id  VARCHAR(100),
                withdrawn              BOOLEAN     NOT NULL DEFAULT FALSE,
                version                INTEGER     NOT NULL DEFAULT 1,
                PRIMARY KEY (tenant_id, asset_id)
            )
        """).format(TABLE_ASSET_STATES),
        sql.SQL("""
            CREATE TABLE IF NOT EXISTS {} (
                mapping_id          VARCHAR(64)  PRIMARY KEY,
                tenant_id           VARCHAR(64)  NOT NULL,
                asset_id            VARCHAR(64)  NOT NULL,
                json_path           VARCHAR(500) NOT NULL,
                label               VARCHAR(200) NOT NULL,
                unit                VARCHAR(50),
                aggregation_method  VARCHAR(16)  NOT NULL DEFAULT 'last',
                rollup_enabled      BOOLEAN      NOT NULL DEFAULT TRUE,
                CONSTRAINT uq_mappings_label UNIQUE (tenant_id, asset_id, label)
            )
        """).format(TABLE_MAPPINGS),
    ]


async def deploy_schema(pool: AsyncConnectionPool) -> int:
    """Run all DDL in one transaction. Returns the statement count."""
    statements = build_statements()
    async with pool.connection() as conn:
        async with conn.transaction():
            for statement in statements:
                await conn.execute(statement)
    logger.info(f"Deployed schema '{SCHEMA}' ({len(statements)} statements)")
    return len(statements)


__all__ = ["build_statements", "deploy_schema"]
