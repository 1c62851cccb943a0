# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 06 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Pydantic models for the asset hierarchy engine. Models carry __sql_*
ClassVar metadata describing the tables they map to.
"""

from core.models.values import FieldValue, wrap_map, unwrap_map
from core.models.asset import Asset, GeoLocation, PATH_SEPARATOR, new_asset_id
from core.models.asset_state import AssetState, FieldStatistic, RollupAggregate
from core.models.mapping import DataPointMapping

__all__ = [
    # Values
    "FieldValue",
    "wrap_map",
    "unwrap_map",
    # Asset
    "Asset",
    "GeoLocation",
    "PATH_SEPARATOR",
    "new_asset_id",
    # State
    "AssetState",
    "FieldStatistic",
    "RollupAggregate",
    # Mapping
    "DataPointMapping",
]
