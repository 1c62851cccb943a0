# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for assets, hierarchy, state and alarms
# CREATED: 13 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the asset twin.
"""

from .asset_routes import router, set_asset_services
from .schemas import (
    AssetCreate,
    AssetUpdate,
    AssetResponse,
    AssetStateResponse,
    TreeNodeResponse,
)

__all__ = [
    "router",
    "set_asset_services",
    "AssetCreate",
    "AssetUpdate",
    "AssetResponse",
    "AssetStateResponse",
    "TreeNodeResponse",
]
