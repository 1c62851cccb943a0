# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 06 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the asset hierarchy engine.
"""

from core.config.defaults import (
    StorageBackend,
    HierarchyDefaults,
    QueryDefaults,
    RollupDefaults,
    StorageDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "StorageBackend",
    "HierarchyDefaults",
    "QueryDefaults",
    "RollupDefaults",
    "StorageDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
