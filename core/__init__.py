# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core module initialization
# PURPOSE: Export contracts, errors and models
# CREATED: 06 OCT 2026
# ============================================================================

from core.contracts import (
    AssetStatus,
    AssetType,
    AssetCategory,
    AlarmSeverity,
    AlarmStatus,
    AggregationMethod,
    ValueKind,
)
from core.errors import (
    AssetHierarchyError,
    NotFoundError,
    CrossTenantError,
    ParentNotFoundError,
    CycleDetectedError,
    SubtreeTooLargeError,
    HasChildrenError,
    ConcurrentModificationError,
    LockTimeoutError,
    ValidationError,
    TraversalLimitExceededError,
    QueryCancelledError,
)
from core.models import Asset, AssetState, DataPointMapping, FieldValue, GeoLocation

__all__ = [
    # Enums
    "AssetStatus",
    "AssetType",
    "AssetCategory",
    "AlarmSeverity",
    "AlarmStatus",
    "AggregationMethod",
    "ValueKind",
    # Errors
    "AssetHierarchyError",
    "NotFoundError",
    "CrossTenantError",
    "ParentNotFoundError",
    "CycleDetectedError",
    "SubtreeTooLargeError",
    "HasChildrenError",
    "ConcurrentModificationError",
    "LockTimeoutError",
    "ValidationError",
    "TraversalLimitExceededError",
    "QueryCancelledError",
    # Models
    "Asset",
    "AssetState",
    "DataPointMapping",
    "FieldValue",
    "GeoLocation",
]
