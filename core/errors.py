# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Foundation - Typed failures for hierarchy and state operations
# PURPOSE: One exception per failure class, each naming the offending node
# CREATED: 06 OCT 2026
# ============================================================================
"""
Asset hierarchy errors.

Structural validation errors (CycleDetected, CrossTenant, ParentNotFound,
SubtreeTooLarge) are always raised before any mutation. Cross-tenant
references are reported exactly like absent assets.
"""

from typing import Optional


class AssetHierarchyError(Exception):
    """Base class. `code` is stable and safe to expose to API clients."""

    code = "asset_hierarchy_error"

    def __init__(self, message: str, asset_id: Optional[str] = None):
        self.asset_id = asset_id
        self.message = message
        super().__init__(message)


class NotFoundError(AssetHierarchyError):
    code = "not_found"

    def __init__(self, asset_id: str, kind: str = "Asset"):
        super().__init__(f"{kind} '{asset_id}' not found", asset_id)


class CrossTenantError(NotFoundError):
    """Asset exists under another tenant. Indistinguishable from NotFound."""


class ParentNotFoundError(AssetHierarchyError):
    code = "parent_not_found"

    def __init__(self, parent_id: str):
        super().__init__(f"Parent asset '{parent_id}' not found", parent_id)


class CycleDetectedError(AssetHierarchyError):
    code = "cycle_detected"

    def __init__(self, asset_id: str, new_parent_id: str):
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Asset '{asset_id}' cannot be moved under '{new_parent_id}': "
            f"target is the asset itself or one of its descendants",
            asset_id,
        )


class SubtreeTooLargeError(AssetHierarchyError):
    code = "subtree_too_large"

    def __init__(self, asset_id: str, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Subtree of asset '{asset_id}' has {size} nodes "
            f"(limit {limit})",
            asset_id,
        )


class HasChildrenError(AssetHierarchyError):
    code = "has_children"

    def __init__(self, asset_id: str, child_count: int):
        self.child_count = child_count
        super().__init__(
            f"Asset '{asset_id}' has {child_count} children; "
            f"delete with cascade=true to remove the subtree",
            asset_id,
        )


class ConcurrentModificationError(AssetHierarchyError):
    code = "concurrent_modification"

    def __init__(self, message: str, asset_id: Optional[str] = None):
        super().__init__(message, asset_id)


class LockTimeoutError(ConcurrentModificationError):
    code = "lock_timeout"

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:.2f}s waiting for lock on '{key}'",
            key,
        )


class ValidationError(AssetHierarchyError):
    code = "validation_error"

    @classmethod
    def from_pydantic(cls, exc, asset_id: Optional[str] = None) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping the first failure."""
        errors = exc.errors()
        if not errors:
            return cls(str(exc), asset_id)
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "value"
        return cls(f"Invalid '{location}': {first.get('msg', 'invalid value')}", asset_id)


class TraversalLimitExceededError(AssetHierarchyError):
    code = "traversal_limit_exceeded"

    def __init__(self, asset_id: str, limit: int):
        self.limit = limit
        super().__init__(
            f"Traversal from asset '{asset_id}' exceeded {limit} results",
            asset_id,
        )


class QueryCancelledError(AssetHierarchyError):
    code = "query_cancelled"

    def __init__(self, asset_id: str):
        super().__init__(f"Traversal from asset '{asset_id}' was cancelled", asset_id)


__all__ = [
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
]
