# ============================================================================
# ASSET MODEL
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain model - Node of the per-tenant asset tree
# PURPOSE: Asset identity, materialized path, lifecycle status and audit
# CREATED: 06 OCT 2026
# ============================================================================
"""
Asset Model

One node of a tenant's asset tree. The tree is stored as an arena of
assets keyed by (tenant_id, asset_id) plus a materialized path:

    path  = path(parent) + [asset_id]     (roots: [asset_id])
    level = len(path) - 1

path and level are owned by the store (create) and the hierarchy manager
(move). Regular edits never touch parent_id, path or level.

Lifecycle:
    active -> inactive -> decommissioned (terminal)
    Decommissioned assets accept no children and drop out of rollups, but
    stay queryable.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from core.contracts import AssetCategory, AssetStatus, AssetType
from core.errors import ValidationError
from core.models.values import FieldValue, wrap_map

PATH_SEPARATOR = "."


def new_asset_id() -> str:
    return str(uuid.uuid4())


class GeoLocation(BaseModel):
    """WGS84 point."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    altitude: Optional[float] = None


class Asset(BaseModel):
    """
    Asset tree node.

    Maps to: twin.assets
    """

    # SQL DDL METADATA
    __sql_table__: ClassVar[str] = "assets"
    __sql_schema__: ClassVar[str] = "twin"
    __sql_primary_key__: ClassVar[List[str]] = ["tenant_id", "asset_id"]
    __sql_indexes__: ClassVar[List] = [
        ("idx_assets_parent", ["tenant_id", "parent_id"]),
        ("idx_assets_level", ["tenant_id", "level"]),
        ("idx_assets_status", ["tenant_id", "status"]),
        {"name": "idx_assets_path", "columns": ["path"], "type": "gin"},
    ]

    # Identity
    asset_id: str = Field(default_factory=new_asset_id, min_length=1, max_length=64)
    tenant_id: str = Field(..., min_length=1, max_length=64)
    parent_id: Optional[str] = Field(default=None, max_length=64)

    # Descriptive
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    asset_type: AssetType = AssetType.EQUIPMENT
    category: AssetCategory = AssetCategory.EQUIPMENT
    metadata: Dict[str, FieldValue] = Field(default_factory=dict)
    location: Optional[GeoLocation] = None
    status: AssetStatus = AssetStatus.ACTIVE

    # Materialized path (store-owned)
    path: List[str] = Field(default_factory=list)
    level: int = Field(default=0, ge=0)

    # Audit
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_by: Optional[str] = Field(default=None, max_length=100)
    updated_by: Optional[str] = Field(default=None, max_length=100)

    # Optimistic locking
    version: int = Field(default=1, ge=1)

    model_config = {"frozen": False}

    @field_validator("asset_id")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if PATH_SEPARATOR in value:
            raise ValueError(f"asset_id must not contain '{PATH_SEPARATOR}'")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _wrap_metadata(cls, value: Any) -> Dict[str, FieldValue]:
        if isinstance(value, dict) and all(isinstance(v, FieldValue) for v in value.values()):
            return value
        return wrap_map(value, "metadata")

    # ----------------------------------------------------------------
    # Computed fields
    # ----------------------------------------------------------------

    @computed_field
    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def path_key(self) -> str:
        """Dotted path used by the sorted path index."""
        return PATH_SEPARATOR.join(self.path)

    @property
    def ancestor_ids(self) -> List[str]:
        """Path without self, root first."""
        return list(self.path[:-1])

    @property
    def is_decommissioned(self) -> bool:
        return self.status == AssetStatus.DECOMMISSIONED

    # ----------------------------------------------------------------
    # Path helpers
    # ----------------------------------------------------------------

    def place_under(self, parent: Optional["Asset"]) -> None:
        """Assign path/level from a parent snapshot (None = root)."""
        if parent is None:
            self.parent_id = None
            self.path = [self.asset_id]
        else:
            self.parent_id = parent.asset_id
            self.path = list(parent.path) + [self.asset_id]
        self.level = len(self.path) - 1

    def has_consistent_path(self, parent: Optional["Asset"] = None) -> bool:
        """Path/level invariants; parent is checked when supplied."""
        if not self.path or self.path[-1] != self.asset_id:
            return False
        if self.asset_id in self.path[:-1]:
            return False
        if self.level != len(self.path) - 1:
            return False
        if self.parent_id is None:
            return self.path == [self.asset_id]
        if len(self.path) < 2 or self.path[-2] != self.parent_id:
            return False
        if parent is None:
            return True
        return self.path == list(parent.path) + [self.asset_id]

    def is_descendant_of(self, other: "Asset") -> bool:
        """Strict descendant test by path membership."""
        return other.asset_id in self.path[:-1]

    # ----------------------------------------------------------------
    # State transitions
    # ----------------------------------------------------------------

    def transition_status(self, target: AssetStatus, actor: Optional[str] = None) -> bool:
        """
        Move to `target`. Returns True if the status changed.

        Raises:
            ValidationError: backwards transition or leaving DECOMMISSIONED.
        """
        if not self.status.can_transition_to(target):
            raise ValidationError(
                f"Asset '{self.asset_id}' cannot transition from "
                f"'{self.status.value}' to '{target.value}'",
                self.asset_id,
            )
        if target == self.status:
            return False
        self.status = target
        self.touch(actor)
        return True

    def touch(self, actor: Optional[str] = None) -> None:
        self.updated_at = datetime.now(timezone.utc)
        if actor is not None:
            self.updated_by = actor


__all__ = ["Asset", "GeoLocation", "PATH_SEPARATOR", "new_asset_id"]
