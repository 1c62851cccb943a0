# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 13 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the asset API. Tagged FieldValues are
unwrapped to plain JSON on the way out; raw JSON is accepted on the way
in and wrapped by the services.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import AlarmSeverity, AlarmStatus, AssetCategory, AssetStatus, AssetType
from core.models import Asset, AssetState, GeoLocation, unwrap_map


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class AssetCreate(BaseModel):
    """Request to create an asset. Omit parent_id for a root."""
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = Field(None, max_length=64)
    asset_id: Optional[str] = Field(None, max_length=64, description="Generated when omitted")
    description: Optional[str] = Field(None, max_length=2000)
    asset_type: AssetType = AssetType.EQUIPMENT
    category: AssetCategory = AssetCategory.EQUIPMENT
    metadata: Dict[str, Any] = Field(default_factory=dict)
    location: Optional[GeoLocation] = None
    status: AssetStatus = AssetStatus.ACTIVE

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Pump 7",
                    "parent_id": "line-2",
                    "asset_type": "equipment",
                    "metadata": {"manufacturer": "Grundfos", "rated_kw": 15},
                }
            ]
        }
    }


class AssetUpdate(BaseModel):
    """Partial update; only fields that are set are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    asset_type: Optional[AssetType] = None
    category: Optional[AssetCategory] = None
    metadata: Optional[Dict[str, Any]] = None
    location: Optional[GeoLocation] = None
    status: Optional[AssetStatus] = None

    def changes(self) -> Dict[str, Any]:
        return {
            key: getattr(self, key)
            for key in self.model_fields_set
            if getattr(self, key) is not None or key in ("description", "location")
        }


class MoveRequest(BaseModel):
    """Re-parent an asset; null new_parent_id makes it a root."""
    new_parent_id: Optional[str] = Field(None, max_length=64)


class StateUpdateRequest(BaseModel):
    """Telemetry fields for one asset."""
    values: Dict[str, Any] = Field(..., min_length=1)
    source_device_id: Optional[str] = Field(None, max_length=128)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"values": {"temperature": 71.5, "running": True}, "source_device_id": "plc-12"}
            ]
        }
    }


class BulkStateRequest(BaseModel):
    asset_ids: List[str] = Field(..., min_length=1, max_length=5000)


class AlarmOpenRequest(BaseModel):
    alarm_id: str = Field(..., min_length=1, max_length=128)
    severity: AlarmSeverity


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class AssetResponse(BaseModel):
    """Asset record."""
    asset_id: str
    tenant_id: str
    parent_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    asset_type: AssetType
    category: AssetCategory
    metadata: Dict[str, Any] = Field(default_factory=dict)
    location: Optional[GeoLocation] = None
    status: AssetStatus
    path: List[str]
    level: int
    child_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: int

    @classmethod
    def from_asset(cls, asset: Asset, child_count: Optional[int] = None) -> "AssetResponse":
        data = asset.model_dump(exclude={"metadata", "is_root"})
        return cls(**data, metadata=unwrap_map(asset.metadata), child_count=child_count)


class AssetListResponse(BaseModel):
    """Page of assets."""
    assets: List[AssetResponse]
    total: int
    skip: int = 0
    take: Optional[int] = None


class AssetStateResponse(BaseModel):
    """Live state of one asset; has_data is False until telemetry arrives."""
    asset_id: str
    has_data: bool
    state: Dict[str, Any] = Field(default_factory=dict)
    calculated_metrics: Dict[str, Any] = Field(default_factory=dict)
    alarm_count: int = 0
    alarm_status: AlarmStatus = AlarmStatus.OK
    alarm_counters: Dict[str, int] = Field(default_factory=dict)
    last_update_time: Optional[datetime] = None
    last_update_device_id: Optional[str] = None

    @classmethod
    def from_state(cls, state: AssetState) -> "AssetStateResponse":
        return cls(
            asset_id=state.asset_id,
            has_data=state.has_data,
            state=unwrap_map(state.state),
            calculated_metrics=unwrap_map(state.calculated_metrics),
            alarm_count=state.alarm_count,
            alarm_status=state.alarm_status,
            alarm_counters={k: v for k, v in state.alarm_counters.items() if v > 0},
            last_update_time=state.last_update_time,
            last_update_device_id=state.last_update_device_id,
        )


class BulkStateResponse(BaseModel):
    states: Dict[str, AssetStateResponse]


class TreeNodeResponse(BaseModel):
    """Nested tree node."""
    asset: AssetResponse
    state: Optional[AssetStateResponse] = None
    child_count: int = 0
    truncated: bool = False
    children: List["TreeNodeResponse"] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node) -> "TreeNodeResponse":
        return cls(
            asset=AssetResponse.from_asset(node.asset, node.child_count),
            state=AssetStateResponse.from_state(node.state) if node.state is not None else None,
            child_count=node.child_count,
            truncated=node.truncated,
            children=[cls.from_node(child) for child in node.children],
        )


TreeNodeResponse.model_rebuild()


class PathResponse(BaseModel):
    asset_id: str
    path: List[str]
    path_names: str


class DeleteResponse(BaseModel):
    asset_id: str
    deleted: List[str]
    cascade: bool


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
    asset_id: Optional[str] = None
