# ============================================================================
# DATA POINT MAPPING MODEL
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain model - Read-only telemetry-to-asset mapping
# PURPOSE: Aggregation method and rollup flag per mapped field
# CREATED: 07 OCT 2026
# ============================================================================
"""
DataPointMapping

Configured outside this engine (schema registry / mapping UI). The engine
only reads mappings to learn, per asset field label, which aggregation
method applies and whether the field propagates up the tree.

Fields without a mapping use LAST semantics and do not roll up.
"""

import uuid
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field

from core.contracts import AggregationMethod


class DataPointMapping(BaseModel):
    """
    Telemetry field → asset field mapping.

    Maps to: twin.data_point_mappings
    """

    __sql_table__: ClassVar[str] = "data_point_mappings"
    __sql_schema__: ClassVar[str] = "twin"
    __sql_primary_key__: ClassVar[List[str]] = ["mapping_id"]

    mapping_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    asset_id: str
    json_path: str = Field(..., max_length=500, description="e.g. $.temperature")
    label: str = Field(..., max_length=200, description="Field/metric name on the asset")
    unit: Optional[str] = Field(default=None, max_length=50)
    aggregation_method: AggregationMethod = AggregationMethod.LAST
    rollup_enabled: bool = True

    model_config = {"frozen": True}


__all__ = ["DataPointMapping"]
