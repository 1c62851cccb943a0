# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Foundation - Core enums for the asset twin
# PURPOSE: Status, type, severity and aggregation enums shared by all layers
# CREATED: 06 OCT 2026
# EXPORTS: AssetStatus, AssetType, AssetCategory, AlarmSeverity,
#          AlarmStatus, AggregationMethod, ValueKind
# ============================================================================
"""
Base contracts for the asset hierarchy engine.

These enums cross every boundary:
- SQL (PostgreSQL, stored as .value)
- HTTP (FastAPI request/response bodies)
- Python (internal processing)
"""

from enum import Enum


# ============================================================================
# ASSET ENUMS
# ============================================================================

class AssetStatus(str, Enum):
    """
    Asset lifecycle states.

    State transitions (one-directional):
        ACTIVE -> INACTIVE -> DECOMMISSIONED
        ACTIVE -> DECOMMISSIONED
    """
    ACTIVE = "active"
    INACTIVE = "inactive"
    DECOMMISSIONED = "decommissioned"  # Terminal, excluded from rollups

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self == AssetStatus.DECOMMISSIONED

    def can_transition_to(self, target: "AssetStatus") -> bool:
        """Forward-only transitions; staying in place is always allowed."""
        if target == self:
            return True
        return _STATUS_ORDER[target] > _STATUS_ORDER[self]


_STATUS_ORDER = {
    AssetStatus.ACTIVE: 0,
    AssetStatus.INACTIVE: 1,
    AssetStatus.DECOMMISSIONED: 2,
}


class AssetType(str, Enum):
    """Physical/logical asset variants."""
    SITE = "site"
    BUILDING = "building"
    FLOOR = "floor"
    AREA = "area"
    ZONE = "zone"
    LINE = "line"
    EQUIPMENT = "equipment"
    SUBSYSTEM = "subsystem"
    COMPONENT = "component"
    SUBCOMPONENT = "subcomponent"
    SENSOR = "sensor"


class AssetCategory(str, Enum):
    """Coarse grouping used by dashboards."""
    FACILITY = "facility"
    EQUIPMENT = "equipment"
    GEOGRAPHY = "geography"


# ============================================================================
# STATE ENUMS
# ============================================================================

class AlarmSeverity(str, Enum):
    """Severity of an individual open alarm."""
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return 2 if self == AlarmSeverity.CRITICAL else 1


class AlarmStatus(str, Enum):
    """Rolled-up alarm status (max severity over self + descendants)."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"

    @classmethod
    def from_counters(cls, counters: dict) -> "AlarmStatus":
        """Highest severity with a positive counter."""
        for severity in sorted(AlarmSeverity, key=lambda s: s.rank, reverse=True):
            if counters.get(severity.value, 0) > 0:
                return cls(severity.value)
        return cls.OK


class AggregationMethod(str, Enum):
    """
    How a field is merged on arrival and rolled up the tree.

    LAST overwrites; SUM/COUNT accumulate within the current window;
    AVG/MIN/MAX keep running statistics.
    """
    LAST = "last"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"

    def requires_number(self) -> bool:
        """Methods that need numeric coercion at the rollup boundary."""
        return self in (
            AggregationMethod.SUM,
            AggregationMethod.AVG,
            AggregationMethod.MIN,
            AggregationMethod.MAX,
        )

    def is_windowed(self) -> bool:
        """Accumulators reset at window boundaries."""
        return self in (AggregationMethod.SUM, AggregationMethod.COUNT)


class ValueKind(str, Enum):
    """Tag for schema-less metadata/state values."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    MAP = "map"


__all__ = [
    "AssetStatus",
    "AssetType",
    "AssetCategory",
    "AlarmSeverity",
    "AlarmStatus",
    "AggregationMethod",
    "ValueKind",
]
