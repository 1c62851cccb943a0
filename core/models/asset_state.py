# ============================================================================
# ASSET STATE MODEL
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain model - Live state and incremental rollup aggregates
# PURPOSE: Per-asset field statistics, subtree aggregates and alarm counters
# CREATED: 07 OCT 2026
# ============================================================================
"""
AssetState Model

1:1 with Asset, created lazily by the first telemetry update that touches
the asset (either directly or as an ancestor on a rollup walk).

Three layers of data:

    fields          own per-field running statistics (what this asset reported)
    rollups         per-metric aggregate over self + all descendants
    alarm_counters  per-severity open-alarm counts over self + descendants

Every rollup structure is maintained incrementally. A child update is
folded in as a (old contribution -> new contribution) delta, and a moved
subtree is transferred with absorb()/release(), so nothing ever rescans a
subtree.
"""

from datetime import datetime, timezone
from typing import ClassVar, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from core.contracts import AggregationMethod, AlarmSeverity, AlarmStatus
from core.models.values import FieldValue


def _number(value: float) -> FieldValue:
    return FieldValue.of(float(value))


# ============================================================================
# OWN FIELD STATISTICS
# ============================================================================

class FieldStatistic(BaseModel):
    """Running statistics for one field reported by one asset."""

    method: AggregationMethod = AggregationMethod.LAST
    rollup: bool = False
    last: Optional[FieldValue] = None
    total: float = 0.0
    count: int = 0
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    updated_at: Optional[datetime] = None

    def fold(self, value: FieldValue, field_name: str, at: datetime) -> None:
        """Merge one arriving value according to the field's method."""
        if self.method.requires_number():
            number = value.as_number(field_name)
            self.total += number
            self.count += 1
            self.minimum = number if self.minimum is None else min(self.minimum, number)
            self.maximum = number if self.maximum is None else max(self.maximum, number)
        elif self.method == AggregationMethod.COUNT:
            self.count += 1
        self.last = value
        self.updated_at = at

    def current(self) -> Optional[FieldValue]:
        """This asset's own value for the field (its rollup contribution)."""
        if self.last is None:
            return None
        method = self.method
        if method == AggregationMethod.LAST:
            return self.last
        if method == AggregationMethod.COUNT:
            return _number(self.count)
        if method == AggregationMethod.SUM:
            return _number(self.total)
        if self.count == 0:
            return None
        if method == AggregationMethod.AVG:
            return _number(self.total / self.count)
        if method == AggregationMethod.MIN:
            return _number(self.minimum)
        return _number(self.maximum)

    def reset_window(self) -> bool:
        """Zero SUM/COUNT accumulators. Returns True if anything changed."""
        if not self.method.is_windowed() or (self.count == 0 and self.total == 0):
            return False
        self.total = 0.0
        self.count = 0
        return True


# ============================================================================
# SUBTREE AGGREGATE
# ============================================================================

class RollupAggregate(BaseModel):
    """
    Running aggregate of one metric over a node's subtree.

    SUM/COUNT/AVG keep total + contributor count; MIN/MAX keep a value
    multiset with a cached extremum; LAST keeps the newest value and which
    asset reported it.

    Adds and removes commute: a removal may reach a node before the matching
    add, so multiplicities and the contributor count can be transiently
    negative. Only values with a positive multiplicity are candidates for
    the extremum.
    """

    method: AggregationMethod
    total: float = 0.0
    contributors: int = 0
    counts: Dict[float, int] = Field(default_factory=dict)
    extremum: Optional[float] = None
    latest: Optional[FieldValue] = None
    latest_at: Optional[datetime] = None
    latest_source: Optional[str] = None

    # ----------------------------------------------------------------
    # Reading
    # ----------------------------------------------------------------

    def value(self) -> Optional[FieldValue]:
        method = self.method
        if method == AggregationMethod.LAST:
            return self.latest
        if self.contributors <= 0:
            return None
        if method in (AggregationMethod.SUM, AggregationMethod.COUNT):
            return _number(self.total)
        if method == AggregationMethod.AVG:
            return _number(self.total / self.contributors)
        return _number(self.extremum) if self.extremum is not None else None

    @property
    def is_empty(self) -> bool:
        return self.contributors == 0 and not self.counts and self.latest is None

    # ----------------------------------------------------------------
    # Incremental updates
    # ----------------------------------------------------------------

    def apply(
        self,
        old: Optional[FieldValue],
        new: Optional[FieldValue],
        source_id: str,
        at: Optional[datetime],
        metric: str = "value",
    ) -> bool:
        """
        Replace one contributor's value old -> new.

        Returns True when the LAST value was withdrawn and must be
        re-derived from the node's direct children.
        """
        if self.method == AggregationMethod.LAST:
            if new is not None:
                self._offer_latest(new, at, source_id)
                return False
            return self.latest_source == source_id

        if old is not None:
            self._remove(old.as_number(metric))
        if new is not None:
            self._add(new.as_number(metric))
        return False

    def absorb(self, other: "RollupAggregate") -> None:
        """Add a whole subtree's aggregate."""
        if self.method == AggregationMethod.LAST:
            if other.latest is not None:
                self._offer_latest(other.latest, other.latest_at, other.latest_source)
            return
        self.total += other.total
        self.contributors += other.contributors
        for number, count in other.counts.items():
            self._adjust(number, count)
        self._settle()

    def release(self, other: "RollupAggregate", removed_ids: Set[str]) -> bool:
        """
        Subtract a whole subtree's aggregate.

        Returns True when LAST came from a removed asset and must be
        re-derived.
        """
        if self.method == AggregationMethod.LAST:
            return self.latest_source is not None and self.latest_source in removed_ids
        self.total -= other.total
        self.contributors -= other.contributors
        for number, count in other.counts.items():
            self._adjust(number, -count)
        self._settle()
        return False

    def rederive_latest(
        self, candidates: Iterable[Tuple[Optional[FieldValue], Optional[datetime], Optional[str]]]
    ) -> None:
        """Bounded re-derivation of LAST from own value + direct children."""
        self.latest = None
        self.latest_at = None
        self.latest_source = None
        for value, at, source in candidates:
            if value is not None:
                self._offer_latest(value, at, source)

    # ----------------------------------------------------------------
    # Internals
    # ----------------------------------------------------------------

    def _offer_latest(
        self, value: FieldValue, at: Optional[datetime], source: Optional[str]
    ) -> None:
        if self.latest_at is None or at is None or at >= self.latest_at:
            self.latest = value
            self.latest_at = at
            self.latest_source = source

    def _add(self, number: float) -> None:
        self.total += number
        self.contributors += 1
        self._adjust(number, 1)
        self._settle()

    def _remove(self, number: float) -> None:
        self.total -= number
        self.contributors -= 1
        self._adjust(number, -1)
        self._settle()

    def _adjust(self, number: float, delta: int) -> None:
        if self.method not in (AggregationMethod.MIN, AggregationMethod.MAX):
            return
        updated = self.counts.get(number, 0) + delta
        if updated == 0:
            self.counts.pop(number, None)
        else:
            self.counts[number] = updated
        if updated > 0:
            pick = min if self.method == AggregationMethod.MIN else max
            self.extremum = number if self.extremum is None else pick(self.extremum, number)
        elif number == self.extremum:
            self._recompute_extremum()

    def _settle(self) -> None:
        # Float drift once the last contributor leaves
        if self.contributors == 0 and abs(self.total) < 1e-9:
            self.total = 0.0

    def _recompute_extremum(self) -> None:
        # Only reached when the current extremum's last holder leaves
        present = [number for number, count in self.counts.items() if count > 0]
        if not present:
            self.extremum = None
            return
        pick = min if self.method == AggregationMethod.MIN else max
        self.extremum = pick(present)


# ============================================================================
# ASSET STATE
# ============================================================================

class AssetState(BaseModel):
    """
    Live state of one asset.

    Maps to: twin.asset_states
    """

    # SQL DDL METADATA
    __sql_table__: ClassVar[str] = "asset_states"
    __sql_schema__: ClassVar[str] = "twin"
    __sql_primary_key__: ClassVar[List[str]] = ["tenant_id", "asset_id"]

    asset_id: str
    tenant_id: str
    fields: Dict[str, FieldStatistic] = Field(default_factory=dict)
    rollups: Dict[str, RollupAggregate] = Field(default_factory=dict)
    own_alarms: Dict[str, AlarmSeverity] = Field(default_factory=dict)
    alarm_counters: Dict[str, int] = Field(default_factory=dict)
    last_update_time: Optional[datetime] = None
    last_update_device_id: Optional[str] = None
    withdrawn: bool = Field(default=False, description="Own contributions removed from ancestors")
    version: int = Field(default=0, ge=0, description="0 = never persisted")

    model_config = {"frozen": False}

    @classmethod
    def empty(cls, asset_id: str, tenant_id: str) -> "AssetState":
        """Default 'no data' state for assets that never received telemetry."""
        return cls(asset_id=asset_id, tenant_id=tenant_id)

    # ----------------------------------------------------------------
    # Derived views
    # ----------------------------------------------------------------

    @property
    def has_data(self) -> bool:
        return self.version > 0

    @property
    def state(self) -> Dict[str, FieldValue]:
        """Latest own value per field."""
        result = {}
        for name, stat in self.fields.items():
            current = stat.current()
            if current is not None:
                result[name] = current
        return result

    @property
    def calculated_metrics(self) -> Dict[str, FieldValue]:
        result = {}
        for metric, aggregate in self.rollups.items():
            value = aggregate.value()
            if value is not None:
                result[metric] = value
        return result

    @property
    def alarm_count(self) -> int:
        return sum(count for count in self.alarm_counters.values() if count > 0)

    @property
    def alarm_status(self) -> AlarmStatus:
        return AlarmStatus.from_counters(self.alarm_counters)

    # ----------------------------------------------------------------
    # Alarm counters
    # ----------------------------------------------------------------

    def adjust_alarm(self, severity: AlarmSeverity, delta: int) -> None:
        key = severity.value
        # May go transiently negative when a release overtakes its add
        updated = self.alarm_counters.get(key, 0) + delta
        if updated == 0:
            self.alarm_counters.pop(key, None)
        else:
            self.alarm_counters[key] = updated

    def absorb_alarms(self, counters: Dict[str, int], sign: int = 1) -> None:
        for key, count in counters.items():
            self.adjust_alarm(AlarmSeverity(key), sign * count)

    def touch(self, device_id: Optional[str] = None) -> None:
        self.last_update_time = datetime.now(timezone.utc)
        if device_id is not None:
            self.last_update_device_id = device_id


__all__ = ["FieldStatistic", "RollupAggregate", "AssetState"]
