# ============================================================================
# DOMAIN MODEL TESTS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Tests - Asset/state model unit tests
# PURPOSE: Verify enums, tagged values, path helpers and aggregate math
# CREATED: 14 OCT 2026
# ============================================================================
"""
Domain Model Tests

Unit tests for the model layer:
- Enums: AssetStatus, AggregationMethod, AlarmStatus
- FieldValue tagging and numeric coercion
- Asset path helpers and status transitions
- FieldStatistic folding and RollupAggregate incremental math

Run with:
    pytest tests/test_domain_models.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.contracts import AggregationMethod, AlarmSeverity, AlarmStatus, AssetStatus, ValueKind
from core.errors import ValidationError
from core.models import Asset, AssetState, FieldStatistic, FieldValue, RollupAggregate


NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def _num(value):
    return FieldValue.of(value)


# ============================================================================
# ENUM TESTS
# ============================================================================


class TestAssetStatus:
    def test_values(self):
        assert AssetStatus.ACTIVE.value == "active"
        assert AssetStatus.INACTIVE.value == "inactive"
        assert AssetStatus.DECOMMISSIONED.value == "decommissioned"

    def test_forward_transitions(self):
        assert AssetStatus.ACTIVE.can_transition_to(AssetStatus.INACTIVE)
        assert AssetStatus.ACTIVE.can_transition_to(AssetStatus.DECOMMISSIONED)
        assert AssetStatus.INACTIVE.can_transition_to(AssetStatus.DECOMMISSIONED)

    def test_backward_transitions_rejected(self):
        assert not AssetStatus.INACTIVE.can_transition_to(AssetStatus.ACTIVE)
        assert not AssetStatus.DECOMMISSIONED.can_transition_to(AssetStatus.ACTIVE)
        assert not AssetStatus.DECOMMISSIONED.can_transition_to(AssetStatus.INACTIVE)

    def test_is_terminal(self):
        assert AssetStatus.DECOMMISSIONED.is_terminal()
        assert not AssetStatus.ACTIVE.is_terminal()


class TestAggregationMethod:
    def test_numeric_methods(self):
        assert AggregationMethod.SUM.requires_number()
        assert AggregationMethod.MAX.requires_number()
        assert not AggregationMethod.LAST.requires_number()
        assert not AggregationMethod.COUNT.requires_number()

    def test_windowed_methods(self):
        assert AggregationMethod.SUM.is_windowed()
        assert AggregationMethod.COUNT.is_windowed()
        assert not AggregationMethod.AVG.is_windowed()


class TestAlarmStatus:
    def test_highest_severity_wins(self):
        assert AlarmStatus.from_counters({"warning": 2, "critical": 1}) == AlarmStatus.CRITICAL
        assert AlarmStatus.from_counters({"warning": 1}) == AlarmStatus.WARNING
        assert AlarmStatus.from_counters({}) == AlarmStatus.OK

    def test_non_positive_counters_ignored(self):
        assert AlarmStatus.from_counters({"critical": -1}) == AlarmStatus.OK


# ============================================================================
# FIELD VALUE TESTS
# ============================================================================


class TestFieldValue:
    def test_bool_is_not_a_number(self):
        value = FieldValue.of(True)
        assert value.kind == ValueKind.BOOLEAN
        with pytest.raises(ValidationError):
            value.as_number("running")

    def test_int_becomes_number(self):
        value = FieldValue.of(3)
        assert value.kind == ValueKind.NUMBER
        assert value.as_number() == 3.0

    def test_string_is_not_coerced(self):
        with pytest.raises(ValidationError):
            FieldValue.of("42").as_number("pressure")

    def test_nested_map_round_trip(self):
        raw = {"vendor": "ACME", "limits": {"low": 1, "high": 9.5}, "enabled": False}
        value = FieldValue.of(raw)
        assert value.kind == ValueKind.MAP
        assert value.value["limits"].value["high"].kind == ValueKind.NUMBER
        assert value.raw() == {"vendor": "ACME", "limits": {"low": 1.0, "high": 9.5}, "enabled": False}

    def test_from_tagged_inverts_dump(self):
        value = FieldValue.of({"a": 1, "b": "x"})
        assert FieldValue.from_tagged(value.model_dump(mode="json")) == value

    def test_non_finite_rejected(self):
        with pytest.raises(ValidationError):
            FieldValue.of(float("nan"))
        with pytest.raises(ValidationError):
            FieldValue.of(float("inf"))

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError):
            FieldValue.of([1, 2, 3])


# ============================================================================
# ASSET TESTS
# ============================================================================


class TestAsset:
    def test_place_under_root(self):
        asset = Asset(asset_id="a", tenant_id="t1", name="Site")
        asset.place_under(None)
        assert asset.path == ["a"]
        assert asset.level == 0
        assert asset.is_root
        assert asset.has_consistent_path()

    def test_place_under_parent(self):
        parent = Asset(asset_id="a", tenant_id="t1", name="Site", path=["a"])
        child = Asset(asset_id="b", tenant_id="t1", name="Line", parent_id="a")
        child.place_under(parent)
        assert child.path == ["a", "b"]
        assert child.level == 1
        assert child.ancestor_ids == ["a"]
        assert child.has_consistent_path(parent)
        assert child.is_descendant_of(parent)
        assert not parent.is_descendant_of(child)

    def test_inconsistent_path_detected(self):
        asset = Asset(asset_id="b", tenant_id="t1", name="Line", parent_id="a", path=["x", "b"], level=1)
        assert not asset.has_consistent_path()

    def test_asset_id_cannot_contain_separator(self):
        with pytest.raises(PydanticValidationError):
            Asset(asset_id="a.b", tenant_id="t1", name="Bad")

    def test_metadata_is_wrapped(self):
        asset = Asset(tenant_id="t1", name="Pump", metadata={"rated_kw": 15, "vendor": "ACME"})
        assert asset.metadata["rated_kw"].kind == ValueKind.NUMBER
        assert asset.metadata["vendor"].raw() == "ACME"

    def test_transition_forward(self):
        asset = Asset(tenant_id="t1", name="Pump")
        assert asset.transition_status(AssetStatus.INACTIVE, actor="ops")
        assert asset.status == AssetStatus.INACTIVE
        assert asset.updated_by == "ops"

    def test_transition_backward_rejected(self):
        asset = Asset(tenant_id="t1", name="Pump", status=AssetStatus.DECOMMISSIONED)
        with pytest.raises(ValidationError):
            asset.transition_status(AssetStatus.ACTIVE)
        assert asset.is_decommissioned


# ============================================================================
# FIELD STATISTIC TESTS
# ============================================================================


class TestFieldStatistic:
    def test_never_reported_has_no_value(self):
        assert FieldStatistic(method=AggregationMethod.SUM).current() is None

    def test_avg(self):
        stat = FieldStatistic(method=AggregationMethod.AVG)
        stat.fold(_num(10), "temp", NOW)
        stat.fold(_num(20), "temp", NOW)
        assert stat.current().value == 15.0

    def test_min_max(self):
        low = FieldStatistic(method=AggregationMethod.MIN)
        high = FieldStatistic(method=AggregationMethod.MAX)
        for number in (5, 2, 9):
            low.fold(_num(number), "p", NOW)
            high.fold(_num(number), "p", NOW)
        assert low.current().value == 2.0
        assert high.current().value == 9.0

    def test_count_accepts_any_kind(self):
        stat = FieldStatistic(method=AggregationMethod.COUNT)
        stat.fold(FieldValue.of("door_open"), "events", NOW)
        stat.fold(FieldValue.of(True), "events", NOW)
        assert stat.current().value == 2.0

    def test_last_keeps_kind(self):
        stat = FieldStatistic()
        stat.fold(FieldValue.of("running"), "mode", NOW)
        assert stat.current() == FieldValue.of("running")

    def test_sum_rejects_string(self):
        stat = FieldStatistic(method=AggregationMethod.SUM)
        with pytest.raises(ValidationError):
            stat.fold(FieldValue.of("lots"), "energy", NOW)
        assert stat.count == 0

    def test_reset_window(self):
        stat = FieldStatistic(method=AggregationMethod.SUM)
        stat.fold(_num(4), "energy", NOW)
        assert stat.reset_window()
        assert stat.current().value == 0.0
        assert not stat.reset_window()

    def test_reset_window_ignores_avg(self):
        stat = FieldStatistic(method=AggregationMethod.AVG)
        stat.fold(_num(4), "temp", NOW)
        assert not stat.reset_window()


# ============================================================================
# ROLLUP AGGREGATE TESTS
# ============================================================================


class TestRollupAggregate:
    def test_sum_replaces_contribution(self):
        agg = RollupAggregate(method=AggregationMethod.SUM)
        agg.apply(None, _num(10), "d", NOW)
        agg.apply(None, _num(5), "e", NOW)
        agg.apply(_num(10), _num(12), "d", NOW)
        assert agg.value().value == 17.0
        assert agg.contributors == 2

    def test_avg_over_contributors(self):
        agg = RollupAggregate(method=AggregationMethod.AVG)
        agg.apply(None, _num(10), "d", NOW)
        agg.apply(None, _num(30), "e", NOW)
        assert agg.value().value == 20.0

    def test_min_recomputed_when_extremum_leaves(self):
        agg = RollupAggregate(method=AggregationMethod.MIN)
        for source, number in (("a", 5), ("b", 3), ("c", 7)):
            agg.apply(None, _num(number), source, NOW)
        assert agg.value().value == 3.0
        agg.apply(_num(3), None, "b", NOW)
        assert agg.value().value == 5.0

    def test_max_keeps_duplicate_values(self):
        agg = RollupAggregate(method=AggregationMethod.MAX)
        agg.apply(None, _num(9), "a", NOW)
        agg.apply(None, _num(9), "b", NOW)
        agg.apply(_num(9), None, "a", NOW)
        assert agg.value().value == 9.0

    def test_remove_before_add_commutes(self):
        agg = RollupAggregate(method=AggregationMethod.MAX)
        agg.apply(_num(4), None, "a", NOW)
        assert agg.value() is None
        agg.apply(None, _num(4), "a", NOW)
        assert agg.is_empty

    def test_absorb_release(self):
        moved = RollupAggregate(method=AggregationMethod.MIN)
        moved.apply(None, _num(1), "x", NOW)
        target = RollupAggregate(method=AggregationMethod.MIN)
        target.apply(None, _num(4), "y", NOW)
        target.absorb(moved)
        assert target.value().value == 1.0
        target.release(moved, {"x"})
        assert target.value().value == 4.0

    def test_last_newest_wins(self):
        agg = RollupAggregate(method=AggregationMethod.LAST)
        agg.apply(None, _num(1), "d", NOW)
        agg.apply(None, _num(2), "e", NOW + timedelta(seconds=1))
        agg.apply(None, _num(3), "f", NOW - timedelta(seconds=1))
        assert agg.value().value == 2.0
        assert agg.latest_source == "e"

    def test_last_withdrawal_requests_rederive(self):
        agg = RollupAggregate(method=AggregationMethod.LAST)
        agg.apply(None, _num(1), "d", NOW)
        assert agg.apply(_num(1), None, "d", None)
        assert not agg.apply(_num(1), None, "other", None)
        assert agg.release(agg, {"d"})

    def test_rederive_latest(self):
        agg = RollupAggregate(method=AggregationMethod.LAST)
        agg.rederive_latest([
            (_num(1), NOW, "a"),
            (None, None, "b"),
            (_num(2), NOW + timedelta(seconds=5), "c"),
        ])
        assert agg.latest_source == "c"


# ============================================================================
# ASSET STATE TESTS
# ============================================================================


class TestAssetState:
    def test_empty_has_no_data(self):
        state = AssetState.empty("a", "t1")
        assert not state.has_data
        assert state.state == {}
        assert state.alarm_status == AlarmStatus.OK

    def test_alarm_counters(self):
        state = AssetState.empty("a", "t1")
        state.adjust_alarm(AlarmSeverity.CRITICAL, 1)
        state.adjust_alarm(AlarmSeverity.WARNING, 2)
        assert state.alarm_count == 3
        assert state.alarm_status == AlarmStatus.CRITICAL
        state.absorb_alarms({"critical": 1, "warning": 2}, sign=-1)
        assert state.alarm_counters == {}

    def test_calculated_metrics_skip_empty(self):
        state = AssetState.empty("a", "t1")
        state.rollups["power"] = RollupAggregate(method=AggregationMethod.SUM)
        assert state.calculated_metrics == {}
