# ============================================================================
# ROLLUP ENGINE TESTS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Tests - Live state and incremental subtree aggregates
# PURPOSE: Verify per-method rollups, alarm propagation and transfers
# CREATED: 15 OCT 2026
# ============================================================================
"""
Rollup Engine Tests

Tree used throughout (ids double as names):

    A
    +-- B
    |   +-- D
    |   +-- E
    +-- C

Each aggregation method is checked at the ancestors, an update is shown
to touch only the reporting asset and its ancestors, and moves/deletes/
decommissioning are shown to keep ancestor aggregates exact.

Run with:
    pytest tests/test_rollup_service.py -v
"""

import asyncio

import pytest

from core.config import Defaults, RollupDefaults
from core.contracts import AggregationMethod, AlarmSeverity, AlarmStatus, AssetStatus
from core.errors import NotFoundError, ValidationError
from core.models import DataPointMapping
from infrastructure.locking import StripedLockManager
from repositories import InMemoryAssetRepository, InMemoryMappingRegistry, InMemoryStateRepository
from services import AssetTwinService


TENANT = "t1"
TREE = [("A", None), ("B", "A"), ("C", "A"), ("D", "B"), ("E", "B")]


class CountingStateRepository(InMemoryStateRepository):
    """Records which asset states were written."""

    def __init__(self):
        super().__init__()
        self.saved = []

    async def save(self, state):
        self.saved.append(state.asset_id)
        return await super().save(state)


class YieldingStateRepository(InMemoryStateRepository):
    """Yields to the event loop on every read and write so walks interleave."""

    async def get(self, tenant_id, asset_id):
        await asyncio.sleep(0)
        return await super().get(tenant_id, asset_id)

    async def save(self, state):
        await asyncio.sleep(0)
        return await super().save(state)


def _after_first(obj, method_name, asset_id, action):
    """Run `action` once, right after obj.method_name first returns for asset_id."""
    original = getattr(obj, method_name)
    pending = [asset_id]

    async def hooked(*args):
        result = await original(*args)
        if asset_id in args and pending:
            pending.clear()
            await action()
        return result

    setattr(obj, method_name, hooked)


def _mapping(asset_id, label, method, rollup=True):
    return DataPointMapping(
        tenant_id=TENANT,
        asset_id=asset_id,
        json_path=f"$.{label}",
        label=label,
        aggregation_method=method,
        rollup_enabled=rollup,
    )


def _service(mappings=(), states=None, **rollup):
    return AssetTwinService.build(
        assets=InMemoryAssetRepository(),
        states=states or InMemoryStateRepository(),
        mappings=InMemoryMappingRegistry(mappings),
        locks=StripedLockManager(),
        defaults=Defaults(rollup=RollupDefaults(**rollup)),
    )


async def _build(svc, edges=TREE):
    for asset_id, parent_id in edges:
        await svc.create_asset(TENANT, asset_id=asset_id, name=asset_id, parent_id=parent_id)


async def _metric(svc, asset_id, metric):
    value = (await svc.get_state(asset_id, TENANT)).calculated_metrics.get(metric)
    return value.raw() if value is not None else None


def _on(method, *asset_ids, label="value"):
    return [_mapping(asset_id, label, method) for asset_id in asset_ids]


# ============================================================================
# AGGREGATION METHODS
# ============================================================================


class TestMethods:
    def test_sum(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 10})
            await svc.update_state("D", TENANT, {"energy": 5})
            await svc.update_state("E", TENANT, {"energy": 7})

            assert (await svc.get_state("D", TENANT)).state["energy"].raw() == 15.0
            assert await _metric(svc, "B", "energy") == 22.0
            assert await _metric(svc, "A", "energy") == 22.0
            assert await _metric(svc, "C", "energy") is None

        asyncio.run(run())

    def test_avg(self):
        async def run():
            svc = _service(_on(AggregationMethod.AVG, "D", "E", label="temp"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"temp": 10})
            await svc.update_state("D", TENANT, {"temp": 20})
            await svc.update_state("E", TENANT, {"temp": 30})

            assert await _metric(svc, "B", "temp") == 22.5
            assert await _metric(svc, "A", "temp") == 22.5

        asyncio.run(run())

    def test_min_and_max(self):
        async def run():
            mappings = _on(AggregationMethod.MIN, "D", "E", label="low") + _on(
                AggregationMethod.MAX, "D", "E", label="high"
            )
            svc = _service(mappings)
            await _build(svc)
            await svc.update_state("D", TENANT, {"low": 4, "high": 4})
            await svc.update_state("E", TENANT, {"low": 9, "high": 9})
            await svc.update_state("D", TENANT, {"low": 2, "high": 12})

            assert await _metric(svc, "A", "low") == 2.0
            assert await _metric(svc, "A", "high") == 12.0

        asyncio.run(run())

    def test_count(self):
        async def run():
            svc = _service(_on(AggregationMethod.COUNT, "D", "E", label="trips"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"trips": "overcurrent"})
            await svc.update_state("D", TENANT, {"trips": "overtemp"})
            await svc.update_state("E", TENANT, {"trips": True})

            assert await _metric(svc, "B", "trips") == 3.0

        asyncio.run(run())

    def test_last(self):
        async def run():
            svc = _service(_on(AggregationMethod.LAST, "D", "E", label="mode"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"mode": "auto"})
            await svc.update_state("E", TENANT, {"mode": "manual"})

            assert await _metric(svc, "A", "mode") == "manual"

        asyncio.run(run())

    def test_unmapped_field_stays_local(self):
        async def run():
            svc = _service()
            await _build(svc)
            state = await svc.update_state("D", TENANT, {"firmware": "1.4.2"})

            assert state.state["firmware"].raw() == "1.4.2"
            assert (await svc.get_state("B", TENANT)).has_data is False

        asyncio.run(run())

    def test_unmapped_field_rolls_up_when_enabled(self):
        async def run():
            svc = _service(rollup_unmapped_fields=True)
            await _build(svc)
            await svc.update_state("D", TENANT, {"firmware": "1.4.2"})
            assert await _metric(svc, "A", "firmware") == "1.4.2"

        asyncio.run(run())

    def test_rollup_disabled_mapping(self):
        async def run():
            svc = _service([_mapping("D", "energy", AggregationMethod.SUM, rollup=False)])
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 3})
            assert await _metric(svc, "B", "energy") is None

        asyncio.run(run())


# ============================================================================
# VALIDATION
# ============================================================================


class TestValidation:
    def test_non_numeric_value_writes_nothing(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 1})

            with pytest.raises(ValidationError):
                await svc.update_state("D", TENANT, {"mode": "auto", "energy": "lots"})

            state = await svc.get_state("D", TENANT)
            assert "mode" not in state.state
            assert state.state["energy"].raw() == 1.0
            assert await _metric(svc, "A", "energy") == 1.0

        asyncio.run(run())

    def test_method_clash_at_ancestor_writes_nothing(self):
        async def run():
            states = CountingStateRepository()
            mappings = [
                _mapping("B", "status", AggregationMethod.MAX),
                _mapping("D", "status", AggregationMethod.LAST),
            ]
            svc = _service(mappings, states=states)
            await _build(svc)
            await svc.update_state("B", TENANT, {"status": 3.0})
            states.saved.clear()

            with pytest.raises(ValidationError) as exc_info:
                await svc.update_state("D", TENANT, {"status": "hot"})

            assert "needs a number" in str(exc_info.value)
            assert states.saved == []
            assert not (await svc.get_state("D", TENANT)).has_data
            assert await _metric(svc, "B", "status") == 3.0
            assert await _metric(svc, "A", "status") == 3.0

        asyncio.run(run())

    def test_unknown_asset(self):
        async def run():
            svc = _service()
            await _build(svc)
            with pytest.raises(NotFoundError):
                await svc.update_state("nope", TENANT, {"x": 1})
            with pytest.raises(NotFoundError):
                await svc.update_state("D", "t2", {"x": 1})

        asyncio.run(run())

    def test_empty_update(self):
        async def run():
            svc = _service()
            await _build(svc)
            with pytest.raises(ValidationError):
                await svc.update_state("D", TENANT, {})

        asyncio.run(run())


# ============================================================================
# PROPAGATION SCOPE
# ============================================================================


class TestPropagationScope:
    def test_only_self_and_ancestors_written(self):
        async def run():
            states = CountingStateRepository()
            svc = _service(_on(AggregationMethod.SUM, "D", label="energy"), states=states)
            await _build(svc)

            await svc.update_state("D", TENANT, {"energy": 2})

            assert states.saved == ["D", "B", "A"]

        asyncio.run(run())

    def test_local_field_writes_only_self(self):
        async def run():
            states = CountingStateRepository()
            svc = _service(states=states)
            await _build(svc)

            await svc.update_state("D", TENANT, {"firmware": "2.0"})

            assert states.saved == ["D"]

        asyncio.run(run())

    def test_concurrent_updates_are_exact(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", "C", label="energy"))
            await _build(svc)

            await asyncio.gather(*[
                svc.update_state(asset_id, TENANT, {"energy": 1})
                for asset_id in ("D", "E", "C") * 10
            ])

            assert await _metric(svc, "B", "energy") == 20.0
            assert await _metric(svc, "A", "energy") == 30.0

        asyncio.run(run())


# ============================================================================
# ALARMS
# ============================================================================


class TestAlarms:
    def test_round_trip_on_leaf(self):
        """Open on D, counters rise at D/B/A; resolve restores them."""
        async def run():
            svc = _service()
            await _build(svc)
            before = {a: (await svc.get_state(a, TENANT)).alarm_count for a in "DBA"}

            await svc.open_alarm("D", TENANT, "alm-1", AlarmSeverity.CRITICAL)
            for asset_id in "DBA":
                state = await svc.get_state(asset_id, TENANT)
                assert state.alarm_count == before[asset_id] + 1
                assert state.alarm_status == AlarmStatus.CRITICAL
            assert (await svc.get_state("C", TENANT)).alarm_count == 0

            await svc.resolve_alarm("D", TENANT, "alm-1")
            for asset_id in "DBA":
                state = await svc.get_state(asset_id, TENANT)
                assert state.alarm_count == before[asset_id]
                assert state.alarm_status == AlarmStatus.OK

        asyncio.run(run())

    def test_duplicate_open_and_unknown_resolve_are_noops(self):
        async def run():
            svc = _service()
            await _build(svc)
            await svc.open_alarm("D", TENANT, "alm-1", AlarmSeverity.WARNING)
            await svc.open_alarm("D", TENANT, "alm-1", AlarmSeverity.WARNING)
            await svc.resolve_alarm("D", TENANT, "never-opened")

            assert (await svc.get_state("A", TENANT)).alarm_count == 1

        asyncio.run(run())

    def test_worst_severity_wins(self):
        async def run():
            svc = _service()
            await _build(svc)
            await svc.open_alarm("D", TENANT, "w", AlarmSeverity.WARNING)
            await svc.open_alarm("C", TENANT, "c", AlarmSeverity.CRITICAL)

            assert (await svc.get_state("B", TENANT)).alarm_status == AlarmStatus.WARNING
            assert (await svc.get_state("A", TENANT)).alarm_status == AlarmStatus.CRITICAL
            assert (await svc.get_state("A", TENANT)).alarm_count == 2

        asyncio.run(run())

    def test_unknown_severity(self):
        async def run():
            svc = _service()
            await _build(svc)
            with pytest.raises(ValidationError):
                await svc.open_alarm("D", TENANT, "x", "catastrophic")

        asyncio.run(run())


# ============================================================================
# STRUCTURAL CHANGES
# ============================================================================


class TestStructuralChanges:
    def test_move_transfers_aggregates(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 10})
            await svc.update_state("E", TENANT, {"energy": 3})
            await svc.open_alarm("D", TENANT, "alm", AlarmSeverity.CRITICAL)

            await svc.move_asset("D", "C", TENANT)

            assert await _metric(svc, "B", "energy") == 3.0
            assert await _metric(svc, "C", "energy") == 10.0
            assert await _metric(svc, "A", "energy") == 13.0
            assert (await svc.get_state("B", TENANT)).alarm_count == 0
            assert (await svc.get_state("C", TENANT)).alarm_status == AlarmStatus.CRITICAL
            assert (await svc.get_state("A", TENANT)).alarm_count == 1

            # Later updates follow the new chain
            await svc.update_state("D", TENANT, {"energy": 1})
            assert await _metric(svc, "C", "energy") == 11.0
            assert await _metric(svc, "B", "energy") == 3.0

        asyncio.run(run())

    def test_move_min_extremum_leaves_old_chain(self):
        async def run():
            svc = _service(_on(AggregationMethod.MIN, "D", "E", label="low"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"low": 1})
            await svc.update_state("E", TENANT, {"low": 5})

            await svc.move_asset("D", None, TENANT)

            assert await _metric(svc, "B", "low") == 5.0
            assert await _metric(svc, "A", "low") == 5.0
            assert await _metric(svc, "D", "low") == 1.0

        asyncio.run(run())

    def test_move_rederives_last(self):
        async def run():
            svc = _service(_on(AggregationMethod.LAST, "D", "E", label="mode"))
            await _build(svc)
            await svc.update_state("E", TENANT, {"mode": "manual"})
            await svc.update_state("D", TENANT, {"mode": "auto"})

            await svc.move_asset("D", "C", TENANT)

            assert await _metric(svc, "B", "mode") == "manual"
            assert await _metric(svc, "C", "mode") == "auto"

        asyncio.run(run())

    def test_cascade_delete_withdraws_subtree(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", label="energy"))
            await _build(svc)
            await svc.create_asset(TENANT, asset_id="F", name="F", parent_id="C")
            svc.rollups.mappings.register(_mapping("F", "energy", AggregationMethod.SUM))
            await svc.update_state("D", TENANT, {"energy": 10})
            await svc.update_state("F", TENANT, {"energy": 4})
            await svc.open_alarm("E", TENANT, "alm", AlarmSeverity.WARNING)

            await svc.delete_asset("B", TENANT, cascade=True)

            assert await _metric(svc, "A", "energy") == 4.0
            assert (await svc.get_state("A", TENANT)).alarm_count == 0
            assert await svc.rollups.states.get(TENANT, "D") is None

        asyncio.run(run())

    def test_decommission_withdraws_own_contribution(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "B", "D", label="energy"))
            await _build(svc)
            await svc.update_state("B", TENANT, {"energy": 100})
            await svc.update_state("D", TENANT, {"energy": 10})
            await svc.open_alarm("B", TENANT, "alm", AlarmSeverity.CRITICAL)

            await svc.set_status("B", TENANT, AssetStatus.DECOMMISSIONED)

            # Descendants still count; B's own value and alarm are gone
            assert await _metric(svc, "A", "energy") == 10.0
            assert (await svc.get_state("A", TENANT)).alarm_count == 0

            # Further reports are kept locally but never propagate
            await svc.update_state("B", TENANT, {"energy": 50})
            assert await _metric(svc, "A", "energy") == 10.0
            assert (await svc.get_state("B", TENANT)).state["energy"].raw() == 150.0

        asyncio.run(run())


# ============================================================================
# WINDOWS AND READS
# ============================================================================


class TestWindowsAndReads:
    def test_reset_window(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 10})
            await svc.update_state("E", TENANT, {"energy": 3})

            state = await svc.reset_window("D", TENANT)

            assert state.state["energy"].raw() == 0.0
            assert await _metric(svc, "A", "energy") == 3.0

        asyncio.run(run())

    def test_no_data_state(self):
        async def run():
            svc = _service()
            await _build(svc)
            state = await svc.get_state("C", TENANT)
            assert not state.has_data
            assert state.alarm_status == AlarmStatus.OK

        asyncio.run(run())

    def test_bulk_states(self):
        async def run():
            svc = _service()
            await _build(svc)
            await svc.update_state("D", TENANT, {"mode": "auto"})

            states = await svc.get_bulk_states(["D", "C", "ghost", "D"], TENANT)

            assert set(states) == {"D", "C"}
            assert states["D"].has_data
            assert not states["C"].has_data

        asyncio.run(run())

    def test_bulk_states_ignore_other_tenant(self):
        async def run():
            svc = _service()
            await _build(svc)
            assert await svc.get_bulk_states(["A", "B"], "t2") == {}

        asyncio.run(run())


# ============================================================================
# INTERLEAVING WITH HIERARCHY EDITS
# ============================================================================


class TestInterleaving:
    def test_updates_during_move_are_exact(self):
        async def run():
            mappings = _on(AggregationMethod.SUM, "D", "E", label="energy") + _on(
                AggregationMethod.MAX, "D", "E", label="peak"
            )
            svc = _service(mappings, states=YieldingStateRepository())
            await _build(svc)

            updates = []
            for i in range(1, 11):
                updates.append(svc.update_state("D", TENANT, {"energy": i, "peak": i}))
                updates.append(svc.update_state("E", TENANT, {"energy": 2, "peak": i / 2}))
            await asyncio.gather(*updates[:10], svc.move_asset("D", "C", TENANT), *updates[10:])

            assert await _metric(svc, "C", "energy") == 55.0
            assert await _metric(svc, "B", "energy") == 20.0
            assert await _metric(svc, "A", "energy") == 75.0
            assert await _metric(svc, "C", "peak") == 10.0
            assert await _metric(svc, "B", "peak") == 5.0
            assert await _metric(svc, "A", "peak") == 10.0

        asyncio.run(run())

    def test_updates_during_cascade_delete(self):
        async def run():
            svc = _service(
                _on(AggregationMethod.SUM, "C", "D", "E", label="energy"),
                states=YieldingStateRepository(),
            )
            await _build(svc)

            updates = [
                svc.update_state(asset_id, TENANT, {"energy": 1})
                for asset_id in ("D", "E", "C") * 10
            ]
            results = await asyncio.gather(
                *updates[:15],
                svc.delete_asset("B", TENANT, cascade=True),
                *updates[15:],
                return_exceptions=True,
            )

            failures = [r for r in results if isinstance(r, BaseException)]
            assert all(isinstance(r, NotFoundError) for r in failures)
            assert await _metric(svc, "C", "energy") == 10.0
            assert await _metric(svc, "A", "energy") == 10.0
            for asset_id in ("B", "D", "E"):
                assert await svc.rollups.states.get(TENANT, asset_id) is None

        asyncio.run(run())

    @pytest.mark.parametrize("operation", ["update", "reset", "alarm"])
    def test_asset_deleted_before_walk(self, operation):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 4})
            _after_first(
                svc.rollups.structure, "get_asset", "D",
                lambda: svc.delete_asset("B", TENANT, cascade=True),
            )

            calls = {
                "update": lambda: svc.update_state("D", TENANT, {"energy": 1}),
                "reset": lambda: svc.reset_window("D", TENANT),
                "alarm": lambda: svc.open_alarm("D", TENANT, "alm", AlarmSeverity.WARNING),
            }
            with pytest.raises(NotFoundError):
                await calls[operation]()

            assert await svc.rollups.states.get(TENANT, "D") is None
            assert await _metric(svc, "A", "energy") is None
            assert (await svc.get_state("A", TENANT)).alarm_count == 0

        asyncio.run(run())

    def test_delete_after_node_read_leaves_no_state(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", "E", label="energy"))
            await _build(svc)
            await svc.update_state("E", TENANT, {"energy": 3})
            _after_first(
                svc.rollups.structure, "get_node", "D",
                lambda: svc.delete_asset("B", TENANT, cascade=True),
            )

            with pytest.raises(NotFoundError):
                await svc.update_state("D", TENANT, {"energy": 5})

            assert await svc.rollups.states.get(TENANT, "D") is None
            assert await _metric(svc, "A", "energy") is None

        asyncio.run(run())

    def test_delete_after_state_load_is_not_found(self):
        async def run():
            svc = _service(_on(AggregationMethod.SUM, "D", label="energy"))
            await _build(svc)
            await svc.update_state("D", TENANT, {"energy": 2})
            _after_first(
                svc.rollups.states, "get", "D",
                lambda: svc.delete_asset("B", TENANT, cascade=True),
            )

            with pytest.raises(NotFoundError):
                await svc.update_state("D", TENANT, {"energy": 5})

            assert await svc.rollups.states.get(TENANT, "D") is None
            assert await _metric(svc, "A", "energy") is None

        asyncio.run(run())
