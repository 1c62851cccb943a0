# ============================================================================
# HIERARCHY MANAGER TESTS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Tests - Move/delete subtrees and path-index lookups
# PURPOSE: Verify tree invariants survive structural edits
# CREATED: 14 OCT 2026
# ============================================================================
"""
Hierarchy Manager Tests

Drives AssetTwinService over the in-memory backend:
- move re-parents whole subtrees and keeps every path consistent
- cycles, oversized subtrees and name clashes leave the tree untouched
- concurrent opposite moves cannot create a cycle
- cascade delete removes exactly the subtree

Run with:
    pytest tests/test_hierarchy_service.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.config import Defaults, HierarchyDefaults
from core.contracts import AssetStatus
from core.errors import (
    CrossTenantError,
    CycleDetectedError,
    HasChildrenError,
    NotFoundError,
    SubtreeTooLargeError,
    ValidationError,
)
from infrastructure.locking import StripedLockManager
from repositories import InMemoryAssetRepository, InMemoryMappingRegistry, InMemoryStateRepository
from services import AssetTwinService


TENANT = "t1"


def _service(**limits):
    return AssetTwinService.build(
        assets=InMemoryAssetRepository(),
        states=InMemoryStateRepository(),
        mappings=InMemoryMappingRegistry(),
        locks=StripedLockManager(),
        defaults=Defaults(hierarchy=HierarchyDefaults(**limits)),
    )


async def _tree(svc, edges, tenant_id=TENANT):
    """Create assets from [(asset_id, parent_id), ...]; names equal ids."""
    for asset_id, parent_id in edges:
        await svc.create_asset(tenant_id, asset_id=asset_id, name=asset_id, parent_id=parent_id)


async def _snapshot(svc, tenant_id=TENANT):
    assets = await svc.get_all_assets(tenant_id, take=1000)
    return [a.model_dump() for a in assets]


async def _assert_consistent(svc, tenant_id=TENANT):
    assets = {a.asset_id: a for a in await svc.get_all_assets(tenant_id, take=1000)}
    for asset in assets.values():
        parent = assets.get(asset.parent_id) if asset.parent_id else None
        assert asset.has_consistent_path(parent), asset.asset_id


# ============================================================================
# MOVE
# ============================================================================


class TestMove:
    def test_move_grandchild_under_root(self):
        """A -> B -> C; move C directly under A."""
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B")])

            moved = await svc.move_asset("C", "A", TENANT)

            assert moved.path == ["A", "C"]
            assert moved.level == 1
            assert moved.parent_id == "A"
            assert "C" not in [a.asset_id for a in await svc.get_descendants("B", TENANT)]
            assert {a.asset_id for a in await svc.get_descendants("A", TENANT)} == {"B", "C"}
            await _assert_consistent(svc)

        asyncio.run(run())

    def test_move_rewrites_whole_subtree(self):
        async def run():
            svc = _service()
            await _tree(svc, [
                ("S1", None), ("S2", None),
                ("L", "S1"), ("E", "L"), ("C1", "E"), ("C2", "E"),
            ])

            await svc.move_asset("L", "S2", TENANT)

            c1 = await svc.get_asset("C1", TENANT)
            assert c1.path == ["S2", "L", "E", "C1"]
            assert c1.level == 3
            assert await svc.get_descendants("S1", TENANT) == []
            assert len(await svc.get_descendants("S2", TENANT)) == 4
            await _assert_consistent(svc)

        asyncio.run(run())

    def test_move_to_root(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B")])

            moved = await svc.move_asset("B", None, TENANT)

            assert moved.path == ["B"]
            assert moved.level == 0
            assert [a.asset_id for a in await svc.get_root_assets(TENANT)] == ["A", "B"]
            assert (await svc.get_asset("C", TENANT)).path == ["B", "C"]

        asyncio.run(run())

    def test_move_to_current_parent_is_noop(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            before = await _snapshot(svc)
            await svc.move_asset("B", "A", TENANT)
            assert await _snapshot(svc) == before

        asyncio.run(run())

    def test_cycle_leaves_tree_identical(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B")])
            before = await _snapshot(svc)

            with pytest.raises(CycleDetectedError):
                await svc.move_asset("A", "C", TENANT)
            with pytest.raises(CycleDetectedError):
                await svc.move_asset("B", "B", TENANT)

            assert await _snapshot(svc) == before

        asyncio.run(run())

    def test_subtree_ceiling(self):
        async def run():
            svc = _service(max_subtree_size=2)
            await _tree(svc, [("A", None), ("B", "A"), ("C", "A"), ("X", None)])
            before = await _snapshot(svc)

            with pytest.raises(SubtreeTooLargeError) as exc_info:
                await svc.move_asset("A", "X", TENANT)

            assert exc_info.value.size == 3
            assert await _snapshot(svc) == before

        asyncio.run(run())

    def test_depth_limit(self):
        async def run():
            svc = _service(max_tree_depth=3)
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B"), ("X", None), ("Y", "X")])
            with pytest.raises(ValidationError):
                await svc.move_asset("Y", "C", TENANT)

        asyncio.run(run())

    def test_name_clash_at_target(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("X", None)])
            await svc.create_asset(TENANT, asset_id="b1", name="Line", parent_id="A")
            await svc.create_asset(TENANT, asset_id="b2", name="Line", parent_id="X")
            with pytest.raises(ValidationError):
                await svc.move_asset("b1", "X", TENANT)
            assert (await svc.get_asset("b1", TENANT)).parent_id == "A"

        asyncio.run(run())

    def test_decommissioned_target(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("X", None)])
            await svc.set_status("X", TENANT, AssetStatus.DECOMMISSIONED)
            with pytest.raises(ValidationError):
                await svc.move_asset("B", "X", TENANT)

        asyncio.run(run())

    def test_cross_tenant_parent(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            await _tree(svc, [("Z", None)], tenant_id="t2")
            with pytest.raises(CrossTenantError):
                await svc.move_asset("B", "Z", TENANT)

        asyncio.run(run())

    def test_opposite_concurrent_moves_cannot_cycle(self):
        async def run():
            svc = _service()
            await _tree(svc, [("X", None), ("Y", None)])

            results = await asyncio.gather(
                svc.move_asset("X", "Y", TENANT),
                svc.move_asset("Y", "X", TENANT),
                return_exceptions=True,
            )

            errors = [r for r in results if isinstance(r, Exception)]
            assert len(errors) == 1
            assert isinstance(errors[0], CycleDetectedError)
            roots = await svc.get_root_assets(TENANT)
            assert len(roots) == 1
            await _assert_consistent(svc)

        asyncio.run(run())

    def test_concurrent_moves_into_moving_subtree(self):
        async def run():
            svc = _service()
            await _tree(svc, [("R", None), ("P", "R"), ("Q", None), ("M", None)])

            await asyncio.gather(
                svc.move_asset("P", "Q", TENANT),
                svc.move_asset("M", "P", TENANT),
            )

            assert (await svc.get_asset("M", TENANT)).path == ["Q", "P", "M"]
            await _assert_consistent(svc)

        asyncio.run(run())

    def test_transfer_failure_keeps_committed_move(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("X", None)])
            svc.rollups.transfer_subtree = AsyncMock(side_effect=RuntimeError("state store down"))

            with pytest.raises(RuntimeError):
                await svc.move_asset("B", "X", TENANT)

            assert (await svc.get_asset("B", TENANT)).path == ["X", "B"]
            await _assert_consistent(svc)

        asyncio.run(run())


# ============================================================================
# DELETE
# ============================================================================


class TestDelete:
    def test_refuses_without_cascade(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            with pytest.raises(HasChildrenError):
                await svc.delete_asset("A", TENANT)

        asyncio.run(run())

    def test_cascade_removes_subtree_only(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B"), ("D", "B"), ("E", "A")])

            removed = await svc.delete_asset("B", TENANT, cascade=True)

            assert set(removed) == {"B", "C", "D"}
            for asset_id in ("B", "C", "D"):
                with pytest.raises(NotFoundError):
                    await svc.get_asset(asset_id, TENANT)
            assert [a.asset_id for a in await svc.get_children("A", TENANT)] == ["E"]

        asyncio.run(run())

    def test_cascade_ceiling(self):
        async def run():
            svc = _service(max_subtree_size=2)
            await _tree(svc, [("A", None), ("B", "A"), ("C", "A")])
            with pytest.raises(SubtreeTooLargeError):
                await svc.delete_asset("A", TENANT, cascade=True)
            assert len(await svc.get_descendants("A", TENANT)) == 2

        asyncio.run(run())

    def test_leaf(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            assert await svc.delete_asset("B", TENANT) == ["B"]
            assert await svc.get_children("A", TENANT) == []

        asyncio.run(run())

    def test_name_reusable_after_delete(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            await svc.delete_asset("B", TENANT)
            again = await svc.create_asset(TENANT, name="B", parent_id="A")
            assert again.path == ["A", again.asset_id]

        asyncio.run(run())


# ============================================================================
# LOOKUPS
# ============================================================================


class TestLookups:
    def test_ancestors_root_first(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B"), ("D", "C")])
            ancestors = await svc.get_ancestors("D", TENANT)
            assert [a.asset_id for a in ancestors] == ["A", "B", "C"]
            assert await svc.get_ancestors("A", TENANT) == []

        asyncio.run(run())

    def test_descendants_in_path_order(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A"), ("C", "B"), ("D", "A")])
            descendants = await svc.get_descendants("A", TENANT)
            assert [a.asset_id for a in descendants] == ["B", "C", "D"]

        asyncio.run(run())

    def test_children_sorted_by_name(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("zeta", "A"), ("alpha", "A")])
            children = await svc.get_children("A", TENANT)
            assert [c.name for c in children] == ["alpha", "zeta"]

        asyncio.run(run())

    def test_lookups_are_tenant_scoped(self):
        async def run():
            svc = _service()
            await _tree(svc, [("A", None), ("B", "A")])
            with pytest.raises(NotFoundError):
                await svc.get_descendants("A", "t2")
            assert await svc.get_root_assets("t2") == []

        asyncio.run(run())
