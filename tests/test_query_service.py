# ============================================================================
# QUERY ENGINE TESTS
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Tests - Read-side composition
# PURPOSE: Verify tree reconstruction, truncation, ceilings and search
# CREATED: 15 OCT 2026
# ============================================================================
"""
Query Engine Tests

Run with:
    pytest tests/test_query_service.py -v
"""

import asyncio

import pytest

from core.config import Defaults, QueryDefaults
from core.contracts import AssetStatus, AssetType
from core.errors import NotFoundError, QueryCancelledError, TraversalLimitExceededError
from infrastructure.locking import StripedLockManager
from repositories import InMemoryAssetRepository, InMemoryMappingRegistry, InMemoryStateRepository
from services import AssetTwinService


TENANT = "t1"

# Site -> Building 1 -> Floor 1 -> Room 101
#      -> Building 2
SITE = [
    ("site", None, "Site", AssetType.SITE),
    ("b1", "site", "Building 1", AssetType.BUILDING),
    ("b2", "site", "Building 2", AssetType.BUILDING),
    ("f1", "b1", "Floor 1", AssetType.FLOOR),
    ("r101", "f1", "Room 101", AssetType.AREA),
]


def _service(**query):
    return AssetTwinService.build(
        assets=InMemoryAssetRepository(),
        states=InMemoryStateRepository(),
        mappings=InMemoryMappingRegistry(),
        locks=StripedLockManager(),
        defaults=Defaults(query=QueryDefaults(**query)),
    )


async def _build(svc):
    for asset_id, parent_id, name, asset_type in SITE:
        await svc.create_asset(
            TENANT, asset_id=asset_id, name=name, parent_id=parent_id, asset_type=asset_type
        )


# ============================================================================
# TREE
# ============================================================================


class TestTree:
    def test_full_tree(self):
        async def run():
            svc = _service()
            await _build(svc)
            await svc.update_state("r101", TENANT, {"occupied": True})

            tree = await svc.get_tree("site", TENANT)

            assert tree.asset.asset_id == "site"
            assert tree.child_count == 2
            assert [c.asset.name for c in tree.children] == ["Building 1", "Building 2"]
            room = tree.children[0].children[0].children[0]
            assert room.asset.asset_id == "r101"
            assert room.state.has_data
            assert room.state.state["occupied"].raw() is True
            assert not tree.children[1].state.has_data
            assert not any(node.truncated for node in (tree, room))

        asyncio.run(run())

    def test_depth_truncation(self):
        async def run():
            svc = _service()
            await _build(svc)

            tree = await svc.get_tree("site", TENANT, max_depth=1)

            b1, b2 = tree.children
            assert b1.children == []
            assert b1.truncated
            assert b1.child_count == 1
            assert not b2.truncated

        asyncio.run(run())

    def test_depth_zero(self):
        async def run():
            svc = _service()
            await _build(svc)
            tree = await svc.get_tree("site", TENANT, max_depth=0)
            assert tree.children == []
            assert tree.truncated

        asyncio.run(run())

    def test_subtree_root(self):
        async def run():
            svc = _service()
            await _build(svc)
            tree = await svc.get_tree("b1", TENANT)
            assert tree.asset.level == 1
            assert tree.children[0].children[0].asset.asset_id == "r101"

        asyncio.run(run())

    def test_result_ceiling(self):
        async def run():
            svc = _service(max_result_count=3)
            await _build(svc)
            with pytest.raises(TraversalLimitExceededError):
                await svc.get_tree("site", TENANT)
            with pytest.raises(TraversalLimitExceededError):
                await svc.get_descendants("site", TENANT)
            # Within the ceiling when depth-bounded
            tree = await svc.get_tree("site", TENANT, max_depth=1)
            assert len(tree.children) == 2

        asyncio.run(run())

    def test_cancellation(self):
        async def run():
            svc = _service()
            await _build(svc)
            cancel = asyncio.Event()
            cancel.set()
            with pytest.raises(QueryCancelledError):
                await svc.get_tree("site", TENANT, cancel=cancel)

        asyncio.run(run())

    def test_other_tenant(self):
        async def run():
            svc = _service()
            await _build(svc)
            with pytest.raises(NotFoundError):
                await svc.get_tree("site", "t2")

        asyncio.run(run())


# ============================================================================
# LISTINGS
# ============================================================================


class TestListings:
    def test_path_names(self):
        async def run():
            svc = _service()
            await _build(svc)
            names = await svc.get_path_names("r101", TENANT)
            assert names == "Site > Building 1 > Floor 1 > Room 101"

        asyncio.run(run())

    def test_search_case_insensitive(self):
        async def run():
            svc = _service()
            await _build(svc)
            page, total = await svc.search_assets(TENANT, search_term="BUILDING")
            assert total == 2
            assert [a.asset_id for a in page] == ["b1", "b2"]

        asyncio.run(run())

    def test_search_filters_and_paging(self):
        async def run():
            svc = _service()
            await _build(svc)
            await svc.set_status("b2", TENANT, AssetStatus.INACTIVE)

            page, total = await svc.search_assets(TENANT, asset_type=AssetType.BUILDING, take=1)
            assert total == 2
            assert len(page) == 1

            page, total = await svc.search_assets(TENANT, status=AssetStatus.INACTIVE)
            assert [a.asset_id for a in page] == ["b2"]

            page, total = await svc.search_assets(TENANT, parent_id="site", skip=1)
            assert total == 2
            assert [a.asset_id for a in page] == ["b2"]

        asyncio.run(run())

    def test_all_assets_in_path_order(self):
        async def run():
            svc = _service()
            await _build(svc)
            assets = await svc.get_all_assets(TENANT)
            assert [a.asset_id for a in assets] == ["site", "b1", "f1", "r101", "b2"]

        asyncio.run(run())

    def test_counts(self):
        async def run():
            svc = _service()
            await _build(svc)
            assert await svc.count_assets(TENANT) == 5
            assert await svc.count_assets(TENANT, asset_type=AssetType.BUILDING) == 2
            assert await svc.count_assets("t2") == 0

            site = await svc.get_asset("site", TENANT)
            r101 = await svc.get_asset("r101", TENANT)
            assert await svc.child_counts(TENANT, [site, r101]) == {"site": 2, "r101": 0}

        asyncio.run(run())
