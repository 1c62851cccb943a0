# ============================================================================
# ROLLUP ENGINE (STATE CACHE)
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain service - Live state and incremental subtree aggregates
# PURPOSE: Fold telemetry into AssetState and push deltas up the ancestor chain
# CREATED: 11 OCT 2026
# ============================================================================
"""
RollupEngine

Single mutation entry point for live state: update_state(). Every other
write here is driven by a hierarchy edit (transfer/drop) or an alarm/
lifecycle event.

Walk protocol (per update):

    stripe(X) -> fold own values, apply delta to X's aggregate
    stripe(parent) acquired, stripe(X) released
    ... up to the root

Stripes are taken child before parent and hand-over-hand, so two walks on
one chain never overtake each other, and a node's parent cannot change
while its stripe is held: a move commits while holding the moved root's
stripe (pinned()). Walks on disjoint branches only meet at shared
ancestors.

Cost per update is O(depth): each ancestor folds one (old -> new) delta
into its RollupAggregate. The only re-derivation is LAST after its source
leaves a chain, and that reads the node's direct children only.
"""

from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from core.config import RollupDefaults, get_defaults
from core.contracts import AggregationMethod, AlarmSeverity
from core.errors import ConcurrentModificationError, NotFoundError, ValidationError
from core.logging import ComponentType, get_logger, log_checkpoint
from core.models import (
    Asset,
    AssetState,
    DataPointMapping,
    FieldStatistic,
    FieldValue,
    RollupAggregate,
)
from infrastructure.locking import LockManager, rollup_lock_key
from services.asset_store import require_tenant

logger = get_logger(__name__, ComponentType.ROLLUP)

Delta = Tuple[AggregationMethod, Optional[FieldValue], Optional[FieldValue]]
Visitor = Callable[[Asset, AssetState], Awaitable[bool]]


class MappingProvider(Protocol):
    async def get_mappings(self, tenant_id: str, asset_id: str) -> Dict[str, DataPointMapping]:
        ...


class RollupEngine:
    """Per-asset live state plus incrementally maintained subtree aggregates."""

    def __init__(
        self,
        structure,
        states,
        mappings: MappingProvider,
        locks: LockManager,
        defaults: Optional[RollupDefaults] = None,
        max_depth: Optional[int] = None,
    ):
        self.structure = structure
        self.states = states
        self.mappings = mappings
        self.locks = locks
        self.defaults = defaults or get_defaults().rollup
        self.max_depth = max_depth or get_defaults().hierarchy.max_tree_depth

    # ================================================================
    # LOCKING / WALK
    # ================================================================

    @asynccontextmanager
    async def pinned(self, tenant_id: str, asset_id: str):
        """Hold one asset's stripe (used by moves/deletes around their commit)."""
        async with self.locks.acquire(
            [rollup_lock_key(tenant_id, asset_id)], self.defaults.stripe_lock_timeout
        ):
            yield

    async def _walk(self, tenant_id: str, start_id: str, visit: Visitor) -> int:
        """
        Visit `start_id` then each ancestor, hand-over-hand on stripes.

        `visit` saves the state itself and returns False to stop early.
        Returns the number of nodes visited.
        """
        previous: Optional[AsyncExitStack] = None
        node_id: Optional[str] = start_id
        visited = 0
        try:
            while node_id is not None and visited <= self.max_depth:
                current = AsyncExitStack()
                await current.enter_async_context(self.pinned(tenant_id, node_id))
                if previous is not None:
                    await previous.aclose()
                previous = current

                node = await self.structure.get_node(tenant_id, node_id)
                if node is None:
                    break
                state = await self._load(tenant_id, node_id)
                visited += 1
                if not await visit(node, state):
                    break
                node_id = node.parent_id
        finally:
            if previous is not None:
                await previous.aclose()
        return visited

    async def _load(self, tenant_id: str, asset_id: str) -> AssetState:
        state = await self.states.get(tenant_id, asset_id)
        return state if state is not None else AssetState.empty(asset_id, tenant_id)

    async def _save(self, state: AssetState) -> None:
        if not await self.states.save(state):
            raise ConcurrentModificationError(
                f"State of asset '{state.asset_id}' was modified concurrently",
                state.asset_id,
            )

    @staticmethod
    def _contributes(node: Asset, state: AssetState) -> bool:
        """Whether this asset's own values/alarms count towards rollups."""
        if state.version == 0 and node.is_decommissioned:
            state.withdrawn = True
        return not state.withdrawn

    async def _walk_own(
        self, tenant_id: str, asset_id: str, visit: Visitor, result: Dict[str, AssetState]
    ) -> Tuple[AssetState, int]:
        """
        _walk from an asset that must outlive the walk; `visit` puts the
        asset's own state in result["state"].

        Raises NotFoundError when the asset was deleted while the walk ran.
        A row written after the delete dropped the subtree's states is
        removed again here.
        """
        try:
            touched = await self._walk(tenant_id, asset_id, visit)
        except ConcurrentModificationError:
            # The delete removed a state row this walk had already loaded
            if await self.structure.get_node(tenant_id, asset_id) is not None:
                raise
            touched = 0
        if "state" in result and await self.structure.get_node(tenant_id, asset_id) is not None:
            return result["state"], touched
        await self.states.delete_many(tenant_id, [asset_id])
        logger.warning(f"Asset {asset_id} was deleted while its state was being written")
        raise NotFoundError(asset_id)

    async def _check_ancestors(
        self, tenant_id: str, node: Asset, deltas: Dict[str, Delta]
    ) -> None:
        """Reject deltas an existing ancestor aggregate cannot fold, before any save."""
        if not deltas or not node.ancestor_ids:
            return
        ancestors = await self.states.get_many(tenant_id, node.ancestor_ids)
        for ancestor_id, ancestor in ancestors.items():
            for metric, (_, old, new) in deltas.items():
                aggregate = ancestor.rollups.get(metric)
                if aggregate is None or aggregate.method == AggregationMethod.LAST:
                    continue
                for value in (old, new):
                    if value is None:
                        continue
                    try:
                        value.as_number(metric)
                    except ValidationError as e:
                        raise ValidationError(
                            f"Asset '{node.asset_id}': '{metric}' rolls up as "
                            f"{aggregate.method.value} at ancestor '{ancestor_id}' "
                            f"and needs a number",
                            node.asset_id,
                        ) from e

    # ================================================================
    # UPDATE STATE
    # ================================================================

    async def update_state(
        self,
        asset_id: str,
        tenant_id: str,
        field_values: Dict[str, Any],
        source_device_id: Optional[str] = None,
    ) -> AssetState:
        """
        Merge field values into the asset's state and propagate rollups.

        Raises:
            NotFoundError: asset absent in this tenant, or deleted while
                the update ran.
            ValidationError: malformed value, or non-numeric value for a
                SUM/AVG/MIN/MAX field or for an existing numeric ancestor
                aggregate. Nothing is written in that case.
            ConcurrentModificationError: state row conflict or stripe timeout.
        """
        require_tenant(tenant_id)
        if not field_values:
            raise ValidationError(f"Asset '{asset_id}': no field values supplied", asset_id)
        values = {name: FieldValue.of(raw, name) for name, raw in field_values.items()}
        await self.structure.get_asset(asset_id, tenant_id)
        mappings = await self.mappings.get_mappings(tenant_id, asset_id)
        now = datetime.now(timezone.utc)
        deltas: Dict[str, Delta] = {}
        result: Dict[str, AssetState] = {}

        async def visit(node: Asset, state: AssetState) -> bool:
            if node.asset_id == asset_id:
                deltas.update(self._fold_own(node, state, values, mappings, now))
                await self._check_ancestors(tenant_id, node, deltas)
                state.touch(source_device_id)
                state.last_update_time = now
                result["state"] = state
            self._apply_deltas(state, deltas, asset_id, now)
            await self._save(state)
            return bool(deltas)

        state, touched = await self._walk_own(tenant_id, asset_id, visit, result)
        logger.debug(
            f"State of {asset_id} updated ({len(values)} fields, "
            f"{len(deltas)} rolled up, {touched} nodes touched)"
        )
        return state

    def _fold_own(
        self,
        node: Asset,
        state: AssetState,
        values: Dict[str, FieldValue],
        mappings: Dict[str, DataPointMapping],
        at: datetime,
    ) -> Dict[str, Delta]:
        propagate = self._contributes(node, state)

        # Validate everything before mutating anything
        plans: List[Tuple[str, FieldStatistic, FieldValue]] = []
        for name, value in values.items():
            stat = state.fields.get(name)
            if stat is None:
                mapping = mappings.get(name)
                if mapping is not None:
                    stat = FieldStatistic(
                        method=mapping.aggregation_method, rollup=mapping.rollup_enabled
                    )
                else:
                    stat = FieldStatistic(rollup=self.defaults.rollup_unmapped_fields)
            if stat.method.requires_number():
                value.as_number(name)
            plans.append((name, stat, value))

        deltas: Dict[str, Delta] = {}
        for name, stat, value in plans:
            old = stat.current()
            stat.fold(value, name, at)
            state.fields[name] = stat
            if stat.rollup and propagate:
                deltas[name] = (stat.method, old, stat.current())
        return deltas

    @staticmethod
    def _apply_deltas(
        state: AssetState, deltas: Dict[str, Delta], source_id: str, at: Optional[datetime]
    ) -> None:
        for metric, (method, old, new) in deltas.items():
            aggregate = state.rollups.get(metric)
            if aggregate is None:
                aggregate = state.rollups[metric] = RollupAggregate(method=method)
            aggregate.apply(old, new, source_id, at, metric)

    # ================================================================
    # WINDOWS
    # ================================================================

    async def reset_window(self, asset_id: str, tenant_id: str) -> AssetState:
        """
        Zero SUM/COUNT accumulators of one asset and withdraw the difference
        from its ancestors. Window boundaries are driven externally.
        """
        require_tenant(tenant_id)
        await self.structure.get_asset(asset_id, tenant_id)
        now = datetime.now(timezone.utc)
        deltas: Dict[str, Delta] = {}
        result: Dict[str, AssetState] = {}

        async def visit(node: Asset, state: AssetState) -> bool:
            if node.asset_id == asset_id:
                result["state"] = state
                if state.version == 0:
                    return False
                propagate = self._contributes(node, state)
                for name, stat in state.fields.items():
                    old = stat.current()
                    if stat.reset_window() and stat.rollup and propagate:
                        deltas[name] = (stat.method, old, stat.current())
            self._apply_deltas(state, deltas, asset_id, now)
            await self._save(state)
            return bool(deltas)

        state, _ = await self._walk_own(tenant_id, asset_id, visit, result)
        logger.info(f"Window reset on {asset_id} ({len(deltas)} fields withdrawn from ancestors)")
        return state

    # ================================================================
    # ALARMS
    # ================================================================

    async def open_alarm(
        self, asset_id: str, tenant_id: str, alarm_id: str, severity: AlarmSeverity
    ) -> AssetState:
        """Open an alarm; +1 on the severity counter at the asset and every ancestor."""
        try:
            severity = AlarmSeverity(severity)
        except ValueError:
            raise ValidationError(f"Unknown alarm severity '{severity}'", asset_id)
        return await self._alarm_event(asset_id, tenant_id, alarm_id, severity, opening=True)

    async def resolve_alarm(self, asset_id: str, tenant_id: str, alarm_id: str) -> AssetState:
        """Resolve an alarm; -1 along the same chain. Unknown ids are a no-op."""
        return await self._alarm_event(asset_id, tenant_id, alarm_id, None, opening=False)

    async def _alarm_event(
        self,
        asset_id: str,
        tenant_id: str,
        alarm_id: str,
        severity: Optional[AlarmSeverity],
        opening: bool,
    ) -> AssetState:
        require_tenant(tenant_id)
        if not alarm_id:
            raise ValidationError(f"Asset '{asset_id}': alarm id is required", asset_id)
        await self.structure.get_asset(asset_id, tenant_id)
        change: Dict[str, Any] = {}
        result: Dict[str, AssetState] = {}

        async def visit(node: Asset, state: AssetState) -> bool:
            if node.asset_id == asset_id:
                result["state"] = state
                if opening:
                    if alarm_id in state.own_alarms:
                        return False
                    state.own_alarms[alarm_id] = severity
                    change["severity"], change["delta"] = severity, 1
                else:
                    if alarm_id not in state.own_alarms:
                        return False
                    change["severity"], change["delta"] = state.own_alarms.pop(alarm_id), -1
                if not self._contributes(node, state):
                    await self._save(state)
                    return False
            state.adjust_alarm(change["severity"], change["delta"])
            await self._save(state)
            return True

        state, touched = await self._walk_own(tenant_id, asset_id, visit, result)
        if change:
            logger.info(
                f"Alarm {alarm_id} {'opened' if opening else 'resolved'} on {asset_id} "
                f"({touched} nodes adjusted)"
            )
        return state

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def withdraw_asset(self, asset_id: str, tenant_id: str) -> None:
        """
        Remove a (now decommissioned) asset's own contributions and open
        alarms from itself and every ancestor. Its descendants still count.
        """
        contributions: Dict[str, Tuple[AggregationMethod, FieldValue]] = {}
        alarms: Counter = Counter()

        async def visit(node: Asset, state: AssetState) -> bool:
            if node.asset_id == asset_id:
                if state.version == 0 or state.withdrawn:
                    return False
                state.withdrawn = True
                for name, stat in state.fields.items():
                    current = stat.current()
                    if stat.rollup and current is not None:
                        contributions[name] = (stat.method, current)
                alarms.update(severity.value for severity in state.own_alarms.values())
            elif state.version == 0:
                return False
            for metric, (_, value) in contributions.items():
                aggregate = state.rollups.get(metric)
                if aggregate is None:
                    continue
                if aggregate.apply(value, None, asset_id, None, metric):
                    await self._rederive_latest(tenant_id, node, state, metric)
                if aggregate.is_empty:
                    del state.rollups[metric]
            state.absorb_alarms(dict(alarms), sign=-1)
            await self._save(state)
            return bool(contributions or alarms)

        touched = await self._walk(tenant_id, asset_id, visit)
        logger.info(f"Withdrew {asset_id} from rollups ({touched} nodes adjusted)")

    # ================================================================
    # STRUCTURAL CHANGES (caller holds pinned(asset_id))
    # ================================================================

    async def transfer_subtree(
        self,
        tenant_id: str,
        asset_id: str,
        old_parent_id: Optional[str],
        new_parent_id: Optional[str],
        subtree_ids: Iterable[str],
    ) -> None:
        """Move a subtree's aggregate from the old ancestor chain to the new one."""
        state = await self.states.get(tenant_id, asset_id)
        if state is None or (not state.rollups and not state.alarm_counters):
            return
        snapshot = {m: a.model_copy(deep=True) for m, a in state.rollups.items()}
        counters = dict(state.alarm_counters)
        removed = set(subtree_ids)

        released = 0
        if old_parent_id is not None:
            released = await self._walk(
                tenant_id, old_parent_id, self._releaser(tenant_id, snapshot, counters, removed)
            )
        absorbed = 0
        if new_parent_id is not None:
            absorbed = await self._walk(
                tenant_id, new_parent_id, self._absorber(snapshot, counters)
            )
        log_checkpoint("rollup_transferred", {
            "asset_id": asset_id,
            "metrics": sorted(snapshot),
            "released_nodes": released,
            "absorbed_nodes": absorbed,
        })

    async def drop_subtree(
        self,
        tenant_id: str,
        asset_id: str,
        parent_id: Optional[str],
        removed_ids: List[str],
    ) -> int:
        """Withdraw a deleted subtree from its former ancestors and drop its states."""
        state = await self.states.get(tenant_id, asset_id)
        if state is not None and parent_id is not None and (state.rollups or state.alarm_counters):
            snapshot = {m: a.model_copy(deep=True) for m, a in state.rollups.items()}
            await self._walk(
                tenant_id,
                parent_id,
                self._releaser(tenant_id, snapshot, dict(state.alarm_counters), set(removed_ids)),
            )
        dropped = await self.states.delete_many(tenant_id, removed_ids)
        logger.info(f"Dropped {dropped} state rows under deleted asset {asset_id}")
        return dropped

    def _releaser(
        self,
        tenant_id: str,
        snapshot: Dict[str, RollupAggregate],
        counters: Dict[str, int],
        removed: set,
    ) -> Visitor:
        async def visit(node: Asset, state: AssetState) -> bool:
            if state.version == 0:
                return True
            for metric, aggregate in snapshot.items():
                target = state.rollups.get(metric)
                if target is None:
                    continue
                if target.release(aggregate, removed):
                    await self._rederive_latest(tenant_id, node, state, metric)
                if target.is_empty:
                    del state.rollups[metric]
            state.absorb_alarms(counters, sign=-1)
            await self._save(state)
            return True
        return visit

    def _absorber(self, snapshot: Dict[str, RollupAggregate], counters: Dict[str, int]) -> Visitor:
        async def visit(node: Asset, state: AssetState) -> bool:
            for metric, aggregate in snapshot.items():
                target = state.rollups.get(metric)
                if target is None:
                    target = state.rollups[metric] = RollupAggregate(method=aggregate.method)
                target.absorb(aggregate)
            state.absorb_alarms(counters, sign=1)
            await self._save(state)
            return True
        return visit

    async def _rederive_latest(
        self, tenant_id: str, node: Asset, state: AssetState, metric: str
    ) -> None:
        """LAST re-derivation from the node's own value and its direct children."""
        aggregate = state.rollups[metric]
        candidates = []
        own = state.fields.get(metric)
        if own is not None and own.rollup and not state.withdrawn:
            candidates.append((own.current(), own.updated_at, node.asset_id))
        child_ids = await self.structure.list_child_ids(tenant_id, node.asset_id)
        children = await self.states.get_many(tenant_id, child_ids)
        for child in children.values():
            child_aggregate = child.rollups.get(metric)
            if child_aggregate is not None and child_aggregate.latest is not None:
                candidates.append(
                    (child_aggregate.latest, child_aggregate.latest_at, child_aggregate.latest_source)
                )
        aggregate.rederive_latest(candidates)

    # ================================================================
    # READS
    # ================================================================

    async def get_state(self, asset_id: str, tenant_id: str) -> AssetState:
        """State of one asset; an empty 'no data' state if none exists yet."""
        require_tenant(tenant_id)
        await self.structure.get_asset(asset_id, tenant_id)
        return await self._load(tenant_id, asset_id)

    async def get_bulk_states(self, asset_ids: Iterable[str], tenant_id: str) -> Dict[str, AssetState]:
        """
        Batched state lookup.

        Assets without state map to AssetState.empty() (has_data False);
        ids that are not assets of this tenant are omitted.
        """
        require_tenant(tenant_id)
        ids = list(dict.fromkeys(asset_ids))
        nodes = await self.structure.get_nodes(tenant_id, ids)
        existing = [n.asset_id for n in nodes]
        states = await self.states.get_many(tenant_id, existing)
        return {
            asset_id: states.get(asset_id) or AssetState.empty(asset_id, tenant_id)
            for asset_id in existing
        }


__all__ = ["RollupEngine", "MappingProvider"]
