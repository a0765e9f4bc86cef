"""
Drain reconciliation: prepare tablet Pods for deletion on request.

An external drainer asks for a tablet to be retired by putting the drain
"started" annotation on its Pod. This pass answers through the other drain
annotations, in four phases:

1. Check shard health. Nothing happens while any tablet is unavailable or
   the shard has no primary.
2. Load drain state. Annotations left over from an aborted drain are
   cleared, and nothing else is touched on such a pass.
3. Apply state transitions, except that the current primary is never marked
   finished.
4. If the primary is (or is about to be) finished, reparent away from it.
   The next pass can then mark it finished.

The invariant protected here: at most one tablet of a shard is finished at
a time, so a drainer deleting finished tablets removes one tablet at a time.
A finished annotation is therefore never removed while a drain is active,
even if the shard turns unhealthy or the primary moves onto that tablet.
Aborting a drain is treated as an emergency that may break this invariant.
"""

import asyncio
import logging

from vitess_operator import drain, metrics, podutil
from vitess_operator.concurrency import fan_out
from vitess_operator.drain import DrainState
from vitess_operator.errors import InvalidDrainStateError, ProgrammingError
from vitess_operator.events import Recorder
from vitess_operator.replication.common import REQUEUE_DELAY, describe_error
from vitess_operator.replication.position import Position, decode_position
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import EXTERNAL_PRIMARY_POOL, VitessShard
from vitess_protocols import (
    ConditionStatus,
    Object,
    ObjectStoreProtocol,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletType,
    WranglerProtocol,
)

logger = logging.getLogger(__name__)

RECONCILE_DRAIN_TIMEOUT = 60.0
# Tighter limit on the initial reads so the pass fails fast.
RECONCILE_DRAIN_READ_TIMEOUT = 10.0
PLANNED_REPARENT_TIMEOUT = 30.0
CANDIDATE_PRIMARY_TIMEOUT = 2.0


async def reconcile_drain(
    shard: VitessShard,
    wr: WranglerProtocol,
    store: ObjectStoreProtocol,
    recorder: Recorder,
) -> Result:
    """Advance drain annotations on the shard's tablet Pods and reparent if needed."""
    try:
        async with asyncio.timeout(RECONCILE_DRAIN_TIMEOUT):
            return await _reconcile_drain(shard, wr, store, recorder)
    except TimeoutError:
        logger.warning("drain reconcile of %r timed out", shard)
        return ResultBuilder().requeue_after(REQUEUE_DELAY)


async def _reconcile_drain(
    shard: VitessShard,
    wr: WranglerProtocol,
    store: ObjectStoreProtocol,
    recorder: Recorder,
) -> Result:
    builder = ResultBuilder()
    obj = shard.obj

    try:
        async with asyncio.timeout(RECONCILE_DRAIN_READ_TIMEOUT):
            pod_list = await store.list("Pod", obj.metadata.namespace, shard.tablet_selector())
    except Exception as err:
        recorder.warning(obj, "ListFailed", f"failed to list Pods: {describe_error(err)}")
        return builder.error(err)

    try:
        async with asyncio.timeout(RECONCILE_DRAIN_READ_TIMEOUT):
            shard_info = await wr.topo.get_shard(shard.keyspace, shard.name)
    except Exception as err:
        recorder.warning(obj, "TopoGetFailed", f"failed to get shard record: {describe_error(err)}")
        return builder.requeue_after(REQUEUE_DELAY)

    # Tablets in cells we don't deploy to are drained by another operator instance.
    try:
        async with asyncio.timeout(RECONCILE_DRAIN_READ_TIMEOUT):
            tablets = await wr.topo.get_tablet_map_for_shard(
                shard.keyspace, shard.name, cells=shard.spec.cells()
            )
    except Exception as err:
        recorder.warning(
            obj, "TopoGetFailed", f"failed to get tablet records: {describe_error(err)}"
        )
        return builder.requeue_after(REQUEUE_DELAY)

    pods: dict[str, Object] = {}
    for pod in pod_list:
        try:
            pods[str(podutil.tablet_alias(pod))] = pod
        except ValueError as err:
            logger.warning("ignoring tablet Pod %s: %s", pod.key, err)

    # 1. Check shard health.
    unhealthy = _unhealthy_reason(shard)
    if unhealthy:
        recorder.warning(obj, "NotReconcilingDrain", f"Shard is in an unhealthy state: {unhealthy}")
        return builder.result()
    if not shard_info.has_primary():
        recorder.warning(obj, "NotReconcilingDrain", "Shard does not have a primary")
        return builder.result()

    # 2. Load drain state; clear annotations of Pods with no drain request.
    aborting = False
    drains: dict[str, DrainState] = {}
    for alias in sorted(pods):
        pod = pods[alias]
        if drain.started(pod):
            try:
                drains[alias] = drain.get_state(pod)
            except InvalidDrainStateError as err:
                drains[alias] = err.state
                recorder.warning(
                    obj,
                    "InvalidDrainState",
                    f"Found a pod in an invalid drain state: {pod.metadata.name}, {err}",
                )
            continue

        if drain.acknowledged(pod) or drain.finished(pod):
            aborting = True
            recorder.warning(
                obj,
                "AbortingDrain",
                "found a partially drained Pod that does not have a drain request: "
                f"{pod.metadata.name}",
            )
        try:
            pods[alias] = await update_drain_status(store, pod, DrainState.NOT_DRAINING)
        except Exception as err:
            recorder.warning(
                obj,
                "UpdateFailed",
                f"failed to update drain annotation on Pod {pod.metadata.name}: {err}",
            )
            builder.error(err)

    if not drains:
        return builder.result()

    if aborting:
        # The drainer clears its annotations and waits for things to settle
        # before trying again; don't transition anything meanwhile.
        recorder.warning(obj, "AbortingDrain", "detected that we are aborting drain")
        return builder.result()

    # 3. Apply transitions, never finishing the primary.
    primary_alias = str(shard_info.primary_alias)
    transitions = drain.state_transitions(drains)
    acknowledged_drain = False
    for alias in sorted(transitions):
        state = transitions[alias]
        if state == DrainState.FINISHED and alias == primary_alias:
            continue
        if state == DrainState.ACKNOWLEDGED:
            acknowledged_drain = True
        pod = pods[alias]
        try:
            pods[alias] = await update_drain_status(store, pod, state)
        except ProgrammingError:
            raise
        except Exception as err:
            recorder.warning(
                obj,
                "UpdateFailed",
                f"failed to update drain annotation on Pod {pod.metadata.name}: {err}",
            )
            builder.error(err)

    # 4. Reparent away from a finished (or finishing) primary.
    primary_finished = drains.get(primary_alias) == DrainState.FINISHED
    if acknowledged_drain and not primary_finished:
        # The acknowledgement may change which tablet finishes; let it settle.
        recorder.normal(obj, "NotReparentingPrimary", "We have acknowledged a drain this loop")
        return builder.result()
    if not primary_finished and transitions.get(primary_alias) != DrainState.FINISHED:
        recorder.normal(obj, "NotReparentingPrimary", "We are not marking primary as finished")
        return builder.result()

    using_external = shard.spec.using_external_datastore()
    new_primary = await candidate_primary(wr, shard_info, tablets, pods, using_external)
    if new_primary is None:
        recorder.warning(
            obj,
            "DrainBlocked",
            f"unable to drain primary tablet {primary_alias}: "
            "no other tablet is a suitable primary candidate",
        )
        return builder.requeue_after(REQUEUE_DELAY)

    reparent_err: Exception | None = None
    try:
        async with asyncio.timeout(PLANNED_REPARENT_TIMEOUT):
            if using_external:
                await handle_external_reparent(wr, new_primary.alias, shard_info.primary_alias)
            else:
                await wr.planned_reparent_shard(
                    shard.keyspace,
                    shard.name,
                    new_primary.alias,
                    wait_replicas_timeout=PLANNED_REPARENT_TIMEOUT,
                )
    except Exception as err:
        reparent_err = err
        recorder.warning(
            obj,
            "PlannedReparentFailed",
            f"planned reparent from current primary {primary_alias} to candidate primary "
            f"{new_primary.alias} failed: {describe_error(err)}",
        )
    else:
        recorder.normal(
            obj,
            "PlannedReparent",
            f"planned reparent from old primary {primary_alias} to new primary "
            f"{new_primary.alias} succeeded",
        )
    metrics.record_shard_event(
        metrics.PLANNED_REPARENT_COUNT, shard.cluster, shard.keyspace, shard.name, reparent_err
    )
    return builder.result()


async def handle_external_reparent(
    wr: WranglerProtocol, new_primary: TabletAlias, old_primary: TabletAlias
) -> None:
    """
    Reparent an external datastore shard.

    The provider has already moved the writable server; Vitess only needs to
    be told, and the old primary tablet demoted to a non-serving type.
    """
    await wr.tablet_externally_reparented(new_primary)
    # TODO: drop once external primary tablets demote themselves to SPARE.
    await wr.change_tablet_type(old_primary, TabletType.SPARE)


async def update_drain_status(
    store: ObjectStoreProtocol, pod: Object, state: DrainState
) -> Object:
    """
    Make pod's drain annotations reflect state, writing only if they changed.

    Returns:
        The Pod as stored afterwards.

    Raises:
        ProgrammingError: If asked to set DRAINING, which only the drainer does.
    """
    if state == DrainState.DRAINING:
        raise ProgrammingError("the controller must never mark a pod as Draining")

    updated = pod.deepcopy()
    changed = False
    if state == DrainState.FINISHED:
        if not drain.finished(updated):
            drain.finish(updated)
            changed = True
    elif state == DrainState.ACKNOWLEDGED:
        if not drain.acknowledged(updated):
            drain.acknowledge(updated)
            changed = True
    elif state == DrainState.NOT_DRAINING:
        if drain.finished(updated):
            drain.unfinish(updated)
            changed = True
        if drain.acknowledged(updated):
            drain.unacknowledge(updated)
            changed = True

    if not changed:
        return pod
    return await store.update(updated)


async def candidate_primary(
    wr: WranglerProtocol,
    shard_info: ShardInfo,
    tablets: dict[str, Tablet],
    pods: dict[str, Object],
    using_external: bool,
) -> Tablet | None:
    """
    Choose the new primary for a planned reparent away from a healthy primary.

    A candidate must not be the primary, must have a Ready Pod that isn't in
    the drain state machine, and must be a replica (or, for an external
    datastore, a SPARE or PRIMARY tablet of the external primary pool).

    Among candidates, the one reporting the highest replication position
    wins. Candidates that don't answer within CANDIDATE_PRIMARY_TIMEOUT are
    disqualified, unless nobody answers, in which case the first candidate
    is used.
    """
    candidates: dict[str, Tablet] = {}
    for alias in sorted(tablets):
        tablet = tablets[alias]
        if tablet.alias == shard_info.primary_alias:
            continue
        pod = pods.get(alias)
        if pod is None:
            continue
        if using_external:
            if pod.labels.get(podutil.TABLET_TYPE_LABEL) != EXTERNAL_PRIMARY_POOL:
                continue
            # Replication isn't ours to manage, so a tablet already claiming
            # primary is safe too.
            if tablet.type not in (TabletType.SPARE, TabletType.PRIMARY):
                continue
        elif tablet.type != TabletType.REPLICA:
            continue
        if not podutil.is_ready(pod):
            continue
        if drain.started(pod) or drain.acknowledged(pod) or drain.finished(pod):
            continue
        candidates[alias] = tablet

    if not candidates:
        return None

    async def position_of(tablet: Tablet) -> Position:
        status = await wr.tmc.replication_status(tablet)
        return decode_position(status.position)

    positions = await fan_out(candidates, position_of, timeout=CANDIDATE_PRIMARY_TIMEOUT)

    best: Tablet | None = None
    highest: Position | None = None
    for alias in sorted(positions):
        position = positions[alias]
        if isinstance(position, BaseException):
            logger.debug("candidate %s disqualified: %s", alias, describe_error(position))
            continue
        if highest is None or highest.is_zero() or not highest.at_least(position):
            best = candidates[alias]
            highest = position

    if best is None:
        best = next(iter(candidates.values()))
    return best


def _unhealthy_reason(shard: VitessShard) -> str:
    for name in sorted(shard.status.tablets):
        if shard.status.tablets[name].available != ConditionStatus.TRUE:
            return f"tablet {name} is not Available"
    return ""
