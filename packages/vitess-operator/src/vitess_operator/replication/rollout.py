"""
Rolling restart of a shard's tablet Pods.

When a shard is scheduled for a rolling update (its tablet Pods carry
pending recreate changes), tablets are restarted one at a time: the first
scheduled Pod is released and deleted, so the reconciler recreates it with
the new spec. The next Pod is only touched once every tablet is Ready again.
When no scheduled Pod is left, the shard itself is unscheduled.

Each pass restarts at most one Pod and then requeues, instead of blocking
the work queue while the replacement comes up.
"""

import logging

from vitess_operator import rollout
from vitess_operator.events import Recorder
from vitess_operator.replication.common import REQUEUE_DELAY, describe_error
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import VitessShard
from vitess_protocols import ConditionStatus, ConflictError, Object, ObjectStoreProtocol

logger = logging.getLogger(__name__)

CONFLICT_RETRIES = 5


async def reconcile_rollout(
    shard: VitessShard, store: ObjectStoreProtocol, recorder: Recorder
) -> Result:
    """Advance a scheduled rolling restart of the shard by at most one Pod."""
    builder = ResultBuilder()
    obj = shard.obj

    if not rollout.scheduled(obj):
        return builder.result()

    if any(t.ready != ConditionStatus.TRUE for t in shard.status.tablets.values()):
        recorder.warning(obj, "RollingRestartFailed", "all tablets are not healthy")
        return builder.result()

    try:
        pods = await store.list("Pod", obj.metadata.namespace, shard.tablet_selector())
    except Exception as err:
        return builder.error(err)

    # A Pod deleted on the previous pass may not have been recreated yet.
    if len(pods) < len(shard.status.tablets) or any(pod.metadata.deletion_timestamp for pod in pods):
        logger.info("waiting for tablet Pods of %r to be recreated", shard)
        return builder.requeue_after(REQUEUE_DELAY)

    scheduled = sorted(
        (pod for pod in pods if rollout.scheduled(pod)), key=lambda pod: pod.metadata.name
    )
    if scheduled:
        pod = scheduled[0]
        try:
            await release_and_delete(store, pod)
        except Exception as err:
            recorder.warning(
                obj,
                "RollingRestartFailed",
                f"tablet {pod.metadata.name} deletion failed: {describe_error(err)}",
            )
            return builder.error(err)
        logger.info("restarted tablet Pod %s of %r", pod.key, shard)
        return builder.requeue_after(REQUEUE_DELAY)

    try:
        await _retry_on_conflict(store, obj, _unschedule)
    except Exception as err:
        return builder.error(err)
    return builder.result()


async def release_and_delete(store: ObjectStoreProtocol, pod: Object) -> None:
    """Release a scheduled Pod, then delete it so it's recreated with its update."""
    current = await _retry_on_conflict(store, pod, _release)
    await store.delete(current.kind, current.key, precondition_uid=current.metadata.uid or None)


def _release(obj: Object) -> bool:
    if not rollout.scheduled(obj) or rollout.released(obj):
        return False
    rollout.release(obj)
    return True


def _unschedule(obj: Object) -> bool:
    if not rollout.scheduled(obj) or rollout.released(obj):
        return False
    rollout.unschedule(obj)
    return True


async def _retry_on_conflict(store: ObjectStoreProtocol, obj: Object, mutate) -> Object:
    """
    Re-read obj, apply mutate, and write it back, retrying on conflicts.

    mutate returns False when there's nothing to change.

    Returns:
        The stored object after the write, or as read if nothing changed.
    """
    for attempt in range(CONFLICT_RETRIES):
        current = await store.get(obj.kind, obj.key)
        if not mutate(current):
            return current
        try:
            return await store.update(current)
        except ConflictError as err:
            if attempt == CONFLICT_RETRIES - 1:
                raise
            logger.debug("retrying update of %s %s: %s", obj.kind, obj.key, err)
    raise AssertionError("unreachable")
