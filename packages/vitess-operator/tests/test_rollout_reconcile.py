"""Tests for rolling restarts of a shard's tablet Pods."""

import pytest

from vitess_fakes import NAMESPACE, make_pod, make_shard, tablet_status
from vitess_operator import rollout
from vitess_operator.replication import reconcile_rollout
from vitess_operator.replication.common import REQUEUE_DELAY
from vitess_operator.shard import VitessShard
from vitess_protocols import ObjectKey

FIRST = "zone1-0000000101"
SECOND = "zone1-0000000102"

SCHEDULED = {rollout.SCHEDULED_ANNOTATION: "spec:\n  image: vttablet:v2\n"}


def _pod_key(alias: str) -> ObjectKey:
    uid = int(alias.split("-")[1])
    return ObjectKey(NAMESPACE, f"example-vttablet-zone1-{uid:010d}")


def _add_shard(store, ready="True", annotations=None) -> VitessShard:
    tablets = {alias: tablet_status(ready=ready) for alias in (FIRST, SECOND)}
    obj = store.add(make_shard(tablets=tablets, annotations=annotations))
    return VitessShard(obj)


class TestReconcileRollout:
    """Tests for reconcile_rollout()."""

    @pytest.mark.asyncio
    async def test_not_scheduled(self, store, recorder, sink):
        shard = _add_shard(store)
        store.add(make_pod(FIRST, annotations=SCHEDULED))

        result = await reconcile_rollout(shard, store, recorder)

        assert store.deleted == []
        assert sink.events == []
        assert result.requeue_after == 0

    @pytest.mark.asyncio
    async def test_restarts_first_scheduled_pod(self, store, recorder):
        shard = _add_shard(store, annotations=SCHEDULED)
        store.add(make_pod(FIRST, annotations=SCHEDULED))
        store.add(make_pod(SECOND, annotations=SCHEDULED))

        result = await reconcile_rollout(shard, store, recorder)

        assert store.deleted == [("Pod", _pod_key(FIRST))]
        # Released first, so the recreated Pod gets the update.
        assert rollout.released(store.updates[-1])
        assert result.requeue_after == REQUEUE_DELAY

    @pytest.mark.asyncio
    async def test_one_pod_per_pass(self, store, recorder):
        shard = _add_shard(store, annotations=SCHEDULED)
        store.add(make_pod(FIRST, annotations=SCHEDULED))
        store.add(make_pod(SECOND, annotations=SCHEDULED))

        await reconcile_rollout(shard, store, recorder)
        result = await reconcile_rollout(shard, store, recorder)

        # The deleted Pod hasn't come back yet.
        assert store.deleted == [("Pod", _pod_key(FIRST))]
        assert result.requeue_after == REQUEUE_DELAY

    @pytest.mark.asyncio
    async def test_waits_for_terminating_pod(self, store, recorder):
        shard = _add_shard(store, annotations=SCHEDULED)
        terminating = make_pod(FIRST)
        terminating.metadata.deletion_timestamp = "2026-10-18T00:00:00Z"
        store.add(terminating)
        store.add(make_pod(SECOND, annotations=SCHEDULED))

        result = await reconcile_rollout(shard, store, recorder)

        assert store.deleted == []
        assert result.requeue_after == REQUEUE_DELAY

    @pytest.mark.asyncio
    async def test_unhealthy_tablets_block_restart(self, store, recorder, sink):
        shard = _add_shard(store, ready="False", annotations=SCHEDULED)
        store.add(make_pod(FIRST, annotations=SCHEDULED))
        store.add(make_pod(SECOND, annotations=SCHEDULED))

        await reconcile_rollout(shard, store, recorder)

        assert store.deleted == []
        assert sink.messages("RollingRestartFailed") == ["all tablets are not healthy"]

    @pytest.mark.asyncio
    async def test_unschedules_shard_when_done(self, store, recorder):
        shard = _add_shard(store, annotations=SCHEDULED)
        store.add(make_pod(FIRST))
        store.add(make_pod(SECOND))

        result = await reconcile_rollout(shard, store, recorder)

        assert not rollout.scheduled(store.peek("VitessShard", shard.obj.key))
        assert result.error is None

    @pytest.mark.asyncio
    async def test_released_shard_is_left_to_its_owner(self, store, recorder):
        annotations = {**SCHEDULED, rollout.RELEASED_ANNOTATION: "true"}
        shard = _add_shard(store, annotations=annotations)
        store.add(make_pod(FIRST))
        store.add(make_pod(SECOND))

        await reconcile_rollout(shard, store, recorder)

        assert rollout.scheduled(store.peek("VitessShard", shard.obj.key))
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_release_failure(self, store, recorder, sink):
        shard = _add_shard(store, annotations=SCHEDULED)
        store.add(make_pod(FIRST, annotations=SCHEDULED))
        store.add(make_pod(SECOND))
        store.fail_updates = RuntimeError("apiserver unavailable")

        result = await reconcile_rollout(shard, store, recorder)

        assert store.deleted == []
        assert sink.messages("RollingRestartFailed") == [
            "tablet example-vttablet-zone1-0000000101 deletion failed: apiserver unavailable"
        ]
        assert isinstance(result.error, RuntimeError)
