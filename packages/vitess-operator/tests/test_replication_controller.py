"""Tests for ShardReplicationController."""

import pytest

from vitess_fakes import make_shard, position, tablet_status
from vitess_operator.replication import ShardReplicationController
from vitess_operator.replication.common import REQUEUE_DELAY
from vitess_operator.toposerver import ConnPool
from vitess_protocols import ConnParams, ObjectKey, TabletType

T101 = "zone1-0000000101"
T102 = "zone1-0000000102"


class RecordingResync:
    def __init__(self) -> None:
        self.keys: list[ObjectKey] = []

    def enqueue(self, key) -> None:
        self.keys.append(key)


@pytest.fixture
def resync():
    return RecordingResync()


@pytest.fixture
def controller(store, backend, recorder, resync):
    return ShardReplicationController(
        store, ConnPool(opener=backend.open), backend, recorder, resync=resync
    )


def _healthy_shard():
    return make_shard(
        tablets={T101: tablet_status("primary"), T102: tablet_status("replica")},
        has_master="True",
        master_alias=T101,
    )


def _fresh_shard():
    return make_shard(
        tablets={T101: tablet_status("replica"), T102: tablet_status("replica")},
        has_master="False",
    )


class TestReconcile:
    """Tests for ShardReplicationController.reconcile()."""

    @pytest.mark.asyncio
    async def test_missing_shard(self, controller, backend, resync):
        result = await controller.reconcile(ObjectKey("default", "gone"))

        assert result.error is None
        assert backend.opened == []
        assert resync.keys == []

    @pytest.mark.asyncio
    async def test_waits_for_current_status(self, controller, store, backend):
        """Status written for an older spec can't be trusted."""
        obj = store.add(make_shard(generation=2, observed_generation=1))

        result = await controller.reconcile(obj.key)

        assert backend.opened == []
        assert result.requeue_after == 0

    @pytest.mark.asyncio
    async def test_healthy_shard(self, controller, store, topo, tmc, backend, sink, resync):
        topo.add_shard(primary=T101)
        primary = topo.add_tablet(T101, TabletType.PRIMARY)
        topo.add_tablet(T102, TabletType.REPLICA)
        tmc.replicate(T102, primary, position(3))
        obj = store.add(_healthy_shard())

        result = await controller.reconcile(obj.key)

        assert backend.opened == [ConnParams("etcd2", "etcd:2379", "/vitess/global")]
        assert backend.wranglers[0].calls == []
        assert tmc.calls == []
        assert sink.events == []
        assert result.error is None
        assert resync.keys == [obj.key]

    @pytest.mark.asyncio
    async def test_fresh_shard_is_initialized(self, controller, store, topo, backend, sink):
        topo.add_shard()
        topo.add_tablet(T101, TabletType.REPLICA)
        topo.add_tablet(T102, TabletType.REPLICA)
        obj = store.add(_fresh_shard())

        await controller.reconcile(obj.key)

        assert backend.wranglers[0].calls == [("init_shard_primary", T101, True)]
        assert "InitShardMaster" in sink.reasons()

    @pytest.mark.asyncio
    async def test_connection_is_shared(self, controller, store, topo, backend):
        topo.add_shard()
        obj = store.add(_fresh_shard())

        await controller.reconcile(obj.key)
        await controller.reconcile(obj.key)

        assert len(backend.opened) == 1
        assert len(controller.pool) == 1

    @pytest.mark.asyncio
    async def test_topology_connect_failure(self, controller, store, backend, sink, resync):
        backend.fail = ConnectionRefusedError("etcd:2379")
        obj = store.add(_healthy_shard())

        result = await controller.reconcile(obj.key)

        assert sink.reasons() == ["TopoConnectFailed"]
        assert result.requeue_after == REQUEUE_DELAY
        assert result.error is None
        # Resync still scheduled so the shard is retried after the lockserver recovers.
        assert resync.keys == [obj.key]

    @pytest.mark.asyncio
    async def test_store_failure(self, controller, store, backend):
        class Broken(RuntimeError):
            pass

        async def broken_get(kind, key):
            raise Broken("apiserver unavailable")

        store.get = broken_get

        result = await controller.reconcile(ObjectKey("default", "example-commerce-x-x"))

        assert isinstance(result.error, Broken)
        assert backend.opened == []
