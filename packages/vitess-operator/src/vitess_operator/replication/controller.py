"""
ShardReplicationController: keeps replication of one shard healthy.

Each reconcile of a VitessShard runs every replication pass in order and
merges their results:

1. init_shard_primary - elect the first primary of a fresh shard
2. tablet_externally_reparent - declare the primary of an external datastore
3. init_restored_shard - elect the first primary of a restored shard
4. repair_replication - fix read-only primaries and misdirected replicas
5. reconcile_drain - answer drain requests, reparenting if needed
6. reconcile_rollout - advance a rolling restart

Every pass decides for itself whether it applies, so running all of them
on every reconcile is cheap when the shard is healthy. A resync is always
scheduled, since topology changes don't produce store events.
"""

import logging

from vitess_operator import metrics
from vitess_operator.controller.resync import Resync
from vitess_operator.events import Recorder
from vitess_operator.replication.common import REQUEUE_DELAY, describe_error
from vitess_operator.replication.drain import reconcile_drain
from vitess_operator.replication.external_reparent import tablet_externally_reparent
from vitess_operator.replication.init_restored_shard import init_restored_shard
from vitess_operator.replication.init_shard_primary import init_shard_primary
from vitess_operator.replication.repair import repair_replication
from vitess_operator.replication.rollout import reconcile_rollout
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import KIND, VitessShard
from vitess_operator.toposerver import ConnPool
from vitess_protocols import NotFoundError, ObjectKey, ObjectStoreProtocol, TopoBackendProtocol

logger = logging.getLogger(__name__)


class ShardReplicationController:
    """
    Reconciles replication for VitessShard objects.

    Example:
        controller = ShardReplicationController(store, pool, backend, recorder)
        result = await controller.reconcile(ObjectKey("default", "commerce-x-x"))
    """

    def __init__(
        self,
        store: ObjectStoreProtocol,
        pool: ConnPool,
        backend: TopoBackendProtocol,
        recorder: Recorder,
        resync: Resync | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            store: Object store holding VitessShards and tablet Pods.
            pool: Shared topology connection pool.
            backend: Builds wranglers over pooled topology connections.
            recorder: Event recorder.
            resync: Schedules periodic re-reconciles, if given.
        """
        self.store = store
        self.pool = pool
        self.backend = backend
        self.recorder = recorder
        self.resync = resync

    async def reconcile(self, key: ObjectKey) -> Result:
        """Run every replication pass for one shard."""
        # Shards are resynced periodically, so this is noisy.
        logger.debug("Reconciling VitessShard replication %s", key)
        builder = ResultBuilder()

        try:
            obj = await self.store.get(KIND, key)
        except NotFoundError:
            # Deleted after the reconcile was requested.
            return builder.result()
        except Exception as err:
            return builder.error(err)

        shard = VitessShard(obj)

        # Wait for the shard controller to publish status for the latest spec.
        observed = shard.status.observed_generation
        if observed == 0 or observed != shard.generation:
            return builder.result()

        err: BaseException | None = None
        try:
            builder.merge(await self._reconcile_shard(shard))
            if self.resync is not None:
                self.resync.enqueue(key)
            result = builder.result()
            err = result.error
            return result
        except BaseException as exc:
            err = exc
            raise
        finally:
            metrics.record_shard_event(
                metrics.SHARD_RECONCILE_COUNT, shard.cluster, shard.keyspace, shard.name, err
            )

    async def _reconcile_shard(self, shard: VitessShard) -> Result:
        builder = ResultBuilder()
        params = shard.spec.global_lockserver.conn_params()
        try:
            conn = await self.pool.open(params)
        except Exception as err:
            self.recorder.warning(
                shard.obj,
                "TopoConnectFailed",
                f"failed to connect to global lockserver: {describe_error(err)}",
            )
            # Give the lockserver some time to come up.
            return builder.requeue_after(REQUEUE_DELAY)

        async with conn:
            wr = self.backend.wrangler(conn.topo)
            builder.merge(await init_shard_primary(shard, wr, self.recorder))
            builder.merge(await tablet_externally_reparent(shard, wr, self.recorder))
            builder.merge(await init_restored_shard(shard, wr, self.recorder))
            builder.merge(await repair_replication(shard, wr, self.recorder))
            builder.merge(await reconcile_drain(shard, wr, self.store, self.recorder))
            builder.merge(await reconcile_rollout(shard, self.store, self.recorder))
        return builder.result()
