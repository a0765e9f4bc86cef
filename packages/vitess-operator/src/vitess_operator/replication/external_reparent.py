"""
Primary declaration for shards backed by an external datastore.

Replication of an external datastore is managed by its provider, so the
operator never promotes anything. It only tells Vitess which tablet fronts
the writable server, by sending TabletExternallyReparented to the first
running tablet of the external primary pool. Sending it is always safe; if
the tablet isn't ready yet the call fails and is retried.
"""

import asyncio

from vitess_operator.events import Recorder
from vitess_operator.replication.common import REQUEUE_DELAY, describe_error
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import EXTERNAL_PRIMARY_POOL, VitessShard
from vitess_protocols import ConditionStatus, TabletAlias, WranglerProtocol

EXTERNAL_REPARENT_TIMEOUT = 30.0


async def tablet_externally_reparent(
    shard: VitessShard, wr: WranglerProtocol, recorder: Recorder
) -> Result:
    """Declare the external primary tablet as shard primary if none is recorded."""
    builder = ResultBuilder()

    if not shard.spec.using_external_datastore():
        return builder.result()
    if shard.status.has_master == ConditionStatus.TRUE:
        return builder.result()

    try:
        async with asyncio.timeout(EXTERNAL_REPARENT_TIMEOUT):
            # The status may lag topology; don't act if a primary was recorded since.
            try:
                shard_info = await wr.topo.get_shard(shard.keyspace, shard.name)
            except Exception:
                shard_info = None
            if shard_info is not None and shard_info.has_primary():
                return builder.result()

            candidate: TabletAlias | None = None
            for name in sorted(shard.status.tablets):
                tablet = shard.status.tablets[name]
                if tablet.pool_type != EXTERNAL_PRIMARY_POOL:
                    continue
                if tablet.running != ConditionStatus.TRUE:
                    continue
                try:
                    candidate = TabletAlias.parse(name)
                except ValueError as err:
                    recorder.warning(
                        shard.obj, "InternalError", f"can't parse tablet alias {name!r}: {err}"
                    )
                    return builder.result()
                break

            if candidate is None:
                # Nothing to retry until tablet status changes.
                recorder.warning(
                    shard.obj,
                    "ExternalPrimaryShardBlocked",
                    "can't externally reparent shard: no primary-eligible tablets "
                    f"(pool type '{EXTERNAL_PRIMARY_POOL}') deployed",
                )
                return builder.result()

            await wr.tablet_externally_reparented(candidate)
    except Exception as err:
        recorder.warning(
            shard.obj,
            "TabletExternallyReparentedFailed",
            f"failed to externally reparent shard: {describe_error(err)}",
        )
        return builder.requeue_after(REQUEUE_DELAY)

    recorder.normal(
        shard.obj, "TabletExternallyReparented", f"Externally reparented tablet {candidate}"
    )
    return builder.result()
