"""
Primary election for a fresh shard on local storage.

A shard whose tablets all started empty needs one tablet promoted and the
rest pointed at it. This is only safe when the shard has provably never been
initialized: resetting replication on a previously used database would erase
its GTID history and invalidate every existing backup. So before electing,
every tablet must be visible, none may claim primary or be restoring, and
each must report that replication was never configured and that the
keyspace database does not exist.

Shards with backups enabled are bootstrapped from an initial backup instead
(see init_restored_shard), and external datastores are handled by
tablet_externally_reparent.
"""

import asyncio
import logging

from vitess_operator.concurrency import all_succeed
from vitess_operator.events import Recorder
from vitess_operator.errors import ReplicationError
from vitess_operator.replication.common import (
    REQUEUE_DELAY,
    database_exists,
    describe_error,
    status_type,
)
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import VitessShard
from vitess_protocols import (
    ConditionStatus,
    NotReplicaError,
    TabletAlias,
    TabletType,
    WranglerProtocol,
)

logger = logging.getLogger(__name__)

INIT_SHARD_PRIMARY_TIMEOUT = 15.0


async def init_shard_primary(
    shard: VitessShard, wr: WranglerProtocol, recorder: Recorder
) -> Result:
    """Elect the first primary of an uninitialized shard, if it's safe to."""
    builder = ResultBuilder()

    if shard.spec.using_external_datastore() or shard.spec.backups_enabled():
        return builder.result()

    if not _ready_for_primary(shard, recorder, builder):
        return builder.result()

    candidate: TabletAlias | None = None
    aliases: list[TabletAlias] = []
    for name in sorted(shard.status.tablets):
        try:
            alias = TabletAlias.parse(name)
        except ValueError as err:
            recorder.warning(shard.obj, "InternalError", f"can't parse tablet alias {name!r}: {err}")
            return builder.result()
        aliases.append(alias)
        if candidate is None and status_type(shard.status.tablets[name].type) == TabletType.REPLICA:
            candidate = alias

    try:
        await all_succeed(
            [_ready_for_shard_init(shard, wr, alias) for alias in aliases],
            timeout=INIT_SHARD_PRIMARY_TIMEOUT,
        )
    except Exception as err:
        recorder.warning(
            shard.obj, "InitShardBlocked", f"can't initialize shard: {describe_error(err)}"
        )
        return builder.requeue_after(REQUEUE_DELAY)

    if candidate is None:
        # Nothing to retry until someone adds a replica pool.
        recorder.warning(
            shard.obj,
            "InitShardBlocked",
            "can't initialize shard: no primary-eligible tablets (type 'replica') deployed",
        )
        return builder.result()

    try:
        async with asyncio.timeout(INIT_SHARD_PRIMARY_TIMEOUT):
            await wr.init_shard_primary(
                shard.keyspace,
                shard.name,
                candidate,
                force=True,
                wait_replicas_timeout=INIT_SHARD_PRIMARY_TIMEOUT,
            )
    except Exception as err:
        recorder.warning(
            shard.obj, "InitShardFailed", f"failed to initialize shard: {describe_error(err)}"
        )
        return builder.requeue_after(REQUEUE_DELAY)

    recorder.normal(
        shard.obj, "InitShardMaster", f"initialized shard replication with primary tablet {candidate}"
    )
    return builder.result()


def _ready_for_primary(shard: VitessShard, recorder: Recorder, builder: ResultBuilder) -> bool:
    """Checks that only need the shard status. May request a requeue on builder."""
    has_master = shard.status.has_master
    if has_master == ConditionStatus.TRUE:
        return False
    if has_master == ConditionStatus.UNKNOWN:
        # Topology state unknown; not safe to act.
        builder.requeue_after(REQUEUE_DELAY)
        return False

    if not shard.status.tablets:
        return False

    for name in sorted(shard.status.tablets):
        tablet = shard.status.tablets[name]
        # Tablets can't be Ready before the shard is initialized, so Running is
        # the most we can ask for. Pod changes trigger a reconcile on their own.
        if tablet.running != ConditionStatus.TRUE:
            recorder.normal(
                shard.obj, "InitShardWaiting", f"can't initialize shard: tablet {name} is not running"
            )
            return False

        tablet_type = status_type(tablet.type)
        if tablet_type == TabletType.PRIMARY:
            recorder.warning(
                shard.obj,
                "InitShardBlocked",
                f"can't initialize shard: tablet {name} is already claiming to be primary",
            )
            return False
        if tablet_type == TabletType.UNKNOWN:
            recorder.normal(
                shard.obj,
                "InitShardWaiting",
                f"can't initialize shard: tablet {name} not registered in topology",
            )
            # Registration comes from topology, which doesn't notify us.
            builder.requeue_after(REQUEUE_DELAY)
            return False
        if tablet_type == TabletType.RESTORE:
            # Restores take a while; the periodic resync rechecks.
            recorder.normal(
                shard.obj, "InitShardWaiting", f"can't initialize shard: tablet {name} is restoring"
            )
            return False
    return True


async def _ready_for_shard_init(
    shard: VitessShard, wr: WranglerProtocol, alias: TabletAlias
) -> None:
    """
    Verify one tablet has never been initialized.

    Raises:
        ReplicationError: If the tablet shows signs of previous use.
        Exception: If the tablet could not be inspected.
    """
    try:
        tablet = await wr.topo.get_tablet(alias)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace, shard.name, f"failed to get topology record for tablet {alias}: {err}"
        ) from err

    try:
        await wr.tmc.replication_status(tablet)
    except NotReplicaError:
        pass
    except Exception as err:
        raise ReplicationError(
            shard.keyspace, shard.name, f"failed to get replication status for tablet {alias}: {err}"
        ) from err
    else:
        raise ReplicationError(
            shard.keyspace, shard.name, f"replication was previously configured on tablet {alias}"
        )

    try:
        exists = await database_exists(wr.tmc, tablet)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"couldn't determine whether tablet {alias} database exists: {err}",
        ) from err
    if exists:
        # Probably restored from a backup; re-initializing would reset positions.
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"the database for keyspace {tablet.keyspace} was already created on tablet {alias}; "
            "not safe to assume shard is uninitialized",
        )
    logger.debug("tablet %s is ready for shard init", alias)
