"""
Primary election for a shard restored from a cold backup.

When every tablet of a shard has just come up from the same backup, none of
them is primary and all of them hold data. The shard is bootstrapped by:

1. Waiting for the initial backup to exist and for a primary-eligible tablet
   to be running.
2. Taking the shard lock, then re-reading the shard record and tablet map.
3. If exactly one tablet already claims primary (a previous attempt promoted
   it but didn't record it), fixing the shard record.
4. Otherwise asking every tablet for its restore state and position, promoting
   the replica with the highest position, and recording it.
5. Pointing the other restored tablets at the new primary, best-effort.

Shards with backups enabled are always bootstrapped this way: the first
backup is seeded externally, which makes a brand new shard a special case
of a restored one.
"""

import asyncio
import logging
from dataclasses import dataclass

from vitess_operator.concurrency import fan_out
from vitess_operator.events import Recorder
from vitess_operator.errors import ReplicationError
from vitess_operator.replication.common import (
    REQUEUE_DELAY,
    database_exists,
    describe_error,
    status_type,
)
from vitess_operator.replication.position import Position, decode_position
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import VitessShard
from vitess_protocols import (
    ConditionStatus,
    NotReplicaError,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletManagerClientProtocol,
    TabletType,
    WranglerProtocol,
)

logger = logging.getLogger(__name__)

INIT_RESTORED_SHARD_TIMEOUT = 15.0
TABLET_STATUS_CHECK_TIMEOUT = 5.0


@dataclass
class TabletRestoreStatus:
    """
    What a tablet reported when asked whether it finished restoring.

    Attributes:
        tablet: The tablet record.
        replication_configured: Whether SHOW REPLICA STATUS returned a row.
        position: Executed GTID position.
        database_exists: Whether the keyspace database exists (restore done).
    """

    tablet: Tablet
    replication_configured: bool = False
    position: Position | None = None
    database_exists: bool = False


async def init_restored_shard(
    shard: VitessShard, wr: WranglerProtocol, recorder: Recorder
) -> Result:
    """Elect the first primary of a shard whose tablets were restored from backup."""
    builder = ResultBuilder()

    if not shard.spec.backups_enabled() or shard.spec.using_external_datastore():
        return builder.result()

    if shard.status.has_master == ConditionStatus.TRUE:
        return builder.result()
    if shard.status.has_master == ConditionStatus.UNKNOWN:
        return builder.requeue_after(REQUEUE_DELAY)

    if shard.status.has_initial_backup != ConditionStatus.TRUE:
        # The backup status change will trigger another reconcile.
        recorder.normal(
            shard.obj,
            "InitShardWaiting",
            "can't initialize shard: waiting for initial backup to complete",
        )
        return builder.result()

    # A tablet that's already primary counts: a previous attempt may have
    # promoted it without updating the shard record.
    eligible = (TabletType.REPLICA, TabletType.PRIMARY)
    if not any(
        t.running == ConditionStatus.TRUE and status_type(t.type) in eligible
        for t in shard.status.tablets.values()
    ):
        recorder.normal(
            shard.obj,
            "InitShardWaiting",
            "can't initialize shard: no primary-eligible replica tablet is ready to become primary",
        )
        return builder.requeue_after(REQUEUE_DELAY)

    try:
        async with asyncio.timeout(INIT_RESTORED_SHARD_TIMEOUT):
            primary = await elect_initial_shard_primary(shard.keyspace, shard.name, wr)
    except Exception as err:
        recorder.warning(
            shard.obj, "InitShardFailed", f"failed to initialize shard: {describe_error(err)}"
        )
        return builder.requeue_after(REQUEUE_DELAY)

    recorder.normal(
        shard.obj, "InitShardMaster", f"initialized shard replication with primary tablet {primary}"
    )
    return builder.result()


async def elect_initial_shard_primary(
    keyspace: str, shard_name: str, wr: WranglerProtocol
) -> TabletAlias:
    """
    Under the shard lock, promote the most advanced restored replica.

    Returns:
        Alias of the tablet that is primary afterwards.

    Raises:
        ReplicationError: If the shard state is ambiguous or no candidate exists.
        LockLostError: If the shard lock was lost before a mutation.
    """
    async with wr.topo.lock_shard(keyspace, shard_name, "electShardMaster") as lock:
        shard_info = await wr.topo.get_shard(keyspace, shard_name)
        if shard_info.has_primary():
            raise ReplicationError(
                keyspace,
                shard_name,
                f"can't elect primary: shard already has a primary: {shard_info.primary_alias}",
            )

        try:
            tablets = await wr.topo.get_tablet_map_for_shard(keyspace, shard_name)
        except Exception as err:
            raise ReplicationError(
                keyspace, shard_name, f"can't get tablets for shard: {err}"
            ) from err

        existing: Tablet | None = None
        for name in sorted(tablets):
            tablet = tablets[name]
            if tablet.type != TabletType.PRIMARY:
                continue
            if existing is not None:
                raise ReplicationError(
                    keyspace,
                    shard_name,
                    "can't elect primary: shard has multiple tablets that claim to be primary: "
                    f"{existing.alias}, {name}",
                )
            existing = tablet

        if existing is not None:
            lock.check()
            await wr.topo.update_shard_fields(
                keyspace, shard_name, _set_primary(existing.alias)
            )
            logger.info(
                "fixed shard record %s/%s for already-promoted primary %s",
                keyspace,
                shard_name,
                existing.alias,
            )
            return existing.alias

        outcomes = await fan_out(
            tablets,
            lambda tablet: get_tablet_restore_status(wr.tmc, tablet),
            timeout=TABLET_STATUS_CHECK_TIMEOUT,
        )

        candidate: TabletRestoreStatus | None = None
        restored: list[TabletRestoreStatus] = []
        for name in sorted(outcomes):
            status = outcomes[name]
            if isinstance(status, BaseException):
                logger.info("excluding tablet %s from election: %s", name, describe_error(status))
                continue
            if not status.database_exists:
                # Still restoring.
                continue
            if status.tablet.type == TabletType.REPLICA:
                restored.append(status)
                if candidate is None or not candidate.position.at_least(status.position):
                    candidate = status
            elif status.tablet.type == TabletType.RDONLY:
                restored.append(status)

        if candidate is None:
            raise ReplicationError(
                keyspace, shard_name, "can't elect primary: didn't find any valid candidate"
            )

        new_primary = candidate.tablet
        lock.check()
        try:
            await wr.tmc.promote_replica(new_primary)
        except Exception as err:
            raise ReplicationError(
                keyspace,
                shard_name,
                f"failed to promote tablet {new_primary.alias} to primary: {err}",
            ) from err
        await wr.topo.update_shard_fields(keyspace, shard_name, _set_primary(new_primary.alias))

        others = {
            str(s.tablet.alias): s.tablet for s in restored if s.tablet.alias != new_primary.alias
        }
        reparented = await fan_out(
            others,
            lambda tablet: wr.tmc.set_replication_source(
                tablet, new_primary.alias, force_start_replication=True
            ),
            timeout=TABLET_STATUS_CHECK_TIMEOUT,
        )
        for name, outcome in sorted(reparented.items()):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "best-effort configuration of replication for tablet %s failed: %s",
                    name,
                    describe_error(outcome),
                )

        return new_primary.alias


async def get_tablet_restore_status(
    tmc: TabletManagerClientProtocol, tablet: Tablet
) -> TabletRestoreStatus:
    """
    Ask one tablet whether it finished restoring and how far it got.

    Raises:
        ReplicationError: If any of the probes failed.
    """
    status = TabletRestoreStatus(tablet=tablet)
    try:
        await tmc.replication_status(tablet)
        status.replication_configured = True
    except NotReplicaError:
        pass
    except Exception as err:
        raise ReplicationError(
            tablet.keyspace,
            tablet.shard,
            f"couldn't determine whether tablet {tablet.alias} has replication configured: {err}",
        ) from err

    try:
        status.position = decode_position(await tmc.primary_position(tablet))
    except Exception as err:
        raise ReplicationError(
            tablet.keyspace,
            tablet.shard,
            f"couldn't get replication position for tablet {tablet.alias}: {err}",
        ) from err

    try:
        status.database_exists = await database_exists(tmc, tablet)
    except Exception as err:
        raise ReplicationError(
            tablet.keyspace,
            tablet.shard,
            f"couldn't determine whether tablet {tablet.alias} database exists: {err}",
        ) from err
    return status


def _set_primary(alias: TabletAlias):
    def update(shard_info: ShardInfo) -> None:
        shard_info.primary_alias = alias

    return update
