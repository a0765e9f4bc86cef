"""
Continuous replication repair.

Two faults are fixed automatically:

- A primary whose MySQL came back read-only after a restart. MySQL does
  that on purpose, to wait for confirmation that it's still the primary;
  this pass provides the confirmation.
- A replica (or rdonly) pointed at the wrong primary address, typically
  because it missed the last reparent notification.

Detection runs without locks on every pass and is cheap when replication is
healthy. Only when something fixable is found is the shard lock taken, and
everything is re-checked under it before acting. Anything ambiguous (two
tablets claiming primary, a replica ahead of the primary) is left alone.

The read-only heuristic can't tell a restarted primary from one a human
froze on purpose. Set replication.recoverRestartedMaster to false to opt out.
"""

import asyncio
import logging

from vitess_operator import metrics
from vitess_operator.concurrency import all_succeed, any_true, fan_out
from vitess_operator.errors import ReplicationError
from vitess_operator.events import Recorder
from vitess_operator.replication.common import REPAIRABLE_TYPES, describe_error, is_read_only
from vitess_operator.replication.position import Position, decode_position
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.shard import VitessShard
from vitess_protocols import (
    ConditionStatus,
    PartialResultError,
    ShardLock,
    Tablet,
    TabletAlias,
    TabletType,
    WranglerProtocol,
)

logger = logging.getLogger(__name__)

REPAIR_REPLICATION_TIMEOUT = 15.0


async def repair_replication(
    shard: VitessShard, wr: WranglerProtocol, recorder: Recorder
) -> Result:
    """Detect fixable replication faults, and fix them under the shard lock."""
    builder = ResultBuilder()

    if shard.spec.using_external_datastore():
        return builder.result()
    if not shard.spec.replication.recover_restarted_master:
        return builder.result()
    if shard.status.has_master != ConditionStatus.TRUE:
        return builder.result()
    try:
        primary_alias = TabletAlias.parse(shard.status.master_alias)
    except ValueError:
        return builder.result()
    # A primary in a cell we don't manage is repaired by the operator that does.
    if not shard.spec.cell_in_cluster(primary_alias.cell):
        return builder.result()

    try:
        async with asyncio.timeout(REPAIR_REPLICATION_TIMEOUT):
            try:
                fixable = await can_repair_replication(shard, wr)
            except Exception as err:
                recorder.warning(
                    shard.obj,
                    "RepairCheckFailed",
                    "failed to check whether replication repair is needed: "
                    f"{describe_error(err)}",
                )
                return builder.result()
            if not fixable:
                return builder.result()

            async with wr.topo.lock_shard(shard.keyspace, shard.name, "RepairReplication") as lock:
                try:
                    await _repair_replication_locked(shard, wr, recorder, lock)
                except Exception as err:
                    recorder.warning(
                        shard.obj,
                        "RepairReplicationFailed",
                        f"failed to repair replication: {describe_error(err)}",
                    )
                    raise
    except Exception as err:
        return builder.error(err)
    return builder.result()


async def can_repair_replication(shard: VitessShard, wr: WranglerProtocol) -> bool:
    """
    Lock-free check for any fault this module knows how to fix.

    Raises:
        ReplicationError: If the shard is in a state we can't reason about.
    """
    if not shard.status.master_alias:
        raise ReplicationError(shard.keyspace, shard.name, "no primary for shard")
    try:
        primary_alias = TabletAlias.parse(shard.status.master_alias)
    except ValueError as err:
        raise ReplicationError(shard.keyspace, shard.name, f"invalid primary alias: {err}") from err

    try:
        primary = await wr.topo.get_tablet(primary_alias)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to get record for primary tablet {primary_alias}: {err}",
        ) from err
    _check_primary_type(shard, primary)

    try:
        if await is_read_only(wr.tmc, primary):
            return True
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to execute query against primary tablet {primary_alias}: {err}",
        ) from err

    # Tablets in an unreachable cell are checked again on the next poll.
    tablets = await _tablet_map_allow_partial(shard, wr)

    async def wrong_source(tablet: Tablet) -> bool:
        status = await wr.tmc.replication_status(tablet)
        return status.source_addr != primary.mysql_addr

    return await any_true(
        [
            wrong_source(tablet)
            for tablet in tablets.values()
            if should_check_tablet(tablet, primary)
        ],
        timeout=REPAIR_REPLICATION_TIMEOUT,
    )


async def _repair_replication_locked(
    shard: VitessShard, wr: WranglerProtocol, recorder: Recorder, lock: ShardLock
) -> None:
    # State may have changed since the lock-free check.
    shard_info = await wr.topo.get_shard(shard.keyspace, shard.name)
    if not shard_info.has_primary():
        raise ReplicationError(shard.keyspace, shard.name, "shard has no primary")
    primary_alias = shard_info.primary_alias

    try:
        primary = await wr.topo.get_tablet(primary_alias)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to get tablet record for primary {primary_alias}: {err}",
        ) from err
    _check_primary_type(shard, primary)

    try:
        read_only = await is_read_only(wr.tmc, primary)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to execute query against primary tablet {primary_alias}: {err}",
        ) from err
    if read_only:
        await recover_restarted_primary(shard, wr, recorder, lock, primary)

    tablets = await _tablet_map_allow_partial(shard, wr)
    to_check = {
        alias: tablet for alias, tablet in tablets.items() if should_check_tablet(tablet, primary)
    }

    async def repoint(tablet: Tablet) -> None:
        # Tablets whose status can't be read, or that have no replication
        # configured, are left to fix themselves.
        try:
            status = await wr.tmc.replication_status(tablet)
        except Exception:
            return
        if status.source_addr == primary.mysql_addr:
            return

        # Rdonly replication may be stopped on purpose (e.g. for a diff).
        force_start = tablet.type == TabletType.REPLICA
        err: Exception | None = None
        try:
            await wr.tmc.set_replication_source(
                tablet, primary.alias, force_start_replication=force_start
            )
        except Exception as exc:
            err = exc
            logger.warning(
                "failed to reparent tablet %s to primary %s: %s",
                tablet.alias,
                primary.alias,
                describe_error(exc),
            )
        metrics.record_shard_event(
            metrics.REPARENT_TABLET_COUNT, shard.cluster, shard.keyspace, shard.name, err
        )
        # Still a Warning: a tablet with the wrong primary address isn't Normal.
        recorder.warning(
            shard.obj,
            "ReparentTablet",
            f"reparented tablet {tablet.alias} to current primary {primary.alias}",
        )

    await fan_out(to_check, repoint, timeout=REPAIR_REPLICATION_TIMEOUT)


async def recover_restarted_primary(
    shard: VitessShard,
    wr: WranglerProtocol,
    recorder: Recorder,
    lock: ShardLock,
    primary: Tablet,
) -> None:
    """
    Set a read-only primary back to read-write, if it's provably still primary.

    Requires every tablet record to be visible, no other tablet claiming
    primary, and no replica ahead of the primary's position.

    Raises:
        ReplicationError: If any precondition fails.
    """
    try:
        tablets = await wr.topo.get_tablet_map_for_shard(shard.keyspace, shard.name)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to recover restarted primary: failed to get tablet map for shard: {err}",
        ) from err

    for alias in sorted(tablets):
        tablet = tablets[alias]
        if tablet.type == TabletType.PRIMARY and tablet.alias != primary.alias:
            raise ReplicationError(
                shard.keyspace,
                shard.name,
                f"failed to recover restarted primary: tablet {alias} also claims to be primary",
            )

    try:
        primary_position = decode_position(await wr.tmc.primary_position(primary))
    except Exception as err:
        raise ReplicationError(
            shard.keyspace, shard.name, f"can't get primary position: {err}"
        ) from err

    await check_replica_positions(shard, wr, tablets, primary_position)

    lock.check()

    err: Exception | None = None
    try:
        await wr.tmc.set_read_write(primary)
    except Exception as exc:
        err = exc
    metrics.record_shard_event(
        metrics.RECOVER_RESTARTED_PRIMARY_COUNT, shard.cluster, shard.keyspace, shard.name, err
    )
    if err is not None:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"failed to recover restarted primary: failed to set primary read-write: {err}",
        ) from err

    # Still a Warning: a primary that restarted isn't Normal.
    recorder.warning(
        shard.obj, "RecoverPrimary", f"recovered restarted primary tablet {primary.alias}"
    )


async def check_replica_positions(
    shard: VitessShard,
    wr: WranglerProtocol,
    tablets: dict[str, Tablet],
    primary_position: Position,
) -> None:
    """
    Require every replica and rdonly tablet to be at or behind primary_position.

    Raises:
        ReplicationError: If a tablet is ahead, or its position is unknown.
    """

    async def not_ahead(alias: str, tablet: Tablet) -> None:
        # primary_position() reports the executed GTID set even when the
        # tablet has no replication configured.
        try:
            position = decode_position(await wr.tmc.primary_position(tablet))
        except Exception as err:
            raise ReplicationError(
                shard.keyspace,
                shard.name,
                f"can't get replication position of tablet {alias}: {err}",
            ) from err
        if not primary_position.at_least(position):
            raise ReplicationError(
                shard.keyspace,
                shard.name,
                f"tablet {alias} is ahead of the primary: {position} > {primary_position}",
            )

    await all_succeed(
        [
            not_ahead(alias, tablet)
            for alias, tablet in sorted(tablets.items())
            if tablet.type in REPAIRABLE_TYPES
        ],
        timeout=REPAIR_REPLICATION_TIMEOUT,
    )


def should_check_tablet(tablet: Tablet, primary: Tablet) -> bool:
    """Whether tablet is a replica or rdonly that isn't also the recorded primary."""
    if tablet.type not in REPAIRABLE_TYPES:
        return False
    # Repointing it would make it replicate from itself.
    return tablet.alias != primary.alias


def _check_primary_type(shard: VitessShard, primary: Tablet) -> None:
    if primary.type != TabletType.PRIMARY:
        raise ReplicationError(
            shard.keyspace,
            shard.name,
            f"shard record has tablet {primary.alias} as the primary, "
            "but the tablet is not of type primary",
        )


async def _tablet_map_allow_partial(shard: VitessShard, wr: WranglerProtocol) -> dict[str, Tablet]:
    try:
        return await wr.topo.get_tablet_map_for_shard(shard.keyspace, shard.name)
    except PartialResultError as err:
        logger.info("checking partial tablet map of %r: %s", shard, err)
        return dict(err.partial)
    except Exception as err:
        raise ReplicationError(
            shard.keyspace, shard.name, f"failed to get tablet map for shard: {err}"
        ) from err
