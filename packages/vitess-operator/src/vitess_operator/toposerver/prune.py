"""
Pruning of shard records that are no longer desired.

A shard record is pruned when it exists in topology, is not in the desired
set, and is not being kept alive by a blocked turndown (an orphaned shard).
Deletion is recursive and idempotent: a record that is already gone counts
as removed.
"""

from vitess_operator.events import Recorder
from vitess_operator.results import Result, ResultBuilder
from vitess_protocols import NoNodeError, Object, OrphanStatus, TopoServerProtocol

TOPO_REQUEUE_DELAY = 5.0


def shards_to_prune(
    current: list[str],
    desired: set[str],
    orphaned: dict[str, OrphanStatus],
) -> list[str]:
    """Shards that exist but are neither desired nor orphaned, in input order."""
    return [name for name in current if name not in desired and name not in orphaned]


async def delete_shards(
    topo: TopoServerProtocol,
    recorder: Recorder,
    event_obj: Object,
    keyspace: str,
    shard_names: list[str],
) -> Result:
    """Recursively delete shard records, requeueing if any deletion failed."""
    builder = ResultBuilder()
    for name in shard_names:
        try:
            await topo.delete_shard(keyspace, name, recursive=True)
        except NoNodeError:
            pass
        except Exception as err:
            recorder.warning(
                event_obj,
                "TopoCleanupFailed",
                f"unable to remove shard {name} from topology: {err}",
            )
            builder.requeue_after(TOPO_REQUEUE_DELAY)
            continue
        recorder.normal(event_obj, "TopoCleanup", f"removed unwanted shard {name} from topology")
    return builder.result()


async def prune_shards(
    topo: TopoServerProtocol,
    recorder: Recorder,
    event_obj: Object,
    keyspace: str,
    desired: set[str],
    orphaned: dict[str, OrphanStatus] | None = None,
) -> Result:
    """Delete shard records of keyspace that exist in topology but aren't wanted."""
    builder = ResultBuilder()
    try:
        current = await topo.get_shard_names(keyspace)
    except Exception as err:
        recorder.warning(event_obj, "TopoListFailed", f"failed to list shards in topology: {err}")
        return builder.requeue_after(TOPO_REQUEUE_DELAY)

    candidates = shards_to_prune(current, desired, orphaned or {})
    builder.merge(await delete_shards(topo, recorder, event_obj, keyspace, candidates))
    return builder.result()
