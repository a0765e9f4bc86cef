"""
Shared probes and constants for the replication passes.

The probes run SQL through the tablet manager's DBA connection, the same way
a human would check a tablet by hand:
- database_exists: SHOW DATABASES contains the keyspace database
- is_read_only: SHOW VARIABLES LIKE 'read_only' is ON
"""

from vitess_protocols import Tablet, TabletManagerClientProtocol, TabletType

# Delay before re-polling state that comes from topology rather than the store.
REQUEUE_DELAY = 5.0

SHOW_DATABASES_QUERY = "SHOW DATABASES"
READ_ONLY_QUERY = "SHOW VARIABLES LIKE 'read_only'"

REPAIRABLE_TYPES = (TabletType.REPLICA, TabletType.RDONLY)


async def database_exists(tmc: TabletManagerClientProtocol, tablet: Tablet) -> bool:
    """
    Whether the tablet's main keyspace database exists.

    Raises:
        ValueError: If the tablet has no database name.
    """
    db_name = tablet.db_name
    if not db_name:
        raise ValueError("couldn't determine database name")
    result = await tmc.execute_fetch_as_dba(tablet, SHOW_DATABASES_QUERY, max_rows=10000)
    return any(row and row[0] == db_name for row in result.rows)


async def is_read_only(tmc: TabletManagerClientProtocol, tablet: Tablet) -> bool:
    """
    Whether the tablet's MySQL has read_only set.

    super_read_only also turns read_only on, so one variable covers both.

    Raises:
        ValueError: If MySQL did not report the variable.
    """
    result = await tmc.execute_fetch_as_dba(tablet, READ_ONLY_QUERY, max_rows=1)
    if len(result.rows) != 1:
        raise ValueError("no read_only variable in mysql")
    return result.rows[0][1] == "ON"


def status_type(value: str) -> TabletType:
    """Parse a tablet type as projected into shard status; unknown names map to UNKNOWN."""
    try:
        return TabletType.parse(value)
    except ValueError:
        return TabletType.UNKNOWN


def describe_error(err: BaseException) -> str:
    """Message for an event; TimeoutError and friends have an empty str()."""
    return str(err) or type(err).__name__
