"""
Tests for the shared protocol types.

Verifies parsing of tablet identities and types, and that the protocol
classes recognize conforming implementations.
"""

import pytest

from vitess_protocols import (
    ConnParams,
    EventRecorderProtocol,
    Object,
    ObjectKey,
    ObjectMeta,
    ReplicationStatus,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletType,
    TopoBackendProtocol,
)


class TestTabletAlias:
    def test_parse_and_format(self):
        alias = TabletAlias.parse("zone1-0000000101")
        assert alias == TabletAlias("zone1", 101)
        assert str(alias) == "zone1-0000000101"

    def test_cell_with_dashes(self):
        assert TabletAlias.parse("us-east-1a-0000000101") == TabletAlias("us-east-1a", 101)

    @pytest.mark.parametrize("value", ["", "zone1", "zone1-", "-101", "zone1-abc"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            TabletAlias.parse(value)

    def test_ordering(self):
        aliases = [TabletAlias("zone2", 1), TabletAlias("zone1", 200), TabletAlias("zone1", 101)]
        assert sorted(aliases) == [
            TabletAlias("zone1", 101),
            TabletAlias("zone1", 200),
            TabletAlias("zone2", 1),
        ]


class TestTabletType:
    def test_legacy_names(self):
        assert TabletType.parse("MASTER") == TabletType.PRIMARY
        assert TabletType.parse("batch") == TabletType.RDONLY

    def test_empty_is_unknown(self):
        assert TabletType.parse("") == TabletType.UNKNOWN

    def test_invalid(self):
        with pytest.raises(ValueError):
            TabletType.parse("leader")


class TestRecords:
    def test_tablet_addresses(self):
        tablet = Tablet(
            alias=TabletAlias("zone1", 101),
            keyspace="commerce",
            shard="-",
            mysql_hostname="db",
            mysql_port=3306,
        )
        assert tablet.mysql_addr == "db:3306"
        assert tablet.db_name == "vt_commerce"

    def test_db_name_override(self):
        tablet = Tablet(alias=TabletAlias("zone1", 1), keyspace="commerce", shard="-", db_name_override="commerce")
        assert tablet.db_name == "commerce"

    def test_replication_source(self):
        status = ReplicationStatus(source_host="db", source_port=3306)
        assert status.source_addr == "db:3306"

    def test_shard_primary(self):
        info = ShardInfo("commerce", "-")
        assert not info.has_primary()
        info.primary_alias = TabletAlias("zone1", 101)
        assert info.has_primary()

    def test_object_key_and_copy(self):
        obj = Object(kind="Pod", metadata=ObjectMeta(name="a", namespace="default", labels={"x": "1"}))
        copy = obj.deepcopy()
        copy.labels["x"] = "2"

        assert obj.key == ObjectKey("default", "a")
        assert str(obj.key) == "default/a"
        assert obj.labels["x"] == "1"

    def test_conn_params_are_hashable(self):
        a = ConnParams("etcd2", "etcd:2379", "/vitess/global")
        b = ConnParams("etcd2", "etcd:2379", "/vitess/global")
        assert {a: 1}[b] == 1


class TestProtocolCompliance:
    """Structural checks used by the operator when loading plugins."""

    def test_event_recorder(self):
        class Sink:
            def event(self, obj, event_type, reason, message):
                pass

        assert isinstance(Sink(), EventRecorderProtocol)

    def test_topo_backend(self):
        class Backend:
            async def open(self, params):
                raise NotImplementedError

            def wrangler(self, topo):
                raise NotImplementedError

        assert isinstance(Backend(), TopoBackendProtocol)
        assert not isinstance(object(), TopoBackendProtocol)
