"""
MySQL replication positions.

Tablets report positions as flavor-prefixed GTID sets, for example:

    MySQL56/3e11fa47-71ca-11e1-9e33-c80aa9429562:1-5:7,a1b2...:1-3

Only GTID-set comparison is needed here: "is position A at least as far
ahead as position B", which holds when A's GTID set contains all of B's.
"""

from dataclasses import dataclass, field

_FLAVOR_SEPARATOR = "/"


@dataclass(frozen=True)
class Position:
    """
    A decoded GTID set.

    Attributes:
        gtids: Executed transaction intervals per server uuid. Intervals are
            inclusive, sorted and non-overlapping.
    """

    gtids: dict[str, tuple[tuple[int, int], ...]] = field(default_factory=dict)

    def is_zero(self) -> bool:
        return not self.gtids

    def at_least(self, other: "Position") -> bool:
        """Whether this position contains every transaction of other."""
        for uuid, intervals in other.gtids.items():
            mine = self.gtids.get(uuid, ())
            for start, end in intervals:
                if not any(m_start <= start and end <= m_end for m_start, m_end in mine):
                    return False
        return True

    def __str__(self) -> str:
        parts = []
        for uuid in sorted(self.gtids):
            ranges = ":".join(
                str(s) if s == e else f"{s}-{e}" for s, e in self.gtids[uuid]
            )
            parts.append(f"{uuid}:{ranges}")
        return "MySQL56/" + ",".join(parts)


def _merge(intervals: list[tuple[int, int]]) -> tuple[tuple[int, int], ...]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return tuple(merged)


def decode_position(value: str) -> Position:
    """
    Decode a position string, with or without its "MySQL56/" flavor prefix.

    An empty string decodes to the zero position.

    Raises:
        ValueError: If the GTID set is malformed.
    """
    _, sep, gtid_set = value.partition(_FLAVOR_SEPARATOR)
    if not sep:
        gtid_set = value
    gtid_set = gtid_set.strip()
    if not gtid_set:
        return Position()

    gtids: dict[str, list[tuple[int, int]]] = {}
    for entry in gtid_set.split(","):
        entry = entry.strip()
        if not entry:
            continue
        uuid, *ranges = entry.split(":")
        if not uuid or not ranges:
            raise ValueError(f"invalid GTID set entry: {entry!r}")
        for rng in ranges:
            start, dash, end = rng.partition("-")
            try:
                lo = int(start)
                hi = int(end) if dash else lo
            except ValueError:
                raise ValueError(f"invalid GTID interval {rng!r} in {entry!r}") from None
            if hi < lo:
                raise ValueError(f"invalid GTID interval {rng!r} in {entry!r}")
            gtids.setdefault(uuid.lower(), []).append((lo, hi))

    return Position({uuid: _merge(intervals) for uuid, intervals in gtids.items()})
