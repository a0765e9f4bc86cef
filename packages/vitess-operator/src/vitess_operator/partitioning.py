"""
Key range partitioning of the keyspace ID space.

A shard owns the half-open range [start, end) of 64-bit keyspace IDs,
expressed as big-endian byte prefixes. An empty start or end is unbounded.

equal_key_ranges() is deterministic: deployed shards are identified by the
ranges it returns, so its output for a given number of parts must never
change. Changing it would cause the operator to delete shards.
"""

from dataclasses import dataclass

_MAX_UINT64 = (1 << 64) - 1


@dataclass(frozen=True)
class KeyRange:
    """
    Half-open range [start, end) of keyspace IDs.

    Attributes:
        start: Inclusive lower bound, b"" when unbounded.
        end: Exclusive upper bound, b"" when unbounded.
    """

    start: bytes = b""
    end: bytes = b""

    def name(self) -> str:
        """Shard name in Vitess "start-end" hex form, e.g. "-80" or "80-"."""
        return f"{self.start.hex()}-{self.end.hex()}"

    def safe_name(self) -> str:
        """Shard name usable in object names and labels ("x" marks an unbounded side)."""
        start = self.start.hex() or "x"
        end = self.end.hex() or "x"
        return f"{start}-{end}"

    def contains(self, keyspace_id: bytes) -> bool:
        if self.start and keyspace_id < self.start:
            return False
        if self.end and keyspace_id >= self.end:
            return False
        return True

    @classmethod
    def parse(cls, name: str) -> "KeyRange":
        """
        Parse a shard name such as "-80", "40-c0" or "-".

        Raises:
            ValueError: If the name is not "hex-hex".
        """
        if name == "0":
            return cls()
        start, sep, end = name.partition("-")
        if not sep:
            raise ValueError(f"invalid key range: {name!r}")
        return cls(bytes.fromhex(start), bytes.fromhex(end))


def equal_key_ranges(parts: int) -> list[KeyRange]:
    """
    Partition the keyspace ID space into a number of (approximately) equal parts.

    Powers of 2 split exactly. For other counts, cut points are computed
    with 64-bit precision and then truncated to the fewest bytes that can
    distinguish all parts, which spreads the remainder uniformly.

    Args:
        parts: Number of shards. Values <= 1 return the single unsharded range.

    Returns:
        List of `parts` ranges tiling the whole space in order.
    """
    if parts <= 1:
        return [KeyRange()]

    # Bytes needed to represent 0 through parts-1.
    num_bytes = 0
    q = parts - 1
    while q:
        num_bytes += 1
        q >>= 8

    # 2^64 / parts without overflowing 64 bits.
    interval = (_MAX_UINT64 - parts + 1) // parts + 1

    ranges: list[KeyRange] = []
    start = b""
    for i in range(parts):
        end = b""
        if i < parts - 1:
            end = ((i + 1) * interval).to_bytes(8, "big")[:num_bytes]
        ranges.append(KeyRange(start, end))
        start = end
    return ranges


def equal_shard_names(parts: int) -> list[str]:
    """Shard names of equal_key_ranges(parts)."""
    return [kr.name() for kr in equal_key_ranges(parts)]


def sort_key_ranges(ranges: list[KeyRange]) -> list[KeyRange]:
    """Return ranges sorted by start, with an unbounded end after any bounded one."""
    return sorted(ranges, key=lambda kr: (kr.start, kr.end == b"", kr.end))
