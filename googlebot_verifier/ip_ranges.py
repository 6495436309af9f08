"""
Published crawler range matching.

Addresses and CIDR blocks are parsed into plain integers (32-bit for IPv4,
128-bit for IPv6) once, and membership is a linear scan of prefix
comparisons. Nothing in this module performs I/O or raises on bad input:
unparseable text simply never matches.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .time_utils import cache_age, now

logger = logging.getLogger(__name__)

IPV4_BITS = 32
IPV6_BITS = 128
IPV4_ALL_ONES = (1 << IPV4_BITS) - 1


def parse_ipv4(text: str) -> Optional[int]:
    """Dotted-quad text to an unsigned 32-bit integer, or None."""
    if not isinstance(text, str):
        return None
    try:
        return int(ipaddress.IPv4Address(text))
    except ValueError:
        return None


def parse_ipv6(text: str) -> Optional[int]:
    """Colon-separated text (``::`` allowed once) to an unsigned 128-bit integer, or None."""
    if not isinstance(text, str):
        return None
    try:
        return int(ipaddress.IPv6Address(text))
    except ValueError:
        return None


def address_family(text: str) -> Optional[int]:
    """4 or 6 based on syntax alone; None when the text looks like neither."""
    if not isinstance(text, str):
        return None
    if ":" in text:
        return 6
    if "." in text:
        return 4
    return None


@dataclass(frozen=True)
class CidrBlock:
    """One published range. ``network`` is stored with host bits cleared."""

    network: int
    prefix_length: int
    version: int

    def contains(self, value: int) -> bool:
        if self.version == 4:
            if self.prefix_length == 0:
                mask = 0
            else:
                mask = (IPV4_ALL_ONES << (IPV4_BITS - self.prefix_length)) & IPV4_ALL_ONES
            return (value & mask) == self.network

        if self.prefix_length == 0:
            return True
        shift = IPV6_BITS - self.prefix_length
        return (value >> shift) == (self.network >> shift)

    def __str__(self) -> str:
        if self.version == 4:
            return f"{ipaddress.IPv4Address(self.network)}/{self.prefix_length}"
        return f"{ipaddress.IPv6Address(self.network)}/{self.prefix_length}"


RangeSet = Tuple[CidrBlock, ...]


def parse_cidr(text: str) -> Optional[CidrBlock]:
    """
    Parse ``network/prefix`` text into a CidrBlock.

    Returns None for anything malformed: missing or non-numeric prefix,
    prefix out of range for the family, or an unparseable network address.
    """
    if not isinstance(text, str):
        return None

    network_text, sep, prefix_text = text.strip().partition("/")
    if not sep or not prefix_text.isdigit() or not prefix_text.isascii():
        return None

    prefix_length = int(prefix_text)
    version = address_family(network_text)

    if version == 4:
        value = parse_ipv4(network_text)
        bits = IPV4_BITS
    elif version == 6:
        value = parse_ipv6(network_text)
        bits = IPV6_BITS
    else:
        return None

    if value is None or prefix_length > bits:
        return None

    host_bits = bits - prefix_length
    network = (value >> host_bits) << host_bits
    return CidrBlock(network=network, prefix_length=prefix_length, version=version)


def parse_range_set(prefixes: Iterable[str], version: int) -> RangeSet:
    """Parse CIDR strings of one family, dropping invalid or wrong-family entries."""
    blocks: List[CidrBlock] = []
    dropped = 0

    for prefix in prefixes or ():
        block = parse_cidr(prefix)
        if block is None or block.version != version:
            dropped += 1
            logger.debug("Dropping invalid IPv%d prefix: %r", version, prefix)
            continue
        blocks.append(block)

    if dropped:
        logger.warning("Dropped %d invalid IPv%d prefixes", dropped, version)

    return tuple(blocks)


@dataclass(frozen=True)
class RangeSnapshot:
    """An immutable, fully parsed set of published ranges."""

    ipv4: RangeSet = ()
    ipv6: RangeSet = ()
    fetched_at: float = 0.0
    source: str = ""
    metadata: dict = field(default_factory=dict, compare=False)

    @classmethod
    def empty(cls) -> "RangeSnapshot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.ipv4 and not self.ipv6

    def age(self) -> float:
        return cache_age(self.fetched_at)

    def __len__(self) -> int:
        return len(self.ipv4) + len(self.ipv6)


def build_snapshot(
    ipv4_prefixes: Iterable[str],
    ipv6_prefixes: Iterable[str],
    source: str = "",
    fetched_at: Optional[float] = None,
    metadata: Optional[dict] = None,
) -> RangeSnapshot:
    return RangeSnapshot(
        ipv4=parse_range_set(ipv4_prefixes, 4),
        ipv6=parse_range_set(ipv6_prefixes, 6),
        fetched_at=now() if fetched_at is None else fetched_at,
        source=source,
        metadata=dict(metadata or {}),
    )


class RangeMatcher:
    """
    Membership test against the current RangeSnapshot.

    The snapshot reference is swapped in one assignment by ``replace``; a
    lookup reads it once, so it always scans a single consistent snapshot.
    """

    def __init__(self, snapshot: Optional[RangeSnapshot] = None):
        self._snapshot = snapshot or RangeSnapshot.empty()

    @property
    def snapshot(self) -> RangeSnapshot:
        return self._snapshot

    def replace(self, snapshot: RangeSnapshot) -> None:
        if snapshot is self._snapshot:
            return
        self._snapshot = snapshot
        logger.debug(
            "Range snapshot replaced: %d IPv4, %d IPv6 blocks from %s",
            len(snapshot.ipv4),
            len(snapshot.ipv6),
            snapshot.source or "memory",
        )

    def find(self, address: str) -> Optional[CidrBlock]:
        """Return the first block containing ``address``, or None."""
        snapshot = self._snapshot
        version = address_family(address)

        if version == 4:
            value = parse_ipv4(address)
            blocks = snapshot.ipv4
        elif version == 6:
            value = parse_ipv6(address)
            blocks = snapshot.ipv6
        else:
            return None

        if value is None:
            return None

        for block in blocks:
            if block.contains(value):
                return block
        return None

    def matches(self, address: str) -> bool:
        return self.find(address) is not None

    def __len__(self) -> int:
        return len(self._snapshot)
