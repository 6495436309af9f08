"""Candidate client address for a request behind proxies."""

import ipaddress
from typing import Mapping, Optional

LOOPBACK = "127.0.0.1"


def unwrap_ipv4_mapped(address: str) -> str:
    """``::ffff:66.249.66.1`` -> ``66.249.66.1``; anything else is returned as is."""
    if ":" not in address:
        return address
    try:
        mapped = ipaddress.IPv6Address(address).ipv4_mapped
    except ValueError:
        return address
    return str(mapped) if mapped is not None else address


def extract_client_address(
    headers: Mapping[str, str],
    remote_addr: Optional[str] = None,
    trusted_header: Optional[str] = "X-Real-IP",
    forwarded_header: Optional[str] = "X-Forwarded-For",
    fallback: str = LOOPBACK,
) -> str:
    """
    Pick the address to verify, in order: trusted proxy header, the
    platform-provided peer address, the first hop of the forwarded-for
    header, then ``fallback``. IPv4-mapped IPv6 addresses from dual-stack
    sockets are reported as plain IPv4; nothing else is validated here.
    """
    if trusted_header:
        value = (headers.get(trusted_header) or "").strip()
        if value:
            return unwrap_ipv4_mapped(value)

    if remote_addr and remote_addr.strip():
        return unwrap_ipv4_mapped(remote_addr.strip())

    if forwarded_header:
        first_hop = (headers.get(forwarded_header) or "").split(",")[0].strip()
        if first_hop:
            return unwrap_ipv4_mapped(first_hop)

    return fallback
