"""
Forward-confirmed reverse DNS verification for crawler addresses.

verify(address):
1. Reverse lookup: PTR record for ``d.c.b.a.in-addr.arpa``
2. Domain check: the PTR hostname must sit under an authorised Google domain
3. Forward lookup: A records for that hostname must include the address

Results (positive and negative) are cached per address; concurrent calls
for the same address share one lookup. Every failure is a ``False``
verdict, nothing is raised to the caller.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections import OrderedDict, namedtuple
from typing import Dict, Iterable, List, Optional

import aiodns
import dns.exception
import dns.name
import dns.rdatatype
import dns.reversename
import requests

from .crawlers import GOOGLE_HOSTNAME_SUFFIXES
from .errors import ResolverError
from .ip_ranges import parse_ipv4
from .time_utils import now

logger = logging.getLogger(__name__)

GOOGLE_DOH_URL = "https://dns.google/resolve"

# DNS response codes carried in the DoH JSON "Status" field
RCODE_NOERROR = 0
RCODE_NXDOMAIN = 3

CacheEntry = namedtuple("CacheEntry", ["address", "verified", "expires_at"])


# ------------------------------------------------------------------
# Name helpers
# ------------------------------------------------------------------

def reverse_pointer(address: str) -> Optional[str]:
    """``66.249.66.1`` -> ``1.66.249.66.in-addr.arpa``; None unless dotted-quad IPv4."""
    if parse_ipv4(address) is None:
        return None
    return dns.reversename.from_address(address).to_text(omit_final_dot=True)


def _suffix_names(suffixes: Iterable[str]) -> List[dns.name.Name]:
    names = []
    for suffix in suffixes:
        if isinstance(suffix, dns.name.Name):
            names.append(suffix)
            continue
        cleaned = (suffix or "").strip().strip(".")
        if not cleaned:
            continue
        try:
            names.append(dns.name.from_text(cleaned))
        except dns.exception.DNSException:
            logger.warning("Ignoring invalid hostname suffix: %r", suffix)
    return names


def is_authorized_hostname(hostname: str, suffixes: Iterable = GOOGLE_HOSTNAME_SUFFIXES) -> bool:
    """
    True when ``hostname`` is a strict subdomain of one of ``suffixes``.

    Comparison is label-wise and case-insensitive, so ``crawl-1.GoogleBot.com.``
    passes while ``evilgooglebot.com`` and ``googlebot.com.evil.net`` do not.
    """
    if not hostname or not isinstance(hostname, str):
        return False

    try:
        name = dns.name.from_text(hostname.strip())
    except dns.exception.DNSException:
        return False

    return any(name != domain and name.is_subdomain(domain) for domain in _suffix_names(suffixes))


# ------------------------------------------------------------------
# Resolvers
# ------------------------------------------------------------------

def parse_doh_answer(payload, name: str, record_type: str) -> List[str]:
    """
    Pull record data out of a JSON DoH response.

    A missing or empty ``Answer`` and NXDOMAIN both mean "no record". Any
    other non-zero status is a resolver failure.
    """
    if not isinstance(payload, dict):
        raise ResolverError(name, record_type, "unexpected response payload")

    status = payload.get("Status", RCODE_NOERROR)
    if status == RCODE_NXDOMAIN:
        return []
    if status != RCODE_NOERROR:
        raise ResolverError(name, record_type, f"rcode {status}")

    answers = payload.get("Answer")
    if not isinstance(answers, list):
        return []

    type_code = int(dns.rdatatype.from_text(record_type))
    records = []
    for answer in answers:
        if not isinstance(answer, dict) or not isinstance(answer.get("data"), str):
            continue
        # CNAME hops show up in the same Answer list
        if "type" in answer and answer["type"] != type_code:
            continue
        records.append(answer["data"].strip().rstrip("."))
    return records


class DohResolver:
    """JSON DNS-over-HTTPS resolver (dns.google by default)."""

    def __init__(
        self,
        url: str = GOOGLE_DOH_URL,
        timeout: float = 0.25,
        session: Optional[requests.Session] = None,
        max_workers: int = 8,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="DohResolver",
        )

    async def reverse(self, ptr_name: str) -> List[str]:
        return await self._query(ptr_name, "PTR")

    async def forward(self, hostname: str) -> List[str]:
        return await self._query(hostname, "A")

    async def _query(self, name: str, record_type: str) -> List[str]:
        loop = asyncio.get_running_loop()
        try:
            payload = await asyncio.wait_for(
                loop.run_in_executor(self.executor, self._get, name, record_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ResolverError(name, record_type, f"timed out after {self.timeout}s") from None
        return parse_doh_answer(payload, name, record_type)

    def _get(self, name: str, record_type: str):
        try:
            response = self._session.get(
                self.url,
                params={"name": name, "type": record_type},
                timeout=self.timeout,
                headers={"Accept": "application/dns-json"},
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise ResolverError(name, record_type, str(exc)) from exc
        except ValueError as exc:
            raise ResolverError(name, record_type, f"invalid JSON: {exc}") from exc

    def close(self) -> None:
        self.executor.shutdown(wait=False)
        if self._owns_session:
            self._session.close()


class SystemResolver:
    """Plain DNS resolver using aiodns, for deployments that cannot use DoH."""

    def __init__(self, timeout: float = 0.25, nameservers: Optional[List[str]] = None):
        self.timeout = timeout
        self.nameservers = list(nameservers or [])
        self._resolver: Optional[aiodns.DNSResolver] = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        # aiodns binds to the running loop, so it is created on first use
        if self._resolver is None:
            self._resolver = aiodns.DNSResolver(
                nameservers=self.nameservers or None,
                timeout=self.timeout,
                tries=1,
            )
        return self._resolver

    async def reverse(self, ptr_name: str) -> List[str]:
        result = await self._query(ptr_name, "PTR")
        if result is None:
            return []
        records = result if isinstance(result, list) else [result]
        return [record.name.rstrip(".") for record in records if getattr(record, "name", None)]

    async def forward(self, hostname: str) -> List[str]:
        result = await self._query(hostname, "A")
        if result is None:
            return []
        return [record.host for record in result]

    async def _query(self, name: str, record_type: str):
        try:
            return await asyncio.wait_for(
                self._get_resolver().query(name, record_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ResolverError(name, record_type, f"timed out after {self.timeout}s") from None
        except aiodns.error.DNSError as exc:
            code = exc.args[0] if exc.args else None
            if code in (aiodns.error.ARES_ENODATA, aiodns.error.ARES_ENOTFOUND):
                return None
            raise ResolverError(name, record_type, str(exc)) from exc

    def close(self) -> None:
        if self._resolver is not None:
            self._resolver.cancel()


# ------------------------------------------------------------------
# Result cache
# ------------------------------------------------------------------

class VerificationCache:
    """LRU cache of verdicts with per-entry expiry, evicted lazily on read."""

    def __init__(self, max_size: int = 10000, default_ttl: float = 86400):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expired_cleanups": 0,
        }

    def get(self, address: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._cache.get(address)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if now() >= entry.expires_at:
                del self._cache[address]
                self._stats["misses"] += 1
                self._stats["expired_cleanups"] += 1
                return None

            self._cache.move_to_end(address)
            self._stats["hits"] += 1
            return entry

    def set(self, address: str, verified: bool, ttl: Optional[float] = None) -> CacheEntry:
        entry = CacheEntry(
            address=address,
            verified=verified,
            expires_at=now() + (self.default_ttl if ttl is None else ttl),
        )

        with self._lock:
            if address in self._cache:
                self._cache.move_to_end(address)
            elif len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._stats["evictions"] += 1
            self._cache[address] = entry

        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> Dict:
        with self._lock:
            cache_size = len(self._cache)
            stats = dict(self._stats)

        total_requests = stats["hits"] + stats["misses"]
        return {
            **stats,
            "total_requests": total_requests,
            "hit_rate": (stats["hits"] / total_requests * 100) if total_requests > 0 else 0,
            "cache_size": cache_size,
            "max_size": self.max_size,
        }

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("Verification cache cleared")


# ------------------------------------------------------------------
# Verifier
# ------------------------------------------------------------------

class DnsVerifier:
    """
    Reverse-then-forward DNS verification with caching and in-flight dedup.

    Cache TTLs:
    - cache_ttl (24h): verified and rejected addresses alike
    - error_ttl (5m): resolver failures, so a transient outage is retried soon
    """

    def __init__(
        self,
        resolver,
        allowed_suffixes: Iterable[str] = GOOGLE_HOSTNAME_SUFFIXES,
        cache_ttl: float = 86400,
        error_ttl: float = 300,
        max_cache_entries: int = 10000,
    ):
        self.resolver = resolver
        self.allowed_suffixes = _suffix_names(allowed_suffixes)
        self.cache_ttl = cache_ttl
        self.error_ttl = error_ttl
        self.cache = VerificationCache(max_size=max_cache_entries, default_ttl=cache_ttl)
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._stats = {
            "lookups": 0,
            "verified": 0,
            "rejected": 0,
            "errors": 0,
            "joined": 0,
        }

    async def verify(self, address: str) -> bool:
        if reverse_pointer(address) is None:
            logger.debug("Skipping DNS verification for non-IPv4 address %r", address)
            return False

        cached = self.cache.get(address)
        if cached is not None:
            logger.debug("DNS verification cache hit for %s: %s", address, cached.verified)
            return cached.verified

        task = self._in_flight.get(address)
        if task is None:
            task = asyncio.ensure_future(self._verify_and_cache(address))
            self._in_flight[address] = task
        else:
            self._stats["joined"] += 1
            logger.debug("Joining in-flight DNS verification for %s", address)

        # shield: one caller timing out must not cancel the lookup others share
        return await asyncio.shield(task)

    async def _verify_and_cache(self, address: str) -> bool:
        self._stats["lookups"] += 1
        try:
            try:
                verified = await self._lookup(address)
                ttl = self.cache_ttl
            except ResolverError as exc:
                self._stats["errors"] += 1
                logger.warning("DNS verification failed for %s: %s", address, exc)
                verified, ttl = False, self.error_ttl
            except Exception as exc:
                self._stats["errors"] += 1
                logger.error("Unexpected error verifying %s: %s", address, exc)
                verified, ttl = False, self.error_ttl

            self._stats["verified" if verified else "rejected"] += 1
            self.cache.set(address, verified, ttl)
            return verified
        finally:
            self._in_flight.pop(address, None)

    async def _lookup(self, address: str) -> bool:
        hostnames = await self.resolver.reverse(reverse_pointer(address))
        if not hostnames:
            logger.info("No PTR record for %s", address)
            return False

        hostname = hostnames[0].rstrip(".").lower()
        if not is_authorized_hostname(hostname, self.allowed_suffixes):
            logger.warning("Rejected %s: PTR hostname %s is not a Google domain", address, hostname)
            return False

        expected = parse_ipv4(address)
        resolved = await self.resolver.forward(hostname)
        if not any(parse_ipv4(candidate) == expected for candidate in resolved):
            logger.warning(
                "Rejected %s: forward lookup of %s returned %s",
                address,
                hostname,
                resolved,
            )
            return False

        logger.info("Verified %s via %s", address, hostname)
        return True

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def stats(self) -> Dict:
        return {
            **self._stats,
            "in_flight": self.in_flight,
            "cache": self.cache.stats(),
        }

    def clear_cache(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        close = getattr(self.resolver, "close", None)
        if close is not None:
            close()
