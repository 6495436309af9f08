"""
Googlebot verification: one verdict from two strategies.

The published-range check is free but can lag Google's real address
space; the DNS check is authoritative but costs two lookups. Ranges are
consulted first and DNS only when they say no.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from .crawlers import GOOGLE_CRAWLER_TOKENS, matched_token
from .dns_verifier import DnsVerifier, DohResolver, SystemResolver
from .errors import ConfigError
from .ip_ranges import RangeMatcher
from .range_source import RangeSource, RemoteRangeSource, SnapshotRangeSource

logger = logging.getLogger(__name__)


class GooglebotVerifier:
    """Decides whether a request claiming to be a Google crawler really is one."""

    def __init__(
        self,
        matcher: Optional[RangeMatcher] = None,
        range_source: Optional[RangeSource] = None,
        dns_verifier: Optional[DnsVerifier] = None,
        user_agent_tokens: Iterable[str] = GOOGLE_CRAWLER_TOKENS,
    ):
        self.matcher = matcher or RangeMatcher()
        self.range_source = range_source
        self.dns_verifier = dns_verifier
        self.user_agent_tokens = tuple(user_agent_tokens)

    def claims_crawler(self, user_agent: Optional[str]) -> bool:
        return matched_token(user_agent, self.user_agent_tokens) is not None

    async def is_verified_bot(self, user_agent: Optional[str], address: str) -> bool:
        """
        Verdict for one request.

        Non-claiming user agents return False before the address is even
        looked at. Never raises.
        """
        token = matched_token(user_agent, self.user_agent_tokens)
        if token is None:
            return False

        verified = await self.verify_address(address)
        if verified:
            logger.debug("Verified %s crawler at %s", token, address)
        else:
            logger.info("Unverified %s claim from %s", token, address)
        return verified

    async def verify_address(self, address: str) -> bool:
        """Range check, then DNS fallback; skips the user-agent test."""
        await self._refresh_ranges()

        if self.matcher.matches(address):
            return True

        if self.dns_verifier is None:
            return False

        return await self.dns_verifier.verify(address)

    async def _refresh_ranges(self) -> None:
        if self.range_source is None:
            return
        try:
            self.matcher.replace(await self.range_source.load())
        except Exception as exc:
            logger.error("Range source failed, matching against previous snapshot: %s", exc)

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "range_blocks": len(self.matcher),
            "range_source": type(self.range_source).__name__ if self.range_source else None,
        }
        if isinstance(self.range_source, RemoteRangeSource):
            stats["remote_ranges"] = self.range_source.stats()
        if self.dns_verifier is not None:
            stats["dns"] = self.dns_verifier.stats()
        return stats

    def close(self) -> None:
        if self.range_source is not None:
            self.range_source.close()
        if self.dns_verifier is not None:
            self.dns_verifier.close()


def build_range_source(ranges_config: Dict[str, Any]) -> RangeSource:
    if ranges_config.get("strategy") == "snapshot":
        if not ranges_config.get("snapshot_path"):
            raise ConfigError("snapshot strategy needs ranges.snapshot_path")
        return SnapshotRangeSource(path=ranges_config["snapshot_path"])

    return RemoteRangeSource(
        urls=ranges_config["urls"],
        ttl=ranges_config["ttl"],
        timeout=ranges_config["fetch_timeout"],
        retry_interval=ranges_config["retry_interval"],
    )


def build_dns_verifier(dns_config: Dict[str, Any]) -> Optional[DnsVerifier]:
    if not dns_config.get("enabled", True):
        return None

    if dns_config.get("resolver") == "system":
        resolver = SystemResolver(
            timeout=dns_config["timeout"],
            nameservers=dns_config.get("nameservers"),
        )
    else:
        resolver = DohResolver(url=dns_config["doh_url"], timeout=dns_config["timeout"])

    return DnsVerifier(
        resolver,
        allowed_suffixes=dns_config["allowed_suffixes"],
        cache_ttl=dns_config["cache_ttl"],
        error_ttl=dns_config["error_ttl"],
        max_cache_entries=dns_config["max_cache_entries"],
    )


def build_verifier(config: Dict[str, Any]) -> GooglebotVerifier:
    """Wire a GooglebotVerifier from a loaded config dict."""
    range_source = build_range_source(config["ranges"])
    dns_verifier = build_dns_verifier(config["dns"])

    logger.info(
        "Googlebot verifier: ranges=%s, dns=%s",
        config["ranges"]["strategy"],
        config["dns"]["resolver"] if dns_verifier else "disabled",
    )

    return GooglebotVerifier(
        range_source=range_source,
        dns_verifier=dns_verifier,
        user_agent_tokens=config["crawler"]["user_agent_tokens"],
    )
