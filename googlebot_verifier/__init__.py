"""Googlebot request verification: published IP ranges with a DNS fallback."""

from .crawlers import GOOGLE_CRAWLER_TOKENS, GOOGLE_HOSTNAME_SUFFIXES, claims_google_crawler
from .dns_verifier import DnsVerifier, DohResolver, SystemResolver, VerificationCache
from .ip_ranges import CidrBlock, RangeMatcher, RangeSnapshot, build_snapshot, parse_cidr
from .range_source import RangeRefresher, RangeSource, RemoteRangeSource, SnapshotRangeSource
from .verifier import GooglebotVerifier, build_verifier

__version__ = "1.0.0"

__all__ = [
    "CidrBlock",
    "DnsVerifier",
    "DohResolver",
    "GOOGLE_CRAWLER_TOKENS",
    "GOOGLE_HOSTNAME_SUFFIXES",
    "GooglebotVerifier",
    "RangeMatcher",
    "RangeRefresher",
    "RangeSnapshot",
    "RangeSource",
    "RemoteRangeSource",
    "SnapshotRangeSource",
    "SystemResolver",
    "VerificationCache",
    "build_snapshot",
    "build_verifier",
    "claims_google_crawler",
    "parse_cidr",
]
