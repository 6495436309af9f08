"""
googlebot-verifier command line.

    googlebot-verifier fetch-ranges -o build/googlebot_ranges.json
    googlebot-verifier check-range 66.249.66.1 --snapshot build/googlebot_ranges.json
    googlebot-verifier verify 66.249.66.1 --user-agent "Googlebot/2.1"
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import load_config
from .errors import RangeSourceError
from .ip_ranges import RangeMatcher
from .log_setup import setup_logging
from .range_source import RemoteRangeSource, SnapshotRangeSource
from .snapshot import fetch_prefixes, write_snapshot
from .verifier import build_verifier

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


def cmd_fetch_ranges(args, config) -> int:
    urls = args.url or config["ranges"]["urls"]
    timeout = args.timeout or config["ranges"]["fetch_timeout"]

    try:
        ipv4, ipv6, metadata = fetch_prefixes(urls, timeout)
    except RangeSourceError as exc:
        logger.error("Fetching ranges failed: %s", exc)
        return 1

    if not ipv4 and not ipv6:
        logger.error("Range documents contained no prefixes, snapshot not written")
        return 1

    write_snapshot(args.output, ipv4, ipv6, sources=metadata["sources"])
    print(f"{args.output}: {len(ipv4)} IPv4 prefixes, {len(ipv6)} IPv6 prefixes")
    return 0


async def _load_matcher(args, config) -> RangeMatcher:
    if args.snapshot:
        source = SnapshotRangeSource(path=args.snapshot)
    else:
        ranges_config = config["ranges"]
        source = RemoteRangeSource(
            urls=ranges_config["urls"],
            ttl=ranges_config["ttl"],
            timeout=ranges_config["fetch_timeout"],
        )
    try:
        return RangeMatcher(await source.load())
    finally:
        source.close()


def cmd_check_range(args, config) -> int:
    matcher = asyncio.run(_load_matcher(args, config))
    if not len(matcher):
        logger.error("No ranges loaded")
        return 1

    all_matched = True
    for address in args.addresses:
        block = matcher.find(address)
        if block is None:
            all_matched = False
            print(f"{address}: no match")
        else:
            print(f"{address}: {block}")
    return 0 if all_matched else 1


async def _verify(args, config) -> bool:
    verifier = build_verifier(config)
    try:
        return await verifier.is_verified_bot(args.user_agent, args.address)
    finally:
        verifier.close()


def cmd_verify(args, config) -> int:
    if args.no_dns:
        config["dns"]["enabled"] = False
    if args.snapshot:
        config["ranges"]["strategy"] = "snapshot"
        config["ranges"]["snapshot_path"] = args.snapshot

    verified = asyncio.run(_verify(args, config))
    print(f"{args.address}: {'verified' if verified else 'not verified'}")
    return 0 if verified else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="googlebot-verifier",
        description="Verify that an address belongs to Google's crawlers.",
    )
    parser.add_argument("--config", help="JSON config file")
    parser.add_argument("--log-level", help="Override logging.level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch-ranges", help="Write a build-time range snapshot")
    fetch.add_argument("-o", "--output", required=True, help="Snapshot file to write")
    fetch.add_argument("--url", action="append", help="Range document URL (repeatable)")
    fetch.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    fetch.set_defaults(func=cmd_fetch_ranges)

    check = subparsers.add_parser("check-range", help="Range-only membership test")
    check.add_argument("addresses", nargs="+")
    check.add_argument("--snapshot", help="Use a snapshot file instead of fetching")
    check.set_defaults(func=cmd_check_range)

    verify = subparsers.add_parser("verify", help="Full verification (ranges, then DNS)")
    verify.add_argument("address")
    verify.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    verify.add_argument("--snapshot", help="Use a snapshot file instead of fetching")
    verify.add_argument("--no-dns", action="store_true", help="Skip the DNS fallback")
    verify.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config["logging"]["level"] = args.log_level
    setup_logging(config)

    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
