"""
Range document fetching and the build-time snapshot artifact.

The range document is Google's published JSON::

    {"creationTime": "...", "prefixes": [{"ipv4Prefix": "66.249.64.0/27"},
                                         {"ipv6Prefix": "2001:4860:4801:10::/64"}]}

The snapshot artifact is what ``googlebot-verifier fetch-ranges`` writes at
build time and what SnapshotRangeSource reads at startup::

    {"generatedAt": "...", "sources": [...], "ipv4Prefixes": [...], "ipv6Prefixes": [...]}
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from .errors import RangeSourceError
from .time_utils import now_iso

logger = logging.getLogger(__name__)

USER_AGENT = "googlebot-verifier/1.0"

Prefixes = Tuple[List[str], List[str]]


def parse_range_document(document: Any) -> Prefixes:
    """
    Extract IPv4 and IPv6 CIDR strings from a range document.

    Unknown fields, non-object entries and entries with neither prefix key
    are ignored. A payload that has no ``prefixes`` array is not a range
    document and raises RangeSourceError.
    """
    if not isinstance(document, dict) or not isinstance(document.get("prefixes"), list):
        raise RangeSourceError("range document has no 'prefixes' array")

    ipv4: List[str] = []
    ipv6: List[str] = []

    for entry in document["prefixes"]:
        if not isinstance(entry, dict):
            continue
        if isinstance(entry.get("ipv4Prefix"), str):
            ipv4.append(entry["ipv4Prefix"])
        if isinstance(entry.get("ipv6Prefix"), str):
            ipv6.append(entry["ipv6Prefix"])

    return ipv4, ipv6


def fetch_range_document(url: str, timeout: float, session: Optional[requests.Session] = None) -> Dict:
    http = session or requests
    try:
        response = http.get(
            url,
            timeout=(timeout, timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        raise RangeSourceError(f"fetching {url} failed: {exc}") from exc
    except ValueError as exc:
        raise RangeSourceError(f"{url} did not return JSON: {exc}") from exc


def fetch_prefixes(
    urls: Iterable[str],
    timeout: float,
    session: Optional[requests.Session] = None,
) -> Tuple[List[str], List[str], Dict[str, Any]]:
    """
    Fetch and merge every range document in ``urls``.

    All documents must succeed; a partial set of ranges is never returned.

    Returns:
        (ipv4 prefixes, ipv6 prefixes, metadata) with duplicates removed
    """
    urls = list(urls)
    documents = [fetch_range_document(url, timeout, session) for url in urls]
    return merge_documents(urls, documents)


def merge_documents(urls: List[str], documents: List[Any]) -> Tuple[List[str], List[str], Dict[str, Any]]:
    """Merge already-fetched range documents, in ``urls`` order."""
    ipv4: List[str] = []
    ipv6: List[str] = []
    creation_times: Dict[str, Any] = {}

    for url, document in zip(urls, documents):
        doc_ipv4, doc_ipv6 = parse_range_document(document)
        ipv4.extend(doc_ipv4)
        ipv6.extend(doc_ipv6)
        creation_times[url] = document.get("creationTime")
        logger.debug("Fetched %s: %d IPv4, %d IPv6 prefixes", url, len(doc_ipv4), len(doc_ipv6))

    metadata = {"sources": urls, "creationTimes": creation_times}
    return _dedupe(ipv4), _dedupe(ipv6), metadata


def _dedupe(prefixes: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(prefixes))


def write_snapshot(path: str, ipv4: Iterable[str], ipv6: Iterable[str], sources: Iterable[str] = ()) -> Dict:
    """Write the snapshot artifact atomically (temp file + rename)."""
    payload = {
        "generatedAt": now_iso(),
        "sources": list(sources),
        "ipv4Prefixes": sorted(set(ipv4)),
        "ipv6Prefixes": sorted(set(ipv6)),
    }

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
        f.write("\n")
    os.replace(tmp_path, path)

    logger.info(
        "Wrote snapshot %s: %d IPv4, %d IPv6 prefixes",
        path,
        len(payload["ipv4Prefixes"]),
        len(payload["ipv6Prefixes"]),
    )
    return payload


def read_snapshot(path: str) -> Dict:
    """Read a snapshot artifact; raises RangeSourceError if it is missing or malformed."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise RangeSourceError(f"cannot read snapshot {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise RangeSourceError(f"snapshot {path} is not a JSON object")

    for key in ("ipv4Prefixes", "ipv6Prefixes"):
        if not isinstance(payload.get(key, []), list):
            raise RangeSourceError(f"snapshot {path}: '{key}' is not a list")

    return payload
