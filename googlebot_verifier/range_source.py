"""
Range sources feed RangeSnapshots to the RangeMatcher.

Two interchangeable strategies:

- RemoteRangeSource fetches Google's range documents on access once the
  current snapshot is older than its TTL. Concurrent callers share one
  in-flight fetch; a failed fetch keeps the previous snapshot.
- SnapshotRangeSource loads the build-time artifact once and never
  touches the network.

RangeRefresher runs a source on a fixed interval as a cancellable task.
"""

import abc
import asyncio
import contextlib
import logging
from typing import Dict, Iterable, Optional

import requests

from .errors import RangeSourceError
from .ip_ranges import RangeMatcher, RangeSnapshot, build_snapshot
from .snapshot import fetch_range_document, merge_documents, read_snapshot
from .time_utils import is_cache_valid, monotonic, now, to_iso

logger = logging.getLogger(__name__)


class RangeSource(abc.ABC):
    """Supplies RangeSnapshots; ``load`` never raises."""

    @abc.abstractmethod
    async def load(self) -> RangeSnapshot:
        """Return the best available snapshot, fetching if the strategy calls for it."""

    async def refresh(self) -> RangeSnapshot:
        """Force a reload where the strategy supports one."""
        return await self.load()

    def close(self) -> None:
        pass


class RemoteRangeSource(RangeSource):
    """Refresh-on-access source backed by the published range documents."""

    def __init__(
        self,
        urls: Iterable[str],
        ttl: float = 600,
        timeout: float = 0.5,
        retry_interval: float = 30,
        session: Optional[requests.Session] = None,
        deadline: Optional[float] = None,
    ):
        self.urls = list(urls)
        if not self.urls:
            raise ValueError("RemoteRangeSource needs at least one URL")

        self.ttl = ttl
        self.timeout = timeout
        # connect + read for the slowest document
        self.deadline = deadline if deadline is not None else timeout * 2
        self.retry_interval = retry_interval

        self._session = session or requests.Session()
        self._owns_session = session is None

        self._snapshot = RangeSnapshot.empty()
        self._refresh_task: Optional[asyncio.Task] = None
        self._next_attempt = 0.0

        self._stats = {
            "fetch_count": 0,
            "fetch_errors": 0,
            "last_fetch_duration": 0.0,
            "last_error": None,
        }

    @property
    def snapshot(self) -> RangeSnapshot:
        return self._snapshot

    def _is_fresh(self) -> bool:
        return not self._snapshot.is_empty and is_cache_valid(self._snapshot.fetched_at, self.ttl)

    async def load(self) -> RangeSnapshot:
        if self._is_fresh():
            return self._snapshot

        # Back off after a failed fetch instead of retrying on every request
        if now() < self._next_attempt:
            return self._snapshot

        return await self.refresh()

    async def refresh(self) -> RangeSnapshot:
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._refresh())
            self._refresh_task = task
        else:
            logger.debug("Joining in-flight range refresh")

        # shield: a cancelled caller must not cancel the fetch others wait on
        return await asyncio.shield(task)

    async def _refresh(self) -> RangeSnapshot:
        start_time = monotonic()
        loop = asyncio.get_running_loop()

        try:
            # All documents are fetched in parallel under one deadline
            results = await asyncio.wait_for(
                asyncio.gather(
                    *(
                        loop.run_in_executor(None, fetch_range_document, url, self.timeout, self._session)
                        for url in self.urls
                    ),
                    return_exceptions=True,
                ),
                timeout=self.deadline,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result

            ipv4, ipv6, metadata = merge_documents(self.urls, results)

            snapshot = build_snapshot(ipv4, ipv6, source=", ".join(self.urls), metadata=metadata)
            if snapshot.is_empty:
                raise RangeSourceError("range documents contained no valid prefixes")

            self._snapshot = snapshot
            self._next_attempt = 0.0
            self._stats["fetch_count"] += 1
            logger.info(
                "Loaded crawler ranges: %d IPv4, %d IPv6 blocks in %.2fs",
                len(snapshot.ipv4),
                len(snapshot.ipv6),
                monotonic() - start_time,
            )

        except asyncio.TimeoutError:
            self._record_failure(f"timed out after {monotonic() - start_time:.2f}s")
        except Exception as exc:
            self._record_failure(str(exc))
        finally:
            self._stats["last_fetch_duration"] = monotonic() - start_time
            self._refresh_task = None

        return self._snapshot

    def _record_failure(self, error: str) -> None:
        self._stats["fetch_errors"] += 1
        self._stats["last_error"] = error
        self._next_attempt = now() + self.retry_interval
        logger.error(
            "Range refresh failed, keeping previous snapshot (%d blocks): %s",
            len(self._snapshot),
            error,
        )

    def stats(self) -> Dict:
        return {
            **self._stats,
            "blocks": len(self._snapshot),
            "fetched_at": None if self._snapshot.is_empty else to_iso(self._snapshot.fetched_at),
            "snapshot_age": self._snapshot.age() if not self._snapshot.is_empty else None,
            "refresh_in_flight": self._refresh_task is not None,
        }

    def close(self) -> None:
        if self._owns_session:
            self._session.close()


class SnapshotRangeSource(RangeSource):
    """
    Build-time snapshot source. Loaded once at construction; a missing or
    corrupt artifact leaves an empty snapshot, which matches nothing.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        ipv4_prefixes: Optional[Iterable[str]] = None,
        ipv6_prefixes: Optional[Iterable[str]] = None,
    ):
        self.path = path

        if path is not None:
            self._snapshot = self._load_file(path)
        else:
            self._snapshot = build_snapshot(ipv4_prefixes or (), ipv6_prefixes or (), source="embedded")

    @staticmethod
    def _load_file(path: str) -> RangeSnapshot:
        try:
            payload = read_snapshot(path)
        except RangeSourceError as exc:
            logger.error("Range snapshot unavailable, range matching disabled: %s", exc)
            return RangeSnapshot.empty()

        snapshot = build_snapshot(
            payload.get("ipv4Prefixes", []),
            payload.get("ipv6Prefixes", []),
            source=path,
            metadata={"generatedAt": payload.get("generatedAt"), "sources": payload.get("sources", [])},
        )
        logger.info(
            "Loaded range snapshot %s (generated %s): %d IPv4, %d IPv6 blocks",
            path,
            payload.get("generatedAt", "unknown"),
            len(snapshot.ipv4),
            len(snapshot.ipv6),
        )
        return snapshot

    @property
    def snapshot(self) -> RangeSnapshot:
        return self._snapshot

    async def load(self) -> RangeSnapshot:
        return self._snapshot


class RangeRefresher:
    """Periodically pulls a fresh snapshot from ``source`` into ``matcher``."""

    def __init__(self, source: RangeSource, matcher: RangeMatcher, interval: float = 600):
        self.source = source
        self.matcher = matcher
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the refresh loop on the running event loop."""
        if self.running:
            logger.warning("Range refresher already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Range refresher started (interval: %ss)", self.interval)

    async def _run(self) -> None:
        while True:
            try:
                self.matcher.replace(await self.source.refresh())
            except Exception as exc:
                logger.error("Error in range refresh loop: %s", exc)
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Range refresher stopped")
