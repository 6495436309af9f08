"""
Background event loop for synchronous callers.

WSGI workers are threads, but the verifier's caches and in-flight tables
are owned by one asyncio loop. BackgroundLoop runs that loop on a daemon
thread and lets any thread submit coroutines to it and wait for the result.
"""

import asyncio
import atexit
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """An asyncio loop on its own thread with explicit start/stop."""

    def __init__(self, name: str = "GooglebotVerifierLoop"):
        self.name = name
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._started = threading.Event()
        self._lock = threading.Lock()
        self._running = False

        atexit.register(self.stop)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> "BackgroundLoop":
        with self._lock:
            if self._running:
                return self

            self.loop = asyncio.new_event_loop()
            self._started.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
            self._started.wait()
            self._running = True

        logger.debug("Background loop %s started", self.name)
        return self

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._started.set)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def submit(self, coro: Awaitable[Any]) -> concurrent.futures.Future:
        """Schedule ``coro`` on the loop; returns a thread-safe future."""
        if not self._running:
            self.start()
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """
        Run ``coro`` on the loop and block the calling thread for its result.

        Raises concurrent.futures.TimeoutError when ``timeout`` elapses; the
        coroutine is cancelled in that case.
        """
        future = self.submit(coro)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False

        try:
            asyncio.run_coroutine_threadsafe(self._cancel_pending(), self.loop).result(timeout=timeout)
        except (concurrent.futures.TimeoutError, RuntimeError) as exc:
            logger.warning("Pending tasks on %s did not cancel cleanly: %s", self.name, exc)

        self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("%s thread did not shutdown cleanly", self.name)

        logger.debug("Background loop %s stopped", self.name)

    async def _cancel_pending(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks() if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
