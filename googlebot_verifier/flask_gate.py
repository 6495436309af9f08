"""
Flask integration.

    app = Flask(__name__)
    gate = GooglebotGate(app)

Every request on the configured paths whose User-Agent claims to be a
Google crawler is verified before the view runs. The verdict is stored in
``g.googlebot_verified``; when ``gate.endpoint`` is configured a verified
crawler is served that view instead of the requested one.
"""

import atexit
import concurrent.futures
import logging
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, request

from .client_address import extract_client_address
from .config import get_config
from .loop_runner import BackgroundLoop
from .range_source import RangeRefresher
from .verifier import GooglebotVerifier, build_verifier

logger = logging.getLogger(__name__)

EXTENSION_NAME = "googlebot_gate"


class GooglebotGate:
    """Flask extension wiring the verifier into ``before_request``."""

    def __init__(
        self,
        app: Optional[Flask] = None,
        verifier: Optional[GooglebotVerifier] = None,
        config: Optional[Dict[str, Any]] = None,
        loop: Optional[BackgroundLoop] = None,
    ):
        self.config = config
        self.verifier = verifier
        self.loop = loop
        self.refresher: Optional[RangeRefresher] = None
        self._closed = False

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        if self.config is None:
            self.config = get_config()
        if self.verifier is None:
            self.verifier = build_verifier(self.config)
        if self.loop is None:
            self.loop = BackgroundLoop()

        gate_config = self.config["gate"]
        address_config = self.config["client_address"]

        self.paths = set(gate_config.get("paths") or ())
        self.endpoint = gate_config.get("endpoint")
        self.verify_timeout = gate_config["verify_timeout"]
        self.trusted_header = address_config.get("trusted_header")
        self.forwarded_header = address_config.get("forwarded_header")
        self.fallback_address = address_config.get("fallback") or "127.0.0.1"

        self.loop.start()

        ranges_config = self.config["ranges"]
        if ranges_config.get("refresh_in_background") and self.verifier.range_source is not None:
            self.refresher = RangeRefresher(
                self.verifier.range_source,
                self.verifier.matcher,
                interval=ranges_config["ttl"],
            )
            self.loop.run(self._start_refresher(), timeout=5)

        app.before_request(self._before_request)
        app.extensions[EXTENSION_NAME] = self
        atexit.register(self.shutdown)

        logger.info(
            "Googlebot gate active on %s",
            ", ".join(sorted(self.paths)) if self.paths else "all paths",
        )

    async def _start_refresher(self) -> None:
        self.refresher.start()

    def client_address(self) -> str:
        return extract_client_address(
            request.headers,
            request.remote_addr,
            trusted_header=self.trusted_header,
            forwarded_header=self.forwarded_header,
            fallback=self.fallback_address,
        )

    def _before_request(self):
        g.googlebot_verified = False

        if self.paths and request.path not in self.paths:
            return None

        user_agent = request.headers.get("User-Agent", "")
        if not self.verifier.claims_crawler(user_agent):
            return None

        g.googlebot_verified = self.verify(user_agent, self.client_address())

        if g.googlebot_verified and self.endpoint:
            view = current_app.view_functions.get(self.endpoint)
            if view is None:
                logger.error("Googlebot endpoint %r is not registered", self.endpoint)
                return None
            return current_app.ensure_sync(view)()

        return None

    def verify(self, user_agent: str, address: str) -> bool:
        """Blocking verdict for request threads; a timeout or error is a plain visitor."""
        try:
            return self.loop.run(
                self.verifier.is_verified_bot(user_agent, address),
                timeout=self.verify_timeout,
            )
        except concurrent.futures.TimeoutError:
            logger.warning("Verification of %s timed out after %ss", address, self.verify_timeout)
        except Exception as exc:
            logger.error("Verification of %s failed: %s", address, exc)
        return False

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self.refresher is not None and self.loop.running:
            try:
                self.loop.run(self.refresher.stop(), timeout=5)
            except concurrent.futures.TimeoutError:
                logger.warning("Range refresher did not stop in time")

        self.loop.stop()
        self.verifier.close()
        logger.debug("Googlebot gate shut down")
