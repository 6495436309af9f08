import asyncio
import threading
import time

import pytest
import requests

from googlebot_verifier.config import ENV_PREFIX

GOOGLEBOT_ADDRESS = "66.249.66.1"
GOOGLEBOT_PTR = "1.66.249.66.in-addr.arpa"
GOOGLEBOT_HOSTNAME = "crawl-66-249-66-1.googlebot.com"

RANGE_DOCUMENT = {
    "creationTime": "2024-05-01T12:00:00.000000",
    "prefixes": [
        {"ipv4Prefix": "66.249.64.0/27"},
        {"ipv4Prefix": "66.249.66.0/27"},
        {"ipv6Prefix": "2001:4860:4801:10::/64"},
        {"ipv4Prefix": "not-a-cidr"},
        {"service": "unused"},
        "stray",
    ],
}


class FakeResolver:
    """Resolver double with canned answers and call counters."""

    def __init__(self, ptr=None, a=None, delay=0.0, error=None):
        self.ptr = ptr or {}
        self.a = a or {}
        self.delay = delay
        self.error = error
        self.reverse_calls = []
        self.forward_calls = []

    async def reverse(self, ptr_name):
        self.reverse_calls.append(ptr_name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.ptr.get(ptr_name, []))

    async def forward(self, hostname):
        self.forward_calls.append(hostname)
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.a.get(hostname, []))

    def close(self):
        pass


def googlebot_resolver(**kwargs):
    return FakeResolver(
        ptr={GOOGLEBOT_PTR: [GOOGLEBOT_HOSTNAME + "."]},
        a={GOOGLEBOT_HOSTNAME: [GOOGLEBOT_ADDRESS]},
        **kwargs,
    )


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Stand-in for requests.Session. ``responses`` maps URL to a FakeResponse,
    an exception to raise, or a list consumed one item per call.
    """

    def __init__(self, responses, delay=0.0):
        self.responses = responses
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self.closed = False

    def get(self, url, params=None, timeout=None, headers=None):
        with self._lock:
            self.calls.append({"url": url, "params": params, "timeout": timeout, "headers": headers})
            response = self.responses[url]
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]

        if self.delay:
            time.sleep(self.delay)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep GBV_* variables from the developer's shell out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock(monkeypatch):
    """Controllable clock for every module that reads the time."""

    class Clock:
        def __init__(self):
            self.value = 1_700_000_000.0

        def __call__(self):
            return self.value

        def advance(self, seconds):
            self.value += seconds

    fake = Clock()
    for target in (
        "googlebot_verifier.time_utils.now",
        "googlebot_verifier.dns_verifier.now",
        "googlebot_verifier.range_source.now",
        "googlebot_verifier.ip_ranges.now",
    ):
        monkeypatch.setattr(target, fake)
    return fake
