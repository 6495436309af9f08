"""
Time Utilities for the Googlebot verifier

UTC ONLY - every timestamp is a Unix float or a UTC ISO string
"""

import time
from datetime import datetime, timezone
from typing import Optional


# ========================================
# CORE TIME FUNCTIONS
# ========================================

def now() -> float:
    """Unix timestamp (UTC)."""
    return time.time()


def monotonic() -> float:
    """Monotonic clock for measuring durations."""
    return time.monotonic()


def now_iso() -> str:
    """UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def to_iso(ts: Optional[float]) -> Optional[str]:
    """Convert a Unix timestamp to a UTC ISO string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


# ========================================
# CACHE & VALIDATION
# ========================================

def is_cache_valid(timestamp: float, ttl: float) -> bool:
    """Check if cache is still valid."""
    return (now() - timestamp) < ttl


def cache_age(timestamp: float) -> float:
    """Get cache age in seconds."""
    return now() - timestamp
