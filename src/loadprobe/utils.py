import asyncio
import logging
import random
import signal
import time
from typing import TypeVar
from urllib.parse import urlparse

from .models import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ────────────────────────────────
# Time Helpers
# ────────────────────────────────


def now() -> float:
    return time.perf_counter()


def elapsed_ms(start: float) -> float:
    return (now() - start) * 1000.0


# ────────────────────────────────
# Queue Shuffling
# ────────────────────────────────


def fisher_yates_shuffle(items: list[T], rng: random.Random | None = None) -> list[T]:
    """Shuffle ``items`` in place and return it."""
    rng = rng or random.Random()
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


# ────────────────────────────────
# Base URL Validation
# ────────────────────────────────


def normalize_base_url(base_url: str) -> str:
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigurationError("Base URL must be a non-empty string")
    base_url = base_url.strip()
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(f"Base URL {base_url!r} must use http or https")
    if not parsed.hostname:
        raise ConfigurationError(f"Base URL {base_url!r} has no host")
    try:
        parsed.port
    except ValueError as e:
        raise ConfigurationError(f"Base URL {base_url!r} has an invalid port") from e
    if parsed.query or parsed.fragment:
        raise ConfigurationError(f"Base URL {base_url!r} must not carry a query or fragment")
    normalized = base_url.rstrip("/")
    logger.debug(f"Normalized base URL: {base_url} → {normalized}")
    return normalized


# ────────────────────────────────
# Signal Handling
# ────────────────────────────────


class GracefulKiller:
    """Turns SIGINT/SIGTERM into a cancel event for the running load test."""

    def __init__(self, cancel_event: asyncio.Event):
        self.kill_now = False
        self.cancel_event = cancel_event
        signal.signal(signal.SIGINT, self.exit_gracefully)
        signal.signal(signal.SIGTERM, self.exit_gracefully)

    def exit_gracefully(self, signum, frame):
        print("\n[!] Received shutdown signal. Finishing current batch...")
        self.kill_now = True
        self.cancel_event.set()
