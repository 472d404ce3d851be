"""
Target registry: built-in storefront probe lists and JSON target files.
"""

import json
import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any

from yarl import URL

from .models import SUPPORTED_METHODS, TARGET_KINDS, ConfigurationError, Target

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/json"
HTML_ACCEPT = "text/html"

# CR/LF and friends would let a header value split the request
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


API_TARGETS: tuple[Target, ...] = (
    Target("/api/products", label="Get All Products"),
    Target("/api/products/featured", label="Get Featured Products"),
    Target("/api/products/categories", label="Get Product Categories"),
    Target("/api/products/1", label="Get Product by ID"),
    Target("/api/auth/session", label="Get Session"),
    Target("/api/cart", label="Get Cart"),
    Target("/api/orders", label="Get Orders"),
    Target("/api/settings", label="Get Settings"),
)

PAGE_TARGETS: tuple[Target, ...] = tuple(
    Target(path, accept_header=HTML_ACCEPT, label=label, kind="page")
    for path, label in (
        ("/", "Home Page"),
        ("/products", "Products Page"),
        ("/cart", "Cart Page"),
        ("/about", "About Page"),
        ("/contact", "Contact Page"),
        ("/login", "Login Page"),
        ("/register", "Register Page"),
        ("/profile", "Profile Page"),
        ("/checkout", "Checkout Page"),
    )
)

PRESETS: dict[str, tuple[Target, ...]] = {
    "api": API_TARGETS,
    "pages": PAGE_TARGETS,
    "full": API_TARGETS + PAGE_TARGETS,
}


def get_preset(name: str) -> list[Target]:
    try:
        return list(PRESETS[name])
    except KeyError:
        raise ConfigurationError(
            f"Unknown preset {name!r}; choose one of {', '.join(sorted(PRESETS))}"
        ) from None


def target_from_dict(data: dict[str, Any]) -> Target:
    if not isinstance(data, dict) or "path" not in data:
        raise ConfigurationError(f"Target entry must be an object with a 'path': {data!r}")
    kind = data.get("kind", "api")
    accept = data.get("accept_header") or (HTML_ACCEPT if kind == "page" else JSON_ACCEPT)
    return Target(
        path=data["path"],
        method=str(data.get("method", "GET")).upper(),
        accept_header=accept,
        label=data.get("label", ""),
        kind=kind,
        payload=data.get("payload"),
    )


def load_targets(path: str) -> list[Target]:
    """Read targets from a JSON file holding a list (or ``{"targets": [...]}``)."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read targets file {path}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("targets")
    if not isinstance(raw, list):
        raise ConfigurationError(f"Targets file {path} must contain a list of targets")

    targets = [target_from_dict(item) for item in raw]
    logger.info(f"Loaded {len(targets)} targets from {path}")
    return targets


def validate_targets(targets: Sequence[Target], base_url: str = "http://localhost") -> None:
    """Reject anything that would make every request to a target fail the same way."""
    if not targets:
        raise ConfigurationError("Target list is empty")
    for t in targets:
        if not isinstance(t.path, str) or not t.path.startswith("/"):
            raise ConfigurationError(f"Target path must start with '/': {t.path!r}")
        if CONTROL_CHARS.search(t.path):
            raise ConfigurationError(f"Target path contains control characters: {t.path!r}")
        try:
            URL(base_url + t.path)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Target path {t.path!r} is not a valid URL path: {e}") from e
        for name in ("accept_header", "label"):
            value = getattr(t, name)
            if not isinstance(value, str):
                raise ConfigurationError(f"Target {name} must be a string for {t.path}: {value!r}")
            if CONTROL_CHARS.search(value):
                raise ConfigurationError(f"Target {name} contains control characters for {t.path}: {value!r}")
        if t.method not in SUPPORTED_METHODS:
            raise ConfigurationError(f"Unsupported method {t.method!r} for {t.path}")
        if t.kind not in TARGET_KINDS:
            raise ConfigurationError(f"Unknown target kind {t.kind!r} for {t.path}")
    dupes = [k for k, n in Counter((t.method, t.path) for t in targets).items() if n > 1]
    if dupes:
        listed = ", ".join(f"{m} {p}" for m, p in dupes)
        raise ConfigurationError(f"Duplicate targets: {listed}")


def target_keys(targets: Iterable[Target]) -> dict[Target, str]:
    """Key each target by path, adding the method only where a path is probed with several."""
    targets = list(targets)
    methods_per_path = Counter(t.path for t in targets)
    return {
        t: (t.path if methods_per_path[t.path] == 1 else f"{t.method} {t.path}")
        for t in targets
    }
