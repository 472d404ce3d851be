"""
Latency bands and the derived failure points / recommendations of a run.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Optional

from .models import ConfigurationError, RunSummary, Target, TargetStats

logger = logging.getLogger(__name__)


class Band(str, Enum):
    OPTIMAL = "OPTIMAL"
    ACCEPTABLE = "ACCEPTABLE"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(Band).index(self)


@dataclass(frozen=True)
class BandCeilings:
    optimal: float
    acceptable: float
    degraded: float
    critical: float

    def __post_init__(self):
        ceilings = [self.optimal, self.acceptable, self.degraded, self.critical]
        if any(c <= 0 for c in ceilings) or ceilings != sorted(ceilings):
            raise ConfigurationError(
                f"Band ceilings must be positive and non-decreasing: {ceilings}"
            )

    def classify(self, avg_ms: Optional[float]) -> Optional[Band]:
        # ceilings are inclusive: an average equal to a ceiling stays in that band
        if avg_ms is None:
            return None
        for band, ceiling in zip(Band, (self.optimal, self.acceptable, self.degraded, self.critical)):
            if avg_ms <= ceiling:
                return band
        return Band.CRITICAL


@dataclass(frozen=True)
class Thresholds:
    api: BandCeilings = field(default_factory=lambda: BandCeilings(200, 500, 1000, 2000))
    page: BandCeilings = field(default_factory=lambda: BandCeilings(1000, 2000, 3000, 5000))
    slow_ms: float = 1000.0
    max_concurrent_users: int = 100
    bundle_size_kb: float = 2000.0
    min_success_rate: float = 0.95
    min_throughput_rps: float = 10.0

    def for_target(self, target: Optional[Target]) -> BandCeilings:
        if target is not None and target.kind == "page":
            return self.page
        return self.api

    def classify(self, stats: TargetStats) -> Optional[Band]:
        return self.for_target(stats.target).classify(stats.avg_duration_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thresholds":
        if not isinstance(data, dict):
            raise ConfigurationError("Thresholds must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown threshold fields: {', '.join(sorted(unknown))}")

        defaults = cls()
        kwargs: dict[str, Any] = {}
        for name in ("api", "page"):
            if name in data:
                base = asdict(getattr(defaults, name))
                try:
                    kwargs[name] = BandCeilings(**{**base, **data[name]})
                except TypeError as e:
                    raise ConfigurationError(f"Invalid '{name}' band ceilings: {e}") from e
        for name in ("slow_ms", "max_concurrent_users", "bundle_size_kb", "min_success_rate", "min_throughput_rps"):
            if name in data:
                value = data[name]
                if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0:
                    raise ConfigurationError(f"Threshold {name} must be a positive number")
                kwargs[name] = value
        if kwargs.get("min_success_rate", 0) > 1:
            raise ConfigurationError("Threshold min_success_rate is a fraction between 0 and 1")
        return cls(**kwargs)


def load_thresholds(path: str) -> Thresholds:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read thresholds file {path}: {e}") from e
    thresholds = Thresholds.from_dict(data)
    logger.info(f"Loaded thresholds from {path}")
    return thresholds


# ────────────────────────────────
# Derived findings
# ────────────────────────────────


def keys_in_band(
    target_stats: dict[str, TargetStats], thresholds: Thresholds, band: Band
) -> list[str]:
    return [key for key, s in target_stats.items() if thresholds.classify(s) == band]


def failure_points(
    target_stats: dict[str, TargetStats],
    thresholds: Thresholds,
    server_metrics: Optional[dict[str, Any]] = None,
    client_metrics: Optional[dict[str, Any]] = None,
) -> list[str]:
    points = []
    critical = keys_in_band(target_stats, thresholds, Band.CRITICAL)
    degraded = keys_in_band(target_stats, thresholds, Band.DEGRADED)
    failing = [k for k, s in target_stats.items() if s.failures]

    if critical:
        points.append(f"Critical response times on endpoints: {', '.join(critical)}")
    if degraded:
        points.append(f"Degraded response times on endpoints: {', '.join(degraded)}")
    if failing:
        points.append(f"Failed requests on endpoints: {', '.join(failing)}")
    if client_metrics and client_metrics.get("bundle_status") == "WARNING":
        points.append(
            f"JavaScript bundle size exceeds recommended threshold ({thresholds.bundle_size_kb:g}KB)"
        )
    if server_metrics:
        users = server_metrics.get("estimated_concurrent_users")
        if users is not None and users < thresholds.max_concurrent_users:
            points.append(f"Maximum concurrent users might be limited to ~{users} users")
    return points


def recommendations(
    target_stats: dict[str, TargetStats],
    thresholds: Thresholds,
    server_metrics: Optional[dict[str, Any]] = None,
    client_metrics: Optional[dict[str, Any]] = None,
    summary: Optional[RunSummary] = None,
) -> list[str]:
    recs = []
    if summary is not None:
        rate = summary.success_rate
        if rate is not None and rate < thresholds.min_success_rate:
            recs.append(
                f"Overall success rate ({rate * 100:.1f}%) is below {thresholds.min_success_rate * 100:g}%; "
                "check for errors or unavailable endpoints"
            )
        rps = summary.throughput
        if rps is not None and rps < thresholds.min_throughput_rps:
            recs.append(
                f"Throughput of {rps:.2f} requests/second is below {thresholds.min_throughput_rps:g}; "
                "improve server resources or optimize request handling"
            )
    if keys_in_band(target_stats, thresholds, Band.CRITICAL):
        recs.append("Optimize critical endpoints with slow response times")
    if any(s.timeouts for s in target_stats.values()):
        recs.append("Investigate endpoints that time out before responding")
    elif any(s.failures for s in target_stats.values()):
        recs.append("Fix endpoints returning errors before tuning latency")
    if client_metrics and client_metrics.get("bundle_status") == "WARNING":
        recs.append(
            "Reduce JavaScript bundle size through code splitting or removing unused dependencies"
        )
    if server_metrics:
        users = server_metrics.get("estimated_concurrent_users")
        if users is not None and users < thresholds.max_concurrent_users:
            recs.append("Improve server capacity to handle target concurrent user load")
    return recs
