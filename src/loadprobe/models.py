import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from collections.abc import Callable


class ConfigurationError(ValueError):
    """Raised for setup problems that must stop a run before any request is sent."""


class ServerUnavailableError(ConnectionError):
    """The target server did not answer the pre-run check."""


SUPPORTED_METHODS = ("GET", "POST")
TARGET_KINDS = ("api", "page")

ERROR_NETWORK = "network"
ERROR_TIMEOUT = "timeout"
ERROR_STATUS_KEY = "error"


@dataclass(frozen=True)
class Target:
    path: str
    method: str = "GET"
    accept_header: str = "application/json"
    label: str = ""
    kind: str = "api"  # "api" or "page", selects the threshold bands
    payload: Optional[dict[str, Any]] = field(default=None, compare=False, hash=False)

    @property
    def name(self) -> str:
        return self.label or self.path


@dataclass(frozen=True)
class RequestOutcome:
    target: Target
    started_at: float
    duration_ms: float
    status_code: Optional[int] = None
    response_bytes: Optional[int] = None
    error_kind: Optional[str] = None

    @property
    def success(self) -> bool:
        return (
            self.error_kind is None
            and self.status_code is not None
            and 200 <= self.status_code < 400
        )


def _status_sort_key(item: tuple[int | str, int]) -> tuple[int, int, str]:
    code = item[0]
    if isinstance(code, int):
        return (0, code, "")
    return (1, 0, str(code))


@dataclass
class Counters:
    requests: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = math.inf
    max_duration_ms: float = 0.0
    total_bytes: int = 0
    status_code_counts: dict[int | str, int] = field(default_factory=dict)

    def add(self, outcome: RequestOutcome) -> None:
        self.requests += 1
        if outcome.success:
            self.successes += 1
        else:
            self.failures += 1
            if outcome.error_kind == ERROR_TIMEOUT:
                self.timeouts += 1

        d = outcome.duration_ms
        self.total_duration_ms += d
        if d < self.min_duration_ms:
            self.min_duration_ms = d
        if d > self.max_duration_ms:
            self.max_duration_ms = d

        if outcome.response_bytes is not None:
            self.total_bytes += outcome.response_bytes

        key = outcome.status_code if outcome.error_kind is None else ERROR_STATUS_KEY
        self.status_code_counts[key] = self.status_code_counts.get(key, 0) + 1

    # Derived metrics are None until at least one request was recorded.

    @property
    def avg_duration_ms(self) -> float | None:
        return self.total_duration_ms / self.requests if self.requests else None

    @property
    def success_rate(self) -> float | None:
        return self.successes / self.requests if self.requests else None

    @property
    def failure_rate(self) -> float | None:
        return self.failures / self.requests if self.requests else None

    @property
    def avg_bytes(self) -> float | None:
        return self.total_bytes / self.requests if self.requests else None

    @property
    def min_ms(self) -> float | None:
        return self.min_duration_ms if self.requests else None

    @property
    def max_ms(self) -> float | None:
        return self.max_duration_ms if self.requests else None

    def sorted_status_counts(self) -> list[tuple[str, int]]:
        # ints first in numeric order, then the synthetic "error" bucket
        items = sorted(self.status_code_counts.items(), key=_status_sort_key)
        return [(str(k), v) for k, v in items]

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "successes": self.successes,
            "failures": self.failures,
            "timeouts": self.timeouts,
            "total_duration_ms": self.total_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "min_duration_ms": self.min_ms,
            "max_duration_ms": self.max_ms,
            "total_bytes": self.total_bytes,
            "avg_bytes": self.avg_bytes,
            "success_rate": self.success_rate,
            "status_code_counts": dict(self.sorted_status_counts()),
        }


@dataclass
class TargetStats(Counters):
    key: str = ""
    target: Optional[Target] = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.target is not None:
            data = {
                "path": self.target.path,
                "method": self.target.method,
                "label": self.target.label,
                "kind": self.target.kind,
                **data,
            }
        return data


@dataclass
class RunSummary(Counters):
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    elapsed_s: float | None = None
    cancelled: bool = False

    @property
    def finished(self) -> bool:
        return self.completed_at is not None

    @property
    def throughput(self) -> float | None:
        if not self.elapsed_s:
            return None
        return self.requests / self.elapsed_s

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "elapsed_s": self.elapsed_s,
                "throughput": self.throughput,
                "cancelled": self.cancelled,
            }
        )
        return data


# Metrics callback: callable accepting the finished summary as a dict
MetricsCallback = Callable[[dict[str, Any]], None]
ProgressCallback = Callable[[int, int], None]
