import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from .models import MetricsCallback, RequestOutcome, RunSummary, Target, TargetStats
from .targets import target_keys

logger = logging.getLogger(__name__)


class StatsAggregator:
    """
    Accumulates per-target and run-wide counters as outcomes arrive.

    Outcomes are recorded from the event loop thread only, so updates need no lock.
    """

    def __init__(
        self,
        targets: Iterable[Target],
        metrics_callback: MetricsCallback | None = None,
    ) -> None:
        keys = target_keys(targets)
        self.target_stats: dict[Target, TargetStats] = {
            t: TargetStats(key=key, target=t) for t, key in keys.items()
        }
        self.summary = RunSummary()
        self.metrics_callback = metrics_callback
        self._t0: float | None = None

    def start(self, t0: float) -> None:
        self._t0 = t0
        self.summary.started_at = datetime.now(timezone.utc)

    def record(self, outcome: RequestOutcome) -> None:
        if self.summary.finished:
            raise RuntimeError("Cannot record outcomes into a finished run")
        stats = self.target_stats.get(outcome.target)
        if stats is None:
            raise KeyError(f"Outcome for unregistered target {outcome.target.path}")
        stats.add(outcome)
        self.summary.add(outcome)

    def finish(self, t1: float, cancelled: bool = False) -> RunSummary:
        s = self.summary
        s.completed_at = datetime.now(timezone.utc)
        if s.started_at is None:
            s.started_at = s.completed_at
        s.elapsed_s = t1 - self._t0 if self._t0 is not None else 0.0
        s.cancelled = cancelled

        logger.debug(
            f"Finishing run: requests={s.requests}, successes={s.successes}, "
            f"failures={s.failures}, timeouts={s.timeouts}"
        )
        if self.metrics_callback:
            self.metrics_callback(s.to_dict())
        return s

    def by_key(self) -> dict[str, TargetStats]:
        return {stats.key: stats for stats in self.target_stats.values()}
