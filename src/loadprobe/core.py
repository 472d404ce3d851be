import asyncio
import logging
import math
import random
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import aiohttp
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .executor import RequestExecutor
from .metrics import StatsAggregator
from .models import (
    ERROR_NETWORK,
    ConfigurationError,
    MetricsCallback,
    ProgressCallback,
    RequestOutcome,
    RunSummary,
    ServerUnavailableError,
    Target,
    TargetStats,
)
from .targets import validate_targets
from .utils import elapsed_ms, fisher_yates_shuffle, normalize_base_url, now

logger = logging.getLogger(__name__)

SERVER_CHECK_TIMEOUT_MS = 3000.0


class Executor(Protocol):
    async def execute(self, session: aiohttp.ClientSession, target: Target) -> RequestOutcome: ...


@dataclass
class LoadRunResult:
    summary: RunSummary
    target_stats: dict[str, TargetStats]

    @property
    def cancelled(self) -> bool:
        return self.summary.cancelled


class LoadRunner:
    def __init__(
        self,
        base_url: str,
        targets: Iterable[Target],
        requests_per_target: int = 5,
        concurrency: int = 3,
        timeout_ms: float = 5000.0,
        executor: Executor | None = None,
        cancel_event: asyncio.Event | None = None,
        rng: random.Random | None = None,
        metrics_callback: MetricsCallback | None = None,
        progress_callback: ProgressCallback | None = None,
        batch_delay_ms: float = 0.0,
        server_check: bool = False,
        use_progress_bar: bool = False,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.targets = list(targets)
        validate_targets(self.targets, self.base_url)
        for name, value, kinds in (
            ("requests_per_target", requests_per_target, (int,)),
            ("concurrency", concurrency, (int,)),
            ("timeout_ms", timeout_ms, (int, float)),
        ):
            if (
                isinstance(value, bool)
                or not isinstance(value, kinds)
                or not math.isfinite(value)
                or value <= 0
            ):
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
        if (
            isinstance(batch_delay_ms, bool)
            or not isinstance(batch_delay_ms, (int, float))
            or not math.isfinite(batch_delay_ms)
            or batch_delay_ms < 0
        ):
            raise ConfigurationError(f"batch_delay_ms must be zero or positive, got {batch_delay_ms!r}")

        self.requests_per_target = requests_per_target
        self.concurrency = concurrency
        self.timeout_ms = timeout_ms
        self.executor: Executor = executor or RequestExecutor(self.base_url, timeout_ms)
        self.cancel_event = cancel_event
        self.rng = rng or random.Random()
        self.metrics_callback = metrics_callback
        self.progress_callback = progress_callback
        self.batch_delay_ms = batch_delay_ms
        self.server_check = server_check
        self.use_progress_bar = use_progress_bar

        logger.info(
            f"Initialized LoadRunner with {len(self.targets)} targets against {self.base_url}, "
            f"requests_per_target={requests_per_target}, concurrency={concurrency}, "
            f"timeout={timeout_ms:g}ms, batch_delay={batch_delay_ms:g}ms"
        )

    # ────────────────────────────────
    # Work Queue
    # ────────────────────────────────

    def build_queue(self) -> list[Target]:
        queue = [t for t in self.targets for _ in range(self.requests_per_target)]
        return fisher_yates_shuffle(queue, self.rng)

    @property
    def total_requests(self) -> int:
        return len(self.targets) * self.requests_per_target

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    # ────────────────────────────────
    # Server Check
    # ────────────────────────────────

    async def check_server(self, session: aiohttp.ClientSession | None = None) -> int:
        """HEAD the base URL once. Raises ServerUnavailableError when nothing answers."""
        if session is None:
            async with aiohttp.ClientSession() as own:
                return await self.check_server(own)

        url = self.base_url + "/"
        timeout = aiohttp.ClientTimeout(total=SERVER_CHECK_TIMEOUT_MS / 1000.0)
        try:
            async with session.head(url, timeout=timeout, allow_redirects=False) as resp:
                status = resp.status
        except (TimeoutError, asyncio.TimeoutError) as e:
            raise ServerUnavailableError(
                f"Connection to {self.base_url} timed out after {SERVER_CHECK_TIMEOUT_MS:g}ms; "
                "make sure the server is running"
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            raise ServerUnavailableError(
                f"Could not connect to {self.base_url} ({e}); start the server and run again"
            ) from e

        if 200 <= status < 400:
            logger.info(f"Server at {self.base_url} is up (HEAD / -> {status})")
        else:
            logger.warning(f"Server at {self.base_url} answered HEAD / with unexpected status {status}")
        return status

    # ────────────────────────────────
    # Batch Dispatch
    # ────────────────────────────────

    async def _execute(self, session: aiohttp.ClientSession, target: Target) -> RequestOutcome:
        start = now()
        try:
            return await self.executor.execute(session, target)
        except Exception as e:
            # executors report failures as outcomes; anything else still counts as a failed request
            duration = elapsed_ms(start)
            logger.error(f"Unexpected error requesting {target.method} {target.path}: {e!r}")
            return RequestOutcome(target, start, duration, error_kind=ERROR_NETWORK)

    async def _run_batch(
        self,
        session: aiohttp.ClientSession,
        batch: list[Target],
        aggregator: StatsAggregator,
    ) -> None:
        results = await asyncio.gather(
            *(self._execute(session, t) for t in batch), return_exceptions=True
        )
        for target, result in zip(batch, results):
            if isinstance(result, BaseException):
                raise result
            aggregator.record(result)
            if result.success:
                logger.debug(f"✓ {target.method} {target.path} - {result.status_code} ({result.duration_ms:.0f}ms)")
            else:
                detail = result.error_kind.upper() if result.error_kind else result.status_code
                logger.debug(f"✗ {target.method} {target.path} - {detail} ({result.duration_ms:.0f}ms)")

    # ────────────────────────────────
    # Main Runner
    # ────────────────────────────────

    async def run(self) -> LoadRunResult:
        aggregator = StatsAggregator(self.targets, self.metrics_callback)
        queue = self.build_queue()

        connector = aiohttp.TCPConnector(limit=0)
        cancelled = False
        progress = None
        task_id = None
        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                if self.server_check:
                    await self.check_server(session)

                logger.info(
                    f"Starting {len(queue)} requests in batches of {self.concurrency}"
                )
                if self.use_progress_bar:
                    progress = Progress(
                        SpinnerColumn(),
                        TextColumn("[progress.description]{task.description}"),
                        BarColumn(),
                        MofNCompleteColumn(),
                        TimeElapsedColumn(),
                    )
                    progress.start()
                    task_id = progress.add_task("[cyan]Requesting...", total=len(queue))

                aggregator.start(now())
                pos = 0
                while pos < len(queue):
                    if self._cancelled():
                        cancelled = True
                        logger.info(
                            f"Cancellation requested. Stopping with {len(queue) - pos} requests undispatched"
                        )
                        break
                    batch = queue[pos : pos + self.concurrency]
                    pos += len(batch)
                    await self._run_batch(session, batch, aggregator)
                    if progress and task_id is not None:
                        progress.advance(task_id, len(batch))
                    if self.progress_callback:
                        self.progress_callback(pos, len(queue))
                    if self.batch_delay_ms and pos < len(queue) and not self._cancelled():
                        await asyncio.sleep(self.batch_delay_ms / 1000.0)
        finally:
            if progress:
                progress.stop()

        summary = aggregator.finish(now(), cancelled=cancelled)
        rate = summary.success_rate
        logger.info(
            f"Run completed: {summary.successes} successes, {summary.failures} failures "
            f"({summary.timeouts} timeouts), success_rate="
            + (f"{rate * 100:.1f}%" if rate is not None else "N/A")
        )
        return LoadRunResult(summary=summary, target_stats=aggregator.by_key())
