import uuid
import asyncio
import logging
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field
from datetime import datetime, timedelta

from loadprobe.core import LoadRunner
from loadprobe.logging_config import current_run
from loadprobe.models import Target
from loadprobe.rendering import render_report
from loadprobe.thresholds import Thresholds

logger = logging.getLogger(__name__)

RUN_TTL = timedelta(hours=24)


class RunStatus(BaseModel):
    id: str
    status: str  # "pending", "running", "completed", "failed"
    base_url: str
    total_requests: int = 0
    completed_requests: int = 0
    progress: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    report: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class RunManager:
    def __init__(self, thresholds: Optional[Thresholds] = None):
        self.thresholds = thresholds or Thresholds()
        self.runs: Dict[str, RunStatus] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def create_run(
        self,
        base_url: str,
        targets: List[Target],
        options: Dict[str, Any],
    ) -> str:
        """Validate the configuration and start the run in the background."""
        run_id = str(uuid.uuid4())
        cancel_event = asyncio.Event()

        def progress_callback(completed, total):
            run = self.runs.get(run_id)
            if run is not None:
                run.completed_requests = completed
                run.progress = (completed / total) * 100 if total > 0 else 0

        # raises ConfigurationError before anything is scheduled
        runner = LoadRunner(
            base_url=base_url,
            targets=targets,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
            use_progress_bar=False,
            **options,
        )

        run = RunStatus(
            id=run_id,
            status="pending",
            base_url=runner.base_url,
            total_requests=runner.total_requests,
        )
        self.runs[run_id] = run
        self._cancel_events[run_id] = cancel_event
        self._tasks[run_id] = asyncio.create_task(self._run(run, runner))
        self._ensure_cleanup()
        return run_id

    async def _run(self, run: RunStatus, runner: LoadRunner):
        current_run.set(run.id[:8])
        run.status = "running"
        try:
            result = await runner.run()
            report = render_report(result.summary, result.target_stats, self.thresholds)
            run.report = report.data
            run.completed_requests = result.summary.requests
            run.status = "completed"
        except Exception as e:
            logger.exception(f"Run {run.id} failed: {e}")
            run.status = "failed"
            run.error = str(e)
        finally:
            run.completed_at = datetime.now()
            self._tasks.pop(run.id, None)
            self._cancel_events.pop(run.id, None)

    async def wait(self, run_id: str) -> Optional[RunStatus]:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.runs.get(run_id)

    def get_run(self, run_id: str) -> Optional[RunStatus]:
        return self.runs.get(run_id)

    def list_runs(self) -> List[RunStatus]:
        return sorted(self.runs.values(), key=lambda x: x.created_at, reverse=True)

    def delete_run(self, run_id: str):
        event = self._cancel_events.pop(run_id, None)
        if event is not None:
            # lets the in-flight batch finish, then the runner stops
            event.set()
        self.runs.pop(run_id, None)

    def _ensure_cleanup(self):
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    def prune(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.now()
        expired = [
            run_id for run_id, run in self.runs.items()
            if run.status in ("completed", "failed") and now - run.created_at > RUN_TTL
        ]
        for run_id in expired:
            logger.info(f"Cleaning up old run: {run_id}")
            self.delete_run(run_id)
        return expired

    async def _cleanup_loop(self):
        """Periodically clean up old runs."""
        while True:
            await asyncio.sleep(3600)
            self.prune()
