"""Bounded fan-out over independent async jobs with partial-failure aggregation."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from panelcast import config
from panelcast.domain.models import JobStatus, SynthesisJob
from panelcast.ports.interfaces import IPipelineObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class JobSuccess(Generic[T]):
    index: int
    value: T


@dataclass(frozen=True)
class JobFailure:
    index: int
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass
class ExecutionReport(Generic[T]):
    """Successes arrive in completion order, not index order."""
    successes: List[JobSuccess[T]] = field(default_factory=list)
    failures: List[JobFailure] = field(default_factory=list)

    @property
    def succeeded_indices(self) -> List[int]:
        return sorted(s.index for s in self.successes)

    @property
    def failed_indices(self) -> List[int]:
        return sorted(f.index for f in self.failures)

    def failure_messages(self) -> Dict[int, str]:
        return {f.index: f.message for f in self.failures}


class BoundedParallelExecutor:
    """Runs at most ``concurrency`` jobs at once.

    A job failure never propagates out of :meth:`run`; it is recorded in the
    report. Only cancellation of the caller escapes.
    """

    def __init__(
        self,
        concurrency: int = config.TTS_CONCURRENCY,
        observer: Optional[IPipelineObserver] = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._observer = observer or IPipelineObserver()

    def _transition(self, job: SynthesisJob, status: JobStatus) -> None:
        job.status = status
        self._observer.on_job_state_change(job.index, status, job.last_error)

    async def run(
        self,
        jobs: Sequence[SynthesisJob],
        worker: Callable[[SynthesisJob], Awaitable[T]],
    ) -> ExecutionReport[T]:
        report: ExecutionReport[T] = ExecutionReport()
        if not jobs:
            return report
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run_one(job: SynthesisJob):
            async with semaphore:
                self._transition(job, JobStatus.RUNNING)
                try:
                    value = await worker(job)
                except Exception as exc:
                    job.last_error = str(exc) or type(exc).__name__
                    logger.warning("Job %d failed after %d attempt(s): %s", job.index, job.attempt, job.last_error)
                    self._transition(job, JobStatus.FAILED)
                    return JobFailure(job.index, exc)
                self._transition(job, JobStatus.SUCCEEDED)
                return JobSuccess(job.index, value)

        tasks = [asyncio.ensure_future(run_one(job)) for job in jobs]
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                if isinstance(outcome, JobFailure):
                    report.failures.append(outcome)
                else:
                    report.successes.append(outcome)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        logger.info(
            "Executed %d job(s): %d succeeded, %d failed",
            len(jobs), len(report.successes), len(report.failures),
        )
        return report
