"""
Remote job pollers – submit once, poll on a fixed interval until terminal.

Providers report coarse, sometimes inconsistent progress. Each canonical stage
owns a progress band; the reported percentage is clamped into the band and
never allowed to go backwards while the job is still processing.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, NamedTuple, Optional, Union

from panelcast import config
from panelcast.domain.errors import (
    DownloadOrPersistFailed,
    PermanentProviderError,
    PipelineError,
    ProviderError,
    TimedOut,
)
from panelcast.domain.models import ProviderJobStatus, RemoteJobState, RenderJob, TranscriptionJob
from panelcast.domain.timeline import RenderRequest
from panelcast.ports.interfaces import (
    IObjectStorage,
    IPipelineObserver,
    ITranscriptionProvider,
    IVideoRenderer,
)

logger = logging.getLogger(__name__)

RemoteJob = Union[TranscriptionJob, RenderJob]

# progress never reaches 100 until the result is in hand
PROCESSING_CAP = 95


class StageRule(NamedTuple):
    state: RemoteJobState
    floor: int
    ceiling: int


TRANSCRIPTION_STAGES: Dict[str, StageRule] = {
    "uploading": StageRule(RemoteJobState.PROCESSING, 0, 25),
    "preparing": StageRule(RemoteJobState.PROCESSING, 25, 40),
    "analyzing": StageRule(RemoteJobState.PROCESSING, 40, 60),
    "transcribing": StageRule(RemoteJobState.PROCESSING, 60, 90),
    "downloading": StageRule(RemoteJobState.PROCESSING, 90, PROCESSING_CAP),
    "ready": StageRule(RemoteJobState.READY, 100, 100),
    "failed": StageRule(RemoteJobState.FAILED, 0, 100),
}

RENDER_STAGES: Dict[str, StageRule] = {
    "queued": StageRule(RemoteJobState.PROCESSING, 0, 10),
    "fetching": StageRule(RemoteJobState.PROCESSING, 10, 30),
    "rendering": StageRule(RemoteJobState.PROCESSING, 30, 80),
    "saving": StageRule(RemoteJobState.PROCESSING, 80, PROCESSING_CAP),
    "done": StageRule(RemoteJobState.READY, 100, 100),
    "failed": StageRule(RemoteJobState.FAILED, 0, 100),
}


def estimate_progress(rule: StageRule, reported: int) -> int:
    """Place the provider's own percentage inside the stage's band."""
    reported = min(max(int(reported or 0), 0), 100)
    return rule.floor + (rule.ceiling - rule.floor) * reported // 100


class RemoteJobPoller:
    """Shared poll loop. Subclasses supply the stage table and terminal handling."""

    stages: Dict[str, StageRule] = {}

    def __init__(
        self,
        *,
        interval: float,
        timeout: float,
        max_polls: int,
        observer: Optional[IPipelineObserver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._interval = interval
        self._timeout = timeout
        self._max_polls = max_polls
        self._observer = observer or IPipelineObserver()
        self._sleep = sleep

    def _apply(self, job: RemoteJob, status: ProviderJobStatus) -> None:
        rule = self.stages.get(status.stage)
        if rule is None:
            logger.warning("Unknown %s stage %r, treating as processing", type(job).__name__, status.stage)
            rule = StageRule(RemoteJobState.PROCESSING, job.progress_percent, PROCESSING_CAP)
        job.stage = status.stage
        job.state = rule.state
        if rule.state is RemoteJobState.PROCESSING:
            estimate = min(estimate_progress(rule, status.progress), PROCESSING_CAP)
            job.progress_percent = max(job.progress_percent, estimate)

    def _notify(self, job: RemoteJob) -> None:
        pass

    async def _abandon(self, job: RemoteJob) -> None:
        pass

    async def _poll_loop(self, job: RemoteJob, fetch: Callable[[str], Awaitable[ProviderJobStatus]]) -> ProviderJobStatus:
        started = time.monotonic()
        while job.polls < self._max_polls:
            await self._sleep(self._interval)
            job.polls += 1
            try:
                status = await fetch(job.job_id)
            except ProviderError as exc:
                logger.warning("Poll %d for job %s failed: %s", job.polls, job.job_id, exc)
                continue
            self._apply(job, status)
            self._notify(job)
            logger.debug("Job %s: %s %d%%", job.job_id, job.stage, job.progress_percent)
            if job.state.is_terminal:
                return status
        raise TimedOut(job.polls, time.monotonic() - started)

    async def _track(self, job: RemoteJob, fetch: Callable[[str], Awaitable[ProviderJobStatus]]) -> Optional[ProviderJobStatus]:
        """Poll until terminal. On timeout the job is marked failed and None is returned."""
        started = time.monotonic()
        try:
            return await asyncio.wait_for(self._poll_loop(job, fetch), timeout=self._timeout)
        except asyncio.TimeoutError:
            job.error = TimedOut(job.polls, time.monotonic() - started)
        except TimedOut as exc:
            job.error = exc
        logger.error("Job %s: %s", job.job_id, job.error)
        job.state = RemoteJobState.FAILED
        await self._abandon(job)
        self._notify(job)
        return None


class TranscriptionJobPoller(RemoteJobPoller):
    """Transcribes the joined narration and re-hosts the subtitles in our own storage."""

    stages = TRANSCRIPTION_STAGES

    def __init__(
        self,
        provider: ITranscriptionProvider,
        storage: IObjectStorage,
        *,
        interval: float = config.TRANSCRIPTION_POLL_INTERVAL,
        timeout: float = config.TRANSCRIPTION_TIMEOUT,
        max_polls: int = config.TRANSCRIPTION_MAX_POLLS,
        observer: Optional[IPipelineObserver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(interval=interval, timeout=timeout, max_polls=max_polls, observer=observer, sleep=sleep)
        self._provider = provider
        self._storage = storage

    def _notify(self, job: RemoteJob) -> None:
        self._observer.on_transcription_progress(job)

    async def run(self, audio_url: str, destination_prefix: str) -> TranscriptionJob:
        try:
            job_id = await self._provider.submit(audio_url)
        except ProviderError as exc:
            logger.error("Transcription submission failed: %s", exc)
            job = TranscriptionJob(job_id="", state=RemoteJobState.FAILED, error=exc)
            self._notify(job)
            return job

        job = TranscriptionJob(job_id=job_id)
        logger.info("Transcription job %s submitted", job_id)
        self._notify(job)
        status = await self._track(job, self._provider.get_status)
        if status is None:
            return job
        if job.state is RemoteJobState.FAILED:
            job.error = PermanentProviderError(status.error or "Transcription failed", provider="transcription")
            logger.error("Transcription job %s failed: %s", job_id, job.error)
            return job

        job.provider_url = status.result_url
        await self._persist(job, destination_prefix)
        self._notify(job)
        return job

    async def _persist(self, job: TranscriptionJob, destination_prefix: str) -> None:
        """Download the provider's subtitle file once and store our own copy."""
        job.state = RemoteJobState.PROCESSING
        job.stage = "downloading"
        job.progress_percent = max(job.progress_percent, TRANSCRIPTION_STAGES["downloading"].floor)
        self._notify(job)
        if not job.provider_url:
            self._persist_failed(job, DownloadOrPersistFailed("Provider reported ready without a subtitle URL"))
            return
        try:
            data = await self._provider.download(job.provider_url)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = f"{destination_prefix.rstrip('/')}/transcription_{timestamp}.srt"
            job.result_ref = await self._storage.upload(data, path, "text/srt")
        except PipelineError as exc:
            failure = DownloadOrPersistFailed(f"Could not re-host subtitles: {exc}")
            failure.__cause__ = exc
            self._persist_failed(job, failure)
            return
        job.state = RemoteJobState.READY
        job.stage = "ready"
        job.progress_percent = 100
        logger.info("Subtitles stored at %s", job.result_ref)

    def _persist_failed(self, job: TranscriptionJob, error: DownloadOrPersistFailed) -> None:
        logger.error("Transcription job %s: %s", job.job_id, error)
        job.state = RemoteJobState.DOWNLOAD_OR_PERSIST_FAILED
        job.error = error


class RenderJobPoller(RemoteJobPoller):
    stages = RENDER_STAGES

    def __init__(
        self,
        renderer: IVideoRenderer,
        *,
        interval: float = config.RENDER_POLL_INTERVAL,
        timeout: float = config.RENDER_TIMEOUT,
        max_polls: int = config.RENDER_MAX_POLLS,
        observer: Optional[IPipelineObserver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(interval=interval, timeout=timeout, max_polls=max_polls, observer=observer, sleep=sleep)
        self._renderer = renderer

    def _notify(self, job: RemoteJob) -> None:
        self._observer.on_render_progress(job)

    async def _abandon(self, job: RemoteJob) -> None:
        try:
            await self._renderer.cancel(job.job_id)
        except ProviderError as exc:
            logger.warning("Could not cancel render job %s: %s", job.job_id, exc)

    async def run(self, request: RenderRequest) -> RenderJob:
        try:
            job_id = await self._renderer.submit(request)
        except ProviderError as exc:
            logger.error("Render submission failed: %s", exc)
            job = RenderJob(job_id="", state=RemoteJobState.FAILED, error=exc)
            self._notify(job)
            return job

        job = RenderJob(job_id=job_id)
        logger.info("Render job %s submitted", job_id)
        self._notify(job)
        status = await self._track(job, self._renderer.get_status)
        if status is None:
            return job
        if job.state is RemoteJobState.FAILED:
            job.error = PermanentProviderError(status.error or "Render failed", provider="render")
            logger.error("Render job %s failed: %s", job_id, job.error)
            return job
        if not status.result_url:
            job.state = RemoteJobState.FAILED
            job.error = PermanentProviderError("Render finished without a video URL", provider="render")
            self._notify(job)
            return job
        job.video_url = status.result_url
        job.progress_percent = 100
        self._notify(job)
        logger.info("Render job %s done: %s", job_id, job.video_url)
        return job
