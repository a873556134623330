"""IPipelineObserver that reports progress through logging."""

import logging
from typing import Optional

from panelcast.domain.models import JobStatus, RenderJob, TranscriptionJob
from panelcast.ports.interfaces import IPipelineObserver

logger = logging.getLogger(__name__)


class LoggingObserver(IPipelineObserver):
    def __init__(self, level: int = logging.INFO):
        self._level = level
        self._last_progress = {}

    def on_job_state_change(self, index: int, state: JobStatus, error: Optional[str] = None) -> None:
        if state is JobStatus.FAILED:
            logger.warning("  Scene %d: %s (%s)", index, state.value, error)
        else:
            logger.log(self._level, "  Scene %d: %s", index, state.value)

    def _remote(self, kind: str, job_id: str, stage: str, percent: int, state: str) -> None:
        key = (kind, job_id)
        snapshot = (stage, percent, state)
        if self._last_progress.get(key) == snapshot:
            return
        self._last_progress[key] = snapshot
        logger.log(self._level, "  %s %s: %s %d%% (%s)", kind, job_id or "-", stage, percent, state)

    def on_transcription_progress(self, job: TranscriptionJob) -> None:
        self._remote("Transcription", job.job_id, job.stage, job.progress_percent, job.state.value)

    def on_render_progress(self, job: RenderJob) -> None:
        self._remote("Render", job.job_id, job.stage, job.progress_percent, job.state.value)
