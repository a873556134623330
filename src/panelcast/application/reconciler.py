"""
Segment reconciliation – restores index order after concurrent synthesis.

N narration chunks go in; M <= N synthesized clips come back in completion
order. The reconciler probes each clip as soon as it is produced, re-sorts by
index, enforces the caller's completeness policy, derives the timeline offsets
and joins the audio, all from the same list of measured durations.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from panelcast import config
from panelcast.application.executor import BoundedParallelExecutor
from panelcast.application.synthesis import SpeechSynthesizer
from panelcast.domain.errors import NoSegmentsProduced, ProbeFailure, ProcessingIncomplete
from panelcast.domain.models import AudioSegment, JoinedAudio, NarrationChunk, SynthesisJob
from panelcast.domain.timeline import TimelineSegment, build_timeline_segments
from panelcast.ports.interfaces import IAudioJoiner, IDurationProbe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    joined: JoinedAudio
    timeline: Tuple[TimelineSegment, ...]
    requested_indices: Tuple[int, ...]
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def segments(self) -> Tuple[AudioSegment, ...]:
        return self.joined.segments

    @property
    def missing_indices(self) -> List[int]:
        present = set(self.joined.segment_indices)
        return [i for i in self.requested_indices if i not in present]

    @property
    def is_complete(self) -> bool:
        return not self.missing_indices


class SegmentReconciler:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        probe: IDurationProbe,
        joiner: IAudioJoiner,
        executor: Optional[BoundedParallelExecutor] = None,
        *,
        drift_warning_seconds: float = config.JOIN_DRIFT_WARNING,
    ):
        self._synthesizer = synthesizer
        self._probe = probe
        self._joiner = joiner
        self._executor = executor or BoundedParallelExecutor()
        self._drift_warning = drift_warning_seconds

    async def _synthesize_and_probe(self, job: SynthesisJob) -> AudioSegment:
        audio = await self._synthesizer.synthesize(job)
        duration = await self._probe.probe(audio)
        logger.info("Segment %d: %.3fs", job.index, duration)
        return AudioSegment(segment_index=job.index, audio=audio, duration_seconds=duration, text=job.text)

    async def reconcile(
        self,
        chunks: Sequence[NarrationChunk],
        require_complete: bool = True,
    ) -> ReconciliationResult:
        """Synthesize, measure, order and join ``chunks``.

        With ``require_complete`` any failed chunk raises ProcessingIncomplete
        naming the missing indices. Without it the surviving segments keep
        their original indices; gaps are not renumbered.
        """
        by_index = {chunk.image_index: chunk for chunk in chunks}
        if len(by_index) != len(chunks):
            raise ValueError("Narration chunks must have unique image indices")
        requested = tuple(sorted(by_index))

        jobs = [SynthesisJob(index=chunk.image_index, text=chunk.text) for chunk in chunks]
        report = await self._executor.run(jobs, self._synthesize_and_probe)
        failures = report.failure_messages()

        # completion order is arbitrary under concurrency
        segments = sorted((s.value for s in report.successes), key=lambda s: s.segment_index)
        if not segments:
            raise NoSegmentsProduced(failures)

        present = {s.segment_index for s in segments}
        missing = [i for i in requested if i not in present]
        if missing:
            if require_complete:
                raise ProcessingIncomplete(missing, failures)
            logger.warning(
                "Continuing with %d of %d segments; missing %s",
                len(segments), len(requested), missing,
            )

        durations = [s.duration_seconds for s in segments]
        timeline = build_timeline_segments(
            [by_index[s.segment_index].image_ref for s in segments],
            durations,
        )
        joined_artifact = await self._joiner.join([s.audio for s in segments])
        joined = JoinedAudio(
            audio=joined_artifact,
            total_duration_seconds=math.fsum(durations),
            segments=tuple(segments),
        )
        await self._check_drift(joined)
        return ReconciliationResult(
            joined=joined,
            timeline=tuple(timeline),
            requested_indices=requested,
            failures=failures,
        )

    async def _check_drift(self, joined: JoinedAudio) -> None:
        try:
            measured = await self._probe.measure(joined.audio)
        except (ProbeFailure, OSError) as exc:
            logger.debug("Skipping drift check: %s", exc)
            return
        drift = abs(measured - joined.total_duration_seconds)
        if drift > self._drift_warning:
            logger.warning(
                "Joined audio measures %.3fs but segments sum to %.3fs (drift %.3fs)",
                measured, joined.total_duration_seconds, drift,
            )
