"""
Video pipeline – orchestrate narration chunks → speech → joined audio → subtitles → render.
Depends only on port interfaces; concrete collaborators are injected.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from panelcast import config
from panelcast.application.credentials import CredentialPool
from panelcast.application.executor import BoundedParallelExecutor
from panelcast.application.polling import RenderJobPoller, TranscriptionJobPoller
from panelcast.application.reconciler import ReconciliationResult, SegmentReconciler
from panelcast.application.synthesis import SpeechSynthesizer
from panelcast.domain.chunking import chunk_text
from panelcast.domain.errors import InvalidTimeline
from panelcast.domain.models import NarrationChunk, RemoteJobState, RenderJob, TranscriptionJob
from panelcast.domain.timeline import OutputSpec, RenderRequest, build_render_request
from panelcast.ports.interfaces import (
    IAudioJoiner,
    ICredentialStore,
    IDurationProbe,
    IObjectStorage,
    IPipelineObserver,
    ITranscriptionProvider,
    ITTSProvider,
    IVideoRenderer,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    reconciliation: ReconciliationResult
    audio_url: str
    transcription: Optional[TranscriptionJob] = None
    render_request: Optional[RenderRequest] = None
    render: Optional[RenderJob] = None

    @property
    def caption_url(self) -> Optional[str]:
        if self.transcription and self.transcription.state is RemoteJobState.READY:
            return self.transcription.result_ref
        return None

    @property
    def video_url(self) -> Optional[str]:
        return self.render.video_url if self.render else None

    @property
    def succeeded(self) -> bool:
        return self.render is None or self.render.state is RemoteJobState.READY


def validate_chunks(
    chunks: Sequence[NarrationChunk],
    *,
    max_scenes: int = config.MAX_SCENES,
    require_images: bool = True,
) -> List[NarrationChunk]:
    """Return chunks sorted by index, or raise before any provider is called."""
    if not chunks:
        raise InvalidTimeline("No narration chunks provided")
    if len(chunks) > max_scenes:
        raise InvalidTimeline(f"Maximum {max_scenes} scenes allowed, got {len(chunks)}")
    ordered = sorted(chunks, key=lambda c: c.image_index)
    indices = [c.image_index for c in ordered]
    if len(set(indices)) != len(indices):
        raise InvalidTimeline(f"Duplicate image indices in {indices}")
    if indices != list(range(len(indices))):
        raise InvalidTimeline(f"Image indices must run 0..{len(indices) - 1}, got {indices}")
    if require_images:
        without = [c.image_index for c in ordered if not c.image_ref]
        if without:
            raise InvalidTimeline(f"Chunks {without} have no image")
    return ordered


class VideoPipeline:
    """
    Orchestrates the full segment pipeline.
    All dependencies are injected (ports); no concrete implementations here.
    """

    def __init__(
        self,
        *,
        tts_provider: ITTSProvider,
        credential_store: Optional[ICredentialStore],
        duration_probe: IDurationProbe,
        audio_joiner: IAudioJoiner,
        storage: IObjectStorage,
        transcription_provider: Optional[ITranscriptionProvider] = None,
        video_renderer: Optional[IVideoRenderer] = None,
        observer: Optional[IPipelineObserver] = None,
        concurrency: int = config.TTS_CONCURRENCY,
        storage_prefix: str = config.STORAGE_PREFIX,
        output: Optional[OutputSpec] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        transcription_poller: Optional[TranscriptionJobPoller] = None,
        render_poller: Optional[RenderJobPoller] = None,
    ):
        self._observer = observer or IPipelineObserver()
        self._storage = storage
        self._prefix = storage_prefix.strip("/")
        self._output = output or OutputSpec()
        pool = CredentialPool(credential_store) if credential_store is not None else None
        self.credential_pool = pool
        self._synthesizer = synthesizer or SpeechSynthesizer(tts_provider, audio_joiner, pool)
        self._reconciler = SegmentReconciler(
            self._synthesizer,
            duration_probe,
            audio_joiner,
            BoundedParallelExecutor(concurrency, self._observer),
        )
        self._transcription = transcription_poller
        if self._transcription is None and transcription_provider is not None:
            self._transcription = TranscriptionJobPoller(transcription_provider, storage, observer=self._observer)
        self._render = render_poller
        if self._render is None and video_renderer is not None:
            self._render = RenderJobPoller(video_renderer, observer=self._observer)

    async def run_segmented_video(
        self,
        chunks: Sequence[NarrationChunk],
        *,
        with_captions: bool = True,
        render: bool = True,
    ) -> PipelineResult:
        """One image and one narration per scene → timed slideshow video."""
        render = render and self._require(self._render, "video renderer")
        ordered = validate_chunks(chunks, require_images=render)
        with_captions = with_captions and self._require(self._transcription, "transcription provider")
        total_steps = 5
        logger.info("=" * 60)
        logger.info("Generating video for %d scenes...", len(ordered))
        logger.info("=" * 60)

        logger.info("[1/%d] Synthesizing narration (%d scenes)...", total_steps, len(ordered))
        reconciliation = await self._reconciler.reconcile(ordered, require_complete=True)
        logger.info(
            "Narration ready: %d segments, %.2fs total",
            len(reconciliation.segments), reconciliation.joined.total_duration_seconds,
        )

        logger.info("[2/%d] Uploading joined audio...", total_steps)
        audio_url = await self._upload_audio(reconciliation, "video")
        result = PipelineResult(reconciliation=reconciliation, audio_url=audio_url)

        logger.info("[3/%d] Generating captions...", total_steps)
        if with_captions:
            result.transcription = await self._captions(audio_url)
        else:
            logger.info("Captions disabled, skipping")

        logger.info("[4/%d] Building timeline...", total_steps)
        result.render_request = build_render_request(
            reconciliation.timeline, audio_url, result.caption_url, self._output
        )

        logger.info("[5/%d] Rendering video...", total_steps)
        if render:
            result.render = await self._render.run(result.render_request)
            if result.render.state is RemoteJobState.READY:
                logger.info("Success! Video available at: %s", result.render.video_url)
            else:
                logger.error("Failed to render video: %s", result.render.error)
        else:
            logger.info("Rendering disabled, skipping")
        return result

    async def run_narration(self, text: str, *, with_captions: bool = True) -> PipelineResult:
        """Free text → one best-effort narration track (gaps tolerated), no video."""
        pieces = chunk_text(text, config.NARRATION_CHUNK_LENGTH)
        if not pieces:
            raise InvalidTimeline("Narration text is empty")
        chunks = [NarrationChunk(image_index=i, text=piece) for i, piece in enumerate(pieces)]
        with_captions = with_captions and self._require(self._transcription, "transcription provider")
        total_steps = 3

        logger.info("[1/%d] Synthesizing narration (%d chunks)...", total_steps, len(chunks))
        reconciliation = await self._reconciler.reconcile(chunks, require_complete=False)
        if reconciliation.missing_indices:
            logger.warning(
                "Narration is missing chunk(s) %s: %s",
                reconciliation.missing_indices, reconciliation.failures,
            )

        logger.info("[2/%d] Uploading narration audio...", total_steps)
        audio_url = await self._upload_audio(reconciliation, "narration")
        result = PipelineResult(reconciliation=reconciliation, audio_url=audio_url)

        logger.info("[3/%d] Generating captions...", total_steps)
        if with_captions:
            result.transcription = await self._captions(audio_url)
        return result

    def _require(self, collaborator, name: str) -> bool:
        if collaborator is None:
            logger.warning("No %s configured, skipping that step", name)
            return False
        return True

    async def _upload_audio(self, reconciliation: ReconciliationResult, kind: str) -> str:
        audio = reconciliation.joined.audio
        if not audio.data:
            return audio.url
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = f"{self._prefix}/audio/{kind}_{timestamp}.{audio.extension}"
        url = await self._storage.upload(audio.data, path, audio.content_type)
        logger.info("Audio uploaded: %s", url)
        return url

    async def _captions(self, audio_url: str) -> TranscriptionJob:
        job = await self._transcription.run(audio_url, f"{self._prefix}/subtitles")
        if job.state is not RemoteJobState.READY:
            logger.warning("Captions unavailable (%s), continuing without: %s", job.state.value, job.error)
        return job
