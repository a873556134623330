import asyncio

import pytest

from conftest import (
    FakeProbe,
    FakeRenderer,
    FakeTranscriptionProvider,
    FakeTTS,
    audio_for,
    make_synthesizer,
)
from panelcast.application.pipeline import VideoPipeline, validate_chunks
from panelcast.application.polling import RenderJobPoller, TranscriptionJobPoller
from panelcast.domain.chunking import chunk_text
from panelcast.domain.errors import InvalidTimeline, ProcessingIncomplete
from panelcast.domain.models import JobStatus, NarrationChunk, ProviderJobStatus, RemoteJobState

TEXTS = ["The city sleeps.", "A shadow moves across the rooftops.", "Dawn breaks."]
DURATIONS = {audio_for(t): d for t, d in zip(TEXTS, [2.0, 3.5, 1.2])}
SUBTITLES_READY = ProviderJobStatus("ready", 100, result_url="https://ingest.test/a.srt")
RENDER_DONE = ProviderJobStatus("done", result_url="https://cdn.test/video.mp4")


def _chunks():
    return [NarrationChunk(i, t, image_ref=f"https://cdn/panel_{i}.png") for i, t in enumerate(TEXTS)]


def _pipeline(tts, joiner, storage, observer, sleeper, transcription=None, renderer=None):
    synthesizer, store = make_synthesizer(tts, joiner, sleep=sleeper)
    transcription_poller = None
    if transcription is not None:
        transcription_poller = TranscriptionJobPoller(transcription, storage, observer=observer, sleep=sleeper)
    render_poller = None
    if renderer is not None:
        render_poller = RenderJobPoller(renderer, observer=observer, sleep=sleeper)
    return VideoPipeline(
        tts_provider=tts,
        credential_store=store,
        duration_probe=FakeProbe(DURATIONS),
        audio_joiner=joiner,
        storage=storage,
        observer=observer,
        synthesizer=synthesizer,
        transcription_poller=transcription_poller,
        render_poller=render_poller,
    )


def test_segmented_video_end_to_end(joiner, storage, observer, sleeper):
    renderer = FakeRenderer([ProviderJobStatus("rendering", 50), RENDER_DONE])
    pipeline = _pipeline(FakeTTS(), joiner, storage, observer, sleeper,
                         FakeTranscriptionProvider([SUBTITLES_READY]), renderer)

    result = asyncio.run(pipeline.run_segmented_video(_chunks()))

    assert result.succeeded
    assert result.video_url == "https://cdn.test/video.mp4"
    audio_path = next(p for p in storage.objects if "/audio/" in p)
    assert audio_path.startswith("panelcast/audio/video_") and audio_path.endswith(".mp3")
    assert result.audio_url == f"https://storage.test/{audio_path}"
    assert result.caption_url.startswith("https://storage.test/panelcast/subtitles/transcription_")

    request = renderer.requests[0]
    assert request.audio_ref == result.audio_url
    assert request.caption_ref == result.caption_url
    images = request.to_payload()["timeline"]["tracks"][1]["clips"]
    assert [c["start"] for c in images] == [0.0, 2.0, 5.5]
    assert [c["asset"]["src"] for c in images] == [f"https://cdn/panel_{i}.png" for i in range(3)]
    assert request.total_duration_seconds == pytest.approx(6.7)
    assert {(i, JobStatus.SUCCEEDED) for i in range(3)} <= set(observer.job_events)


def test_caption_failure_does_not_block_render(joiner, storage, observer, sleeper):
    renderer = FakeRenderer([RENDER_DONE])
    transcription = FakeTranscriptionProvider([ProviderJobStatus("failed", error="no speech detected")])
    pipeline = _pipeline(FakeTTS(), joiner, storage, observer, sleeper, transcription, renderer)

    result = asyncio.run(pipeline.run_segmented_video(_chunks()))

    assert result.transcription.state is RemoteJobState.FAILED
    assert result.caption_url is None
    assert renderer.requests[0].caption_ref is None
    assert result.succeeded


def test_captions_and_render_can_be_disabled(joiner, storage, observer, sleeper):
    transcription = FakeTranscriptionProvider([SUBTITLES_READY])
    renderer = FakeRenderer([RENDER_DONE])
    pipeline = _pipeline(FakeTTS(), joiner, storage, observer, sleeper, transcription, renderer)

    result = asyncio.run(pipeline.run_segmented_video(_chunks(), with_captions=False, render=False))

    assert result.transcription is None and result.render is None
    assert transcription.submitted == [] and renderer.requests == []
    assert result.render_request.audio_ref == result.audio_url
    assert result.succeeded


def test_render_failure_is_reported(joiner, storage, observer, sleeper):
    renderer = FakeRenderer([ProviderJobStatus("failed", error="bad asset")])
    pipeline = _pipeline(FakeTTS(), joiner, storage, observer, sleeper, renderer=renderer)

    result = asyncio.run(pipeline.run_segmented_video(_chunks()))

    assert not result.succeeded
    assert result.video_url is None


def test_missing_scene_aborts_before_upload(joiner, storage, observer, sleeper):
    tts = FakeTTS(fail={TEXTS[2]})
    pipeline = _pipeline(tts, joiner, storage, observer, sleeper, renderer=FakeRenderer([RENDER_DONE]))

    with pytest.raises(ProcessingIncomplete) as excinfo:
        asyncio.run(pipeline.run_segmented_video(_chunks()))

    assert excinfo.value.missing_indices == [2]
    assert storage.objects == {}


@pytest.mark.parametrize(
    "chunks",
    [
        [],
        [NarrationChunk(0, "A.", image_ref="a.png"), NarrationChunk(0, "B.", image_ref="b.png")],
        [NarrationChunk(0, "A.", image_ref="a.png"), NarrationChunk(2, "C.", image_ref="c.png")],
        [NarrationChunk(0, "A.", image_ref="a.png"), NarrationChunk(1, "B.")],
        [NarrationChunk(i, "A.", image_ref="a.png") for i in range(21)],
    ],
)
def test_invalid_input_rejected_before_synthesis(chunks, joiner, storage, observer, sleeper):
    tts = FakeTTS()
    pipeline = _pipeline(tts, joiner, storage, observer, sleeper, renderer=FakeRenderer([RENDER_DONE]))

    with pytest.raises(InvalidTimeline):
        asyncio.run(pipeline.run_segmented_video(chunks))

    assert tts.calls == []


def test_images_optional_without_render():
    chunks = [NarrationChunk(1, "B."), NarrationChunk(0, "A.")]
    assert [c.image_index for c in validate_chunks(chunks, require_images=False)] == [0, 1]


def test_narration_tolerates_gaps(joiner, storage, observer, sleeper):
    text = " ".join(f"Sentence {i} describes the next part of the story in detail." for i in range(20))
    pieces = chunk_text(text, 500)
    assert len(pieces) >= 3
    tts = FakeTTS(fail={pieces[1]})
    pipeline = _pipeline(tts, joiner, storage, observer, sleeper, FakeTranscriptionProvider([SUBTITLES_READY]))

    result = asyncio.run(pipeline.run_narration(text))

    assert result.reconciliation.missing_indices == [1]
    assert result.reconciliation.joined.segment_indices == tuple(i for i in range(len(pieces)) if i != 1)
    assert any(p.startswith("panelcast/audio/narration_") for p in storage.objects)
    assert result.caption_url is not None
    assert result.render is None and result.succeeded


def test_narration_rejects_empty_text(joiner, storage, observer, sleeper):
    pipeline = _pipeline(FakeTTS(), joiner, storage, observer, sleeper)
    with pytest.raises(InvalidTimeline):
        asyncio.run(pipeline.run_narration("   "))
