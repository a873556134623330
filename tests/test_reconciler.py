import asyncio
import logging

import pytest

from conftest import FakeProbe, FakeTTS, audio_for, make_synthesizer
from panelcast.application.executor import BoundedParallelExecutor
from panelcast.application.reconciler import SegmentReconciler
from panelcast.domain.errors import NoSegmentsProduced, ProcessingIncomplete
from panelcast.domain.models import NarrationChunk

TEXTS = ["The city sleeps.", "A shadow moves across the rooftops.", "Dawn breaks."]
DURATIONS = {audio_for(t): d for t, d in zip(TEXTS, [2.0, 3.5, 1.2])}


def _chunks():
    return [NarrationChunk(i, text, image_ref=f"https://cdn/panel_{i}.png") for i, text in enumerate(TEXTS)]


def _reconciler(tts, joiner, probe=None, **kwargs):
    synthesizer, _ = make_synthesizer(tts, joiner)
    return SegmentReconciler(
        synthesizer,
        probe or FakeProbe(DURATIONS),
        joiner,
        BoundedParallelExecutor(3),
        **kwargs,
    )


def test_out_of_order_completion_is_reordered(joiner):
    # scene 0 finishes last
    tts = FakeTTS(delays={TEXTS[0]: 0.03, TEXTS[1]: 0.0, TEXTS[2]: 0.01})

    result = asyncio.run(_reconciler(tts, joiner).reconcile(_chunks()))

    assert result.joined.segment_indices == (0, 1, 2)
    assert [s.start_offset_seconds for s in result.timeline] == [0.0, 2.0, 5.5]
    assert [s.image_ref for s in result.timeline] == [f"https://cdn/panel_{i}.png" for i in range(3)]
    assert result.joined.total_duration_seconds == pytest.approx(6.7)
    assert joiner.calls[-1] == [audio_for(t) for t in TEXTS]
    assert result.is_complete


def test_missing_segment_fails_when_completeness_required(joiner):
    tts = FakeTTS(fail={TEXTS[1]})
    with pytest.raises(ProcessingIncomplete) as excinfo:
        asyncio.run(_reconciler(tts, joiner).reconcile(_chunks()))
    assert excinfo.value.missing_indices == [1]
    assert 1 in excinfo.value.failures
    assert joiner.calls == []


def test_partial_result_keeps_original_indices(joiner):
    tts = FakeTTS(fail={TEXTS[1]})

    result = asyncio.run(_reconciler(tts, joiner).reconcile(_chunks(), require_complete=False))

    assert result.joined.segment_indices == (0, 2)
    assert result.missing_indices == [1]
    assert [s.start_offset_seconds for s in result.timeline] == [0.0, 2.0]
    assert result.joined.total_duration_seconds == pytest.approx(3.2)
    assert not result.is_complete


def test_nothing_produced(joiner):
    tts = FakeTTS(fail=set(TEXTS))
    with pytest.raises(NoSegmentsProduced) as excinfo:
        asyncio.run(_reconciler(tts, joiner).reconcile(_chunks(), require_complete=False))
    assert sorted(excinfo.value.failures) == [0, 1, 2]


def test_unprobeable_segment_uses_fallback(joiner):
    durations = dict(DURATIONS)
    del durations[audio_for(TEXTS[2])]
    probe = FakeProbe(durations, fallback=5.0)

    result = asyncio.run(_reconciler(FakeTTS(), joiner, probe).reconcile(_chunks()))

    assert [s.duration_seconds for s in result.segments] == [2.0, 3.5, 5.0]
    assert result.timeline[-1].end_seconds == pytest.approx(10.5)


def test_join_drift_is_logged(joiner, caplog):
    probe = FakeProbe(DURATIONS, joined_offset=1.0)
    with caplog.at_level(logging.WARNING, logger="panelcast.application.reconciler"):
        result = asyncio.run(
            _reconciler(FakeTTS(), joiner, probe, drift_warning_seconds=0.25).reconcile(_chunks())
        )
    assert result.joined.total_duration_seconds == pytest.approx(6.7)
    assert any("drift" in r.getMessage() for r in caplog.records)


def test_duplicate_indices_rejected(joiner):
    chunks = [NarrationChunk(0, "A."), NarrationChunk(0, "B.")]
    with pytest.raises(ValueError):
        asyncio.run(_reconciler(FakeTTS(), joiner).reconcile(chunks))


class StagingFailsForJoinedAudio(FakeProbe):
    async def measure(self, artifact):
        if b"+" in artifact.data:
            raise OSError(28, "No space left on device")
        return await super().measure(artifact)


def test_drift_check_errors_keep_the_result(joiner):
    probe = StagingFailsForJoinedAudio(DURATIONS)

    result = asyncio.run(_reconciler(FakeTTS(), joiner, probe).reconcile(_chunks()))

    assert result.joined.segment_indices == (0, 1, 2)
    assert result.joined.total_duration_seconds == pytest.approx(6.7)
