import asyncio
import json
import os
from contextlib import contextmanager

import httpx
import pytest

from panelcast.adapters import media
from panelcast.adapters.media import FFmpegAudioJoiner, FFprobeDurationProbe, _manifest_line
from panelcast.domain.errors import ConcatenationFailed, ProbeFailure
from panelcast.domain.models import AudioArtifact


class FakeProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr
        self._hang = hang
        self.killed = False

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(10)
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True

    async def wait(self):
        return self.returncode


class FakeTools:
    """Stands in for ffprobe/ffmpeg; the concat command really writes its output file."""

    def __init__(self, duration="2.5", codecs=None, ffmpeg_code=0, ffmpeg_stderr=b"", hang=False, missing=False):
        self.duration = duration
        self.codecs = list(codecs or [])
        self.ffmpeg_code = ffmpeg_code
        self.ffmpeg_stderr = ffmpeg_stderr
        self.hang = hang
        self.missing = missing
        self.commands = []
        self.manifest = None
        self.output_path = None
        self.processes = []

    async def __call__(self, *args, **kwargs):
        self.commands.append(list(args))
        if self.missing:
            raise FileNotFoundError(args[0])
        if args[0] == "ffprobe":
            process = self._ffprobe(args)
        else:
            process = self._ffmpeg(args)
        self.processes.append(process)
        return process

    def _ffprobe(self, args):
        if self.hang:
            return FakeProcess(hang=True)
        if "-select_streams" in args:
            codec = self.codecs.pop(0) if self.codecs else "mp3"
            streams = {"streams": [{"codec_name": codec, "sample_rate": "44100", "channels": 1}]}
            return FakeProcess(stdout=json.dumps(streams).encode())
        if self.duration is None:
            return FakeProcess(returncode=1, stderr=b"Invalid data found when processing input")
        return FakeProcess(stdout=json.dumps({"format": {"duration": self.duration}}).encode())

    def _ffmpeg(self, args):
        manifest = args[args.index("-i") + 1]
        self.output_path = args[-1]
        with open(manifest, encoding="utf-8") as f:
            self.manifest = f.read()
        if self.ffmpeg_code:
            return FakeProcess(returncode=self.ffmpeg_code, stderr=self.ffmpeg_stderr)
        parts = [line[len("file '"):-1] for line in self.manifest.splitlines()]
        with open(self.output_path, "wb") as out:
            for part in parts:
                with open(part, "rb") as f:
                    out.write(f.read())
        return FakeProcess()


@pytest.fixture
def tools(monkeypatch):
    fake = FakeTools()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake)
    return fake


def _probe(**kwargs):
    return FFprobeDurationProbe(ffprobe="ffprobe", **kwargs)


def _joiner(**kwargs):
    return FFmpegAudioJoiner(ffmpeg="ffmpeg", probe=_probe(), **kwargs)


def test_measure_parses_duration(tools):
    assert asyncio.run(_probe().measure(AudioArtifact(data=b"mp3"))) == 2.5
    command = tools.commands[0]
    assert command[:6] == ["ffprobe", "-v", "error", "-show_entries", "format=duration", "-of"]


def test_measure_raises_on_tool_error(tools):
    tools.duration = None
    with pytest.raises(ProbeFailure, match="Invalid data"):
        asyncio.run(_probe().measure(AudioArtifact(data=b"mp3")))


@pytest.mark.parametrize("duration", ["N/A", "0.0", "-1"])
def test_unusable_durations_fall_back(tools, duration):
    tools.duration = duration
    assert asyncio.run(_probe(fallback_seconds=5.0).probe(AudioArtifact(data=b"mp3"))) == 5.0


def test_missing_binary_falls_back(tools):
    tools.missing = True
    assert asyncio.run(_probe().probe(AudioArtifact(data=b"mp3"))) == 5.0


def test_probe_timeout_kills_process(tools):
    tools.hang = True
    assert asyncio.run(_probe(timeout=0.01).probe(AudioArtifact(data=b"mp3"))) == 5.0
    assert tools.processes[0].killed


def test_url_artifact_is_probed_in_place(tools):
    asyncio.run(_probe().measure(AudioArtifact(url="https://cdn/a.mp3")))
    assert tools.commands[0][-1] == "https://cdn/a.mp3"


def test_join_single_artifact_is_identity(tools):
    artifact = AudioArtifact(data=b"only")
    assert asyncio.run(_joiner().join([artifact])) is artifact
    assert tools.commands == []


def test_join_empty_fails(tools):
    with pytest.raises(ConcatenationFailed):
        asyncio.run(_joiner().join([]))


def test_join_stream_copies_in_order_and_cleans_up(tools):
    parts = [AudioArtifact(data=b"one|"), AudioArtifact(data=b"two|"), AudioArtifact(data=b"three")]

    joined = asyncio.run(_joiner().join(parts))

    assert joined.data == b"one|two|three"
    assert joined.extension == "mp3"
    lines = tools.manifest.splitlines()
    assert [os.path.basename(line.rstrip("'")) for line in lines] == [
        "part_0000.mp3", "part_0001.mp3", "part_0002.mp3",
    ]
    ffmpeg = tools.commands[-1]
    assert ffmpeg[ffmpeg.index("-c") + 1] == "copy"
    assert not os.path.exists(os.path.dirname(tools.output_path))


def test_join_failure_carries_diagnostics(tools):
    tools.ffmpeg_code = 1
    tools.ffmpeg_stderr = b"part_0001.mp3: Invalid data found when processing input"
    with pytest.raises(ConcatenationFailed) as excinfo:
        asyncio.run(_joiner().join([AudioArtifact(data=b"a"), AudioArtifact(data=b"b")]))
    assert "Invalid data" in excinfo.value.diagnostics
    assert not os.path.exists(os.path.dirname(tools.output_path))


def test_join_reencodes_mismatched_codecs(tools, monkeypatch):
    tools.codecs = ["mp3", "pcm_s16le"]
    calls = []

    def fake_reencode(paths, output_path, fmt):
        calls.append((len(paths), fmt))
        with open(output_path, "wb") as f:
            f.write(b"reencoded")

    monkeypatch.setattr(media, "_reencode", fake_reencode)
    parts = [AudioArtifact(data=b"a"), AudioArtifact(data=b"b", extension="wav", content_type="audio/wav")]

    joined = asyncio.run(_joiner().join(parts))

    assert joined.data == b"reencoded"
    assert calls == [(2, "mp3")]
    assert not any(cmd[0] == "ffmpeg" for cmd in tools.commands)


def test_join_fetches_hosted_artifacts(tools):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"remote|"))
    parts = [AudioArtifact(url="https://cdn/a.mp3"), AudioArtifact(data=b"local")]

    joined = asyncio.run(_joiner(transport=transport).join(parts))

    assert joined.data == b"remote|local"


def test_manifest_escapes_quotes():
    assert _manifest_line("/tmp/it's.mp3") == "file '/tmp/it'\\''s.mp3'"


def test_probing_twice_is_stable(tools):
    probe = _probe()
    artifact = AudioArtifact(data=b"mp3")
    assert asyncio.run(probe.probe(artifact)) == asyncio.run(probe.probe(artifact))


def test_staging_failure_is_a_probe_failure(tools, monkeypatch):
    @contextmanager
    def disk_full(artifact):
        raise OSError(28, "No space left on device")
        yield

    monkeypatch.setattr(media, "materialized", disk_full)
    with pytest.raises(ProbeFailure, match="No space left"):
        asyncio.run(_probe().measure(AudioArtifact(data=b"mp3")))
    assert asyncio.run(_probe().probe(AudioArtifact(data=b"mp3"))) == 5.0
    assert tools.commands == []
