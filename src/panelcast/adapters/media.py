"""
Local media utilities: ffprobe duration probe and ffmpeg concat joiner.

Binaries are resolved the way pydub resolves them, so an environment that can
run pydub can run these adapters.
"""

import asyncio
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

import httpx
from pydub import AudioSegment as PydubAudio
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError
from pydub.utils import get_encoder_name, get_prober_name

from panelcast import config
from panelcast.domain.errors import ConcatenationFailed, ProbeFailure
from panelcast.domain.models import AudioArtifact
from panelcast.ports.interfaces import IAudioJoiner, IDurationProbe

logger = logging.getLogger(__name__)


async def run_tool(args: Sequence[str], timeout: float) -> Tuple[int, bytes, bytes]:
    """Run a media tool; returns (returncode, stdout, stderr).

    Raises FileNotFoundError if the binary is missing and asyncio.TimeoutError
    after killing the process on timeout.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return process.returncode, stdout, stderr


@contextmanager
def materialized(artifact: AudioArtifact) -> Iterator[str]:
    """Yield something a media tool can open: a temp file for bytes, else the URL."""
    if not artifact.data:
        yield artifact.url
        return
    with tempfile.TemporaryDirectory(prefix="panelcast_probe_") as tmp:
        path = os.path.join(tmp, f"input.{artifact.extension}")
        with open(path, "wb") as f:
            f.write(artifact.data)
        yield path


class FFprobeDurationProbe(IDurationProbe):
    def __init__(
        self,
        *,
        ffprobe: Optional[str] = None,
        timeout: float = config.PROBE_TIMEOUT,
        fallback_seconds: float = config.PROBE_FALLBACK_SECONDS,
    ):
        self._ffprobe = ffprobe or get_prober_name()
        self._timeout = timeout
        self.fallback_seconds = fallback_seconds

    async def measure(self, artifact: AudioArtifact) -> float:
        try:
            code, stdout, stderr = await self._run_ffprobe(artifact)
        except OSError as exc:
            raise ProbeFailure(f"Could not stage audio for {self._ffprobe}: {exc}") from exc
        if code != 0:
            raise ProbeFailure(f"{self._ffprobe} exited with {code}: {stderr.decode(errors='replace').strip()}")
        try:
            duration = float(json.loads(stdout)["format"]["duration"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ProbeFailure(f"Unparseable {self._ffprobe} output: {stdout[:200]!r}") from exc
        if not duration > 0:
            raise ProbeFailure(f"Non-positive duration {duration}")
        return duration

    async def _run_ffprobe(self, artifact: AudioArtifact):
        with materialized(artifact) as source:
            args = [
                self._ffprobe, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "json",
                source,
            ]
            try:
                code, stdout, stderr = await run_tool(args, self._timeout)
            except FileNotFoundError as exc:
                raise ProbeFailure(f"{self._ffprobe} not found") from exc
            except asyncio.TimeoutError as exc:
                raise ProbeFailure(f"{self._ffprobe} timed out after {self._timeout}s") from exc
        return code, stdout, stderr

    async def probe(self, artifact: AudioArtifact) -> float:
        try:
            return await self.measure(artifact)
        except ProbeFailure as exc:
            logger.warning("Duration probe failed (%s); using fallback %.1fs", exc, self.fallback_seconds)
            return self.fallback_seconds

    async def stream_signature(self, path: str) -> Optional[Tuple[str, str, str]]:
        """(codec, sample_rate, channels) of the first audio stream, or None if unknown."""
        args = [
            self._ffprobe, "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "stream=codec_name,sample_rate,channels",
            "-of", "json",
            path,
        ]
        try:
            code, stdout, _ = await run_tool(args, self._timeout)
            if code != 0:
                return None
            streams = json.loads(stdout).get("streams") or []
        except (FileNotFoundError, asyncio.TimeoutError, ValueError):
            return None
        if not streams:
            return None
        stream = streams[0]
        return (str(stream.get("codec_name")), str(stream.get("sample_rate")), str(stream.get("channels")))


def _manifest_line(path: str) -> str:
    escaped = path.replace("'", "'\\''")
    return f"file '{escaped}'"


def _reencode(paths: List[str], output_path: str, fmt: str) -> None:
    combined = PydubAudio.empty()
    for path in paths:
        combined += PydubAudio.from_file(path)
    combined.export(output_path, format=fmt)


class FFmpegAudioJoiner(IAudioJoiner):
    """Lossless concat-demuxer join; re-encodes through pydub only when codecs differ."""

    def __init__(
        self,
        *,
        ffmpeg: Optional[str] = None,
        probe: Optional[FFprobeDurationProbe] = None,
        timeout: float = config.CONCAT_TIMEOUT,
        download_timeout: float = config.TTS_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._ffmpeg = ffmpeg or get_encoder_name()
        self._probe = probe or FFprobeDurationProbe()
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._transport = transport

    async def join(self, artifacts: Sequence[AudioArtifact]) -> AudioArtifact:
        if not artifacts:
            raise ConcatenationFailed("Nothing to join")
        if len(artifacts) == 1:
            return artifacts[0]

        first = artifacts[0]
        with tempfile.TemporaryDirectory(prefix="panelcast_join_") as tmp:
            paths = []
            for i, artifact in enumerate(artifacts):
                path = os.path.join(tmp, f"part_{i:04d}.{artifact.extension}")
                with open(path, "wb") as f:
                    f.write(await self._bytes_of(artifact))
                paths.append(path)
            output_path = os.path.join(tmp, f"joined.{first.extension}")

            if await self._codecs_match(paths):
                await self._stream_copy(tmp, paths, output_path)
            else:
                logger.info("Input codecs differ, re-encoding %d parts", len(paths))
                try:
                    await asyncio.to_thread(_reencode, paths, output_path, first.extension)
                except (CouldntDecodeError, CouldntEncodeError, OSError) as exc:
                    raise ConcatenationFailed(f"Re-encode failed: {exc}", str(exc)) from exc

            with open(output_path, "rb") as f:
                data = f.read()
        if not data:
            raise ConcatenationFailed("Joined output is empty")
        logger.debug("Joined %d parts into %d bytes", len(artifacts), len(data))
        return AudioArtifact(data=data, extension=first.extension, content_type=first.content_type)

    async def _bytes_of(self, artifact: AudioArtifact) -> bytes:
        if artifact.data:
            return artifact.data
        try:
            async with httpx.AsyncClient(timeout=self._download_timeout, transport=self._transport) as client:
                response = await client.get(artifact.url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ConcatenationFailed(f"Could not fetch {artifact.url}: {exc}") from exc
        return response.content

    async def _codecs_match(self, paths: List[str]) -> bool:
        signatures = {await self._probe.stream_signature(path) for path in paths}
        # unknown signatures: attempt the copy and let ffmpeg decide
        return len(signatures) == 1

    async def _stream_copy(self, tmp: str, paths: List[str], output_path: str) -> None:
        manifest = os.path.join(tmp, "concat.txt")
        with open(manifest, "w", encoding="utf-8") as f:
            f.write("\n".join(_manifest_line(p) for p in paths) + "\n")
        args = [
            self._ffmpeg, "-y", "-hide_banner", "-loglevel", "error",
            "-f", "concat", "-safe", "0",
            "-i", manifest,
            "-c", "copy",
            output_path,
        ]
        try:
            code, _, stderr = await run_tool(args, self._timeout)
        except FileNotFoundError as exc:
            raise ConcatenationFailed(f"{self._ffmpeg} not found") from exc
        except asyncio.TimeoutError as exc:
            raise ConcatenationFailed(f"{self._ffmpeg} timed out after {self._timeout}s") from exc
        if code != 0:
            diagnostics = stderr.decode(errors="replace").strip()
            raise ConcatenationFailed(f"{self._ffmpeg} exited with {code}", diagnostics)
        if not os.path.exists(output_path):
            raise ConcatenationFailed(f"{self._ffmpeg} produced no output")
