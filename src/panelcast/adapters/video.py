"""IVideoRenderer adapters: Shotstack edit API and a local MoviePy renderer."""

import asyncio
import logging
import os
import tempfile
import uuid
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urlparse

import httpx
from moviepy import AudioFileClip, CompositeVideoClip, ImageClip

from panelcast import config
from panelcast.adapters.http import dig, json_body, local_path, send
from panelcast.domain.errors import PermanentProviderError
from panelcast.domain.models import ProviderJobStatus
from panelcast.domain.timeline import RenderRequest
from panelcast.ports.interfaces import IVideoRenderer

logger = logging.getLogger(__name__)

RENDER_VOCABULARY: Dict[str, str] = {
    "queued": "queued",
    "fetching": "fetching",
    "preprocessing": "fetching",
    "rendering": "rendering",
    "saving": "saving",
    "done": "done",
    "failed": "failed",
}


class ShotstackRenderer(IVideoRenderer):
    name = "shotstack-edit"

    def __init__(
        self,
        *,
        api_key: str = config.SHOTSTACK_API_KEY,
        base_url: str = config.SHOTSTACK_EDIT_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ValueError("SHOTSTACK_API_KEY is not set")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def submit(self, request: RenderRequest) -> str:
        response = await send(
            "POST",
            f"{self._base_url}/render",
            provider=self.name,
            timeout=self._timeout,
            transport=self._transport,
            headers=self._headers(),
            json=request.to_payload(),
        )
        job_id = dig(json_body(response, self.name), "response", "id")
        if not job_id:
            raise PermanentProviderError(f"{self.name} returned no render id", provider=self.name)
        return str(job_id)

    async def get_status(self, job_id: str) -> ProviderJobStatus:
        response = await send(
            "GET",
            f"{self._base_url}/render/{job_id}",
            provider=self.name,
            timeout=self._timeout,
            transport=self._transport,
            headers=self._headers(),
        )
        payload = json_body(response, self.name)
        body = dig(payload, "response")
        if not isinstance(body, dict):
            body = {}
        raw_status = str(body.get("status") or "").lower()
        stage = RENDER_VOCABULARY.get(raw_status)
        if stage is None:
            logger.debug("Unmapped render status %r", raw_status)
            stage = "rendering"
        return ProviderJobStatus(
            stage=stage,
            result_url=body.get("url"),
            error=body.get("error"),
            raw=payload,
        )


class MoviePyRenderer(IVideoRenderer):
    """Renders locally; the "job" is a background task in the current event loop."""

    def __init__(
        self,
        *,
        output_dir: str = config.OUTPUT_DIR,
        download_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._output_dir = output_dir
        self._download_timeout = download_timeout
        self._transport = transport
        self._jobs: Dict[str, asyncio.Task] = {}

    async def submit(self, request: RenderRequest) -> str:
        job_id = uuid.uuid4().hex
        self._jobs[job_id] = asyncio.ensure_future(self._render(request))
        return job_id

    async def get_status(self, job_id: str) -> ProviderJobStatus:
        task = self._jobs.get(job_id)
        if task is None:
            raise PermanentProviderError(f"Unknown render job {job_id}", provider="moviepy")
        if not task.done():
            return ProviderJobStatus(stage="rendering")
        del self._jobs[job_id]
        if task.cancelled():
            return ProviderJobStatus(stage="failed", error="Render cancelled")
        error = task.exception()
        if error is not None:
            return ProviderJobStatus(stage="failed", error=str(error))
        return ProviderJobStatus(stage="done", progress=100, result_url=task.result())

    async def cancel(self, job_id: str) -> None:
        task = self._jobs.pop(job_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Render job %s cancelled", job_id)
        except Exception as exc:
            logger.warning("Render job %s ended with %s before it was cancelled", job_id, exc)

    async def _fetch(self, ref: str, tmp: str, name: str) -> str:
        path = local_path(ref)
        if path is not None:
            return path
        suffix = os.path.splitext(urlparse(ref).path)[1] or ".bin"
        target = os.path.join(tmp, f"{name}{suffix}")
        async with httpx.AsyncClient(timeout=self._download_timeout, transport=self._transport) as client:
            response = await client.get(ref)
            response.raise_for_status()
        with open(target, "wb") as f:
            f.write(response.content)
        return target

    async def _render(self, request: RenderRequest) -> str:
        os.makedirs(self._output_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = os.path.join(self._output_dir, f"panelcast_{timestamp}.mp4")
        if request.caption_ref:
            logger.info("Local renderer does not burn in captions; subtitles stay at %s", request.caption_ref)
        with tempfile.TemporaryDirectory(prefix="panelcast_render_") as tmp:
            images = [
                await self._fetch(seg.image_ref, tmp, f"image_{i:03d}")
                for i, seg in enumerate(request.video_track_segments)
            ]
            audio = await self._fetch(request.audio_ref, tmp, "audio")
            await asyncio.to_thread(_write_video, request, images, audio, output_path)
        logger.info("Video saved to: %s", output_path)
        return output_path


def _cover(clip: ImageClip, width: int, height: int) -> ImageClip:
    scale = max(width / clip.w, height / clip.h)
    clip = clip.resized(scale)
    return clip.cropped(x_center=clip.w / 2, y_center=clip.h / 2, width=width, height=height)


def _write_video(request: RenderRequest, images: List[str], audio_path: str, output_path: str) -> None:
    width, height = request.output.width, request.output.height
    clips = [
        _cover(ImageClip(path), width, height)
        .with_start(seg.start_offset_seconds)
        .with_duration(seg.duration_seconds)
        for path, seg in zip(images, request.video_track_segments)
    ]
    audio = AudioFileClip(audio_path)
    video = (
        CompositeVideoClip(clips, size=(width, height))
        .with_duration(request.total_duration_seconds)
        .with_audio(audio)
    )
    try:
        video.write_videofile(
            output_path,
            fps=request.output.fps,
            codec="libx264",
            audio_codec="aac",
            preset="fast",
            logger=None,
        )
    finally:
        video.close()
        audio.close()
