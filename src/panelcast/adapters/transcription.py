"""ITranscriptionProvider adapter for the Shotstack ingest API (SRT subtitles)."""

import logging
from typing import Dict, Optional, Tuple

import httpx

from panelcast import config
from panelcast.adapters.http import as_percent, dig, json_body, send
from panelcast.domain.errors import PermanentProviderError
from panelcast.domain.models import ProviderJobStatus
from panelcast.ports.interfaces import ITranscriptionProvider

logger = logging.getLogger(__name__)

ANY = "*"

# (source status, transcription output status) -> canonical stage.
# Exact pairs win over the source-status wildcard.
INGEST_STAGES: Dict[Tuple[str, Optional[str]], str] = {
    ("queued", ANY): "uploading",
    ("importing", ANY): "uploading",
    ("uploading", ANY): "uploading",
    ("uploaded", ANY): "uploading",
    ("processing", "processing"): "transcribing",
    ("processing", "uploaded"): "preparing",
    ("processing", None): "preparing",
    ("processing", ANY): "analyzing",
    ("ready", "ready"): "ready",
    ("ready", "processing"): "transcribing",
    ("ready", "queued"): "preparing",
    ("ready", None): "preparing",
    ("ready", ANY): "analyzing",
    ("failed", ANY): "failed",
}


def ingest_stage(source_status: Optional[str], transcription_status: Optional[str]) -> str:
    source_status = str(source_status or "").lower()
    transcription_status = str(transcription_status).lower() if transcription_status else None
    if transcription_status == "failed":
        return "failed"
    stage = INGEST_STAGES.get((source_status, transcription_status))
    if stage is None:
        stage = INGEST_STAGES.get((source_status, ANY))
    if stage is None:
        logger.debug("Unmapped ingest status %r/%r", source_status, transcription_status)
        stage = "preparing"
    return stage


class ShotstackTranscriptionProvider(ITranscriptionProvider):
    name = "shotstack-ingest"

    def __init__(
        self,
        *,
        api_key: str = config.SHOTSTACK_API_KEY,
        base_url: str = config.SHOTSTACK_INGEST_URL,
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

    async def submit(self, audio_url: str) -> str:
        response = await send(
            "POST",
            f"{self._base_url}/sources",
            provider=self.name,
            timeout=self._timeout,
            transport=self._transport,
            headers=self._headers(),
            json={"url": audio_url, "outputs": {"transcription": {"format": "srt"}}},
        )
        job_id = dig(json_body(response, self.name), "data", "id")
        if not job_id:
            raise PermanentProviderError(f"{self.name} returned no source id", provider=self.name)
        return str(job_id)

    async def get_status(self, job_id: str) -> ProviderJobStatus:
        response = await send(
            "GET",
            f"{self._base_url}/sources/{job_id}",
            provider=self.name,
            timeout=self._timeout,
            transport=self._transport,
            headers=self._headers(),
        )
        payload = json_body(response, self.name)
        attributes = dig(payload, "data", "attributes")
        if not isinstance(attributes, dict):
            attributes = {}
        transcription = dig(attributes, "outputs", "transcription")
        if not isinstance(transcription, dict):
            transcription = {}
        stage = ingest_stage(attributes.get("status"), transcription.get("status"))
        return ProviderJobStatus(
            stage=stage,
            progress=as_percent(attributes.get("progress")),
            result_url=transcription.get("url") if stage == "ready" else None,
            error=attributes.get("error") or transcription.get("error"),
            raw=payload,
        )

    async def download(self, url: str) -> bytes:
        response = await send("GET", url, provider=self.name, timeout=self._timeout, transport=self._transport)
        return response.content
