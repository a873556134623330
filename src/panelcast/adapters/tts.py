"""ITTSProvider adapters: WellSaid Labs (key pool) and ElevenLabs (SDK)."""

import logging
from typing import Optional

import httpx
from elevenlabs.client import AsyncElevenLabs
from elevenlabs.core.api_error import ApiError

from panelcast import config
from panelcast.adapters.http import classify_provider_error, send
from panelcast.domain.errors import AuthError, PermanentProviderError
from panelcast.domain.models import Credential
from panelcast.ports.interfaces import ITTSProvider

logger = logging.getLogger(__name__)


class WellSaidTTSProvider(ITTSProvider):
    """Streaming TTS endpoint authenticated with pooled API keys."""

    name = "wellsaid"

    def __init__(
        self,
        *,
        api_url: str = config.WELLSAID_API_URL,
        speaker_id: int = config.WELLSAID_SPEAKER_ID,
        model: str = config.WELLSAID_MODEL,
        timeout: float = config.TTS_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_url = api_url
        self._speaker_id = speaker_id
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def synthesize(self, text: str, credential: Optional[Credential] = None) -> bytes:
        if credential is None:
            raise AuthError("WellSaid requests need an API key", provider=self.name)
        response = await send(
            "POST",
            self._api_url,
            provider=self.name,
            timeout=self._timeout,
            transport=self._transport,
            json={"text": text, "speaker_id": self._speaker_id, "model": self._model},
            headers={
                "X-Api-Key": credential.secret,
                "Content-Type": "application/json",
                "Accept": "audio/mpeg",
            },
        )
        if not response.content:
            raise PermanentProviderError(f"{self.name} returned empty audio", provider=self.name)
        logger.debug("WellSaid: %d chars -> %d bytes (key %s)", len(text), len(response.content), credential.credential_id)
        return response.content


class ElevenLabsTTSProvider(ITTSProvider):
    """ElevenLabs via the official async client; authenticates with its own API key."""

    name = "elevenlabs"
    uses_credential_pool = False

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        voice_id: str = config.ELEVENLABS_VOICE_ID,
        model_id: str = config.ELEVENLABS_MODEL_ID,
        client: Optional[AsyncElevenLabs] = None,
    ):
        self._voice_id = voice_id
        self._model_id = model_id
        if client is None:
            api_key = api_key or config.ELEVENLABS_API_KEY
            if not api_key:
                raise ValueError("ELEVENLABS_API_KEY is not set")
            client = AsyncElevenLabs(api_key=api_key)
        self._client = client

    async def synthesize(self, text: str, credential: Optional[Credential] = None) -> bytes:
        audio = bytearray()
        try:
            async for chunk in self._client.text_to_speech.convert(
                voice_id=self._voice_id,
                text=text,
                model_id=self._model_id,
            ):
                if chunk:
                    audio.extend(chunk)
        except ApiError as exc:
            raise classify_provider_error(exc.status_code, str(exc.body), self.name) from exc
        except httpx.TransportError as exc:
            raise PermanentProviderError(f"{self.name} request failed: {exc}", provider=self.name) from exc
        if not audio:
            raise PermanentProviderError(f"{self.name} returned empty audio", provider=self.name)
        return bytes(audio)
