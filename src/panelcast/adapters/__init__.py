"""
Adapters – concrete implementations of ports.
Which provider backs each port is chosen from config; pass overrides
(tts_provider=..., storage=..., etc.) for tests or alternative providers.
"""

import logging

from panelcast import config
from panelcast.adapters.credentials import InMemoryCredentialStore, SQLiteCredentialStore
from panelcast.adapters.media import FFmpegAudioJoiner, FFprobeDurationProbe
from panelcast.adapters.progress import LoggingObserver
from panelcast.adapters.transcription import ShotstackTranscriptionProvider
from panelcast.adapters.tts import ElevenLabsTTSProvider, WellSaidTTSProvider
from panelcast.adapters.upload import LocalStorage, SupabaseStorage
from panelcast.adapters.video import MoviePyRenderer, ShotstackRenderer

logger = logging.getLogger(__name__)

__all__ = [
    "ElevenLabsTTSProvider",
    "FFmpegAudioJoiner",
    "FFprobeDurationProbe",
    "InMemoryCredentialStore",
    "LocalStorage",
    "LoggingObserver",
    "MoviePyRenderer",
    "SQLiteCredentialStore",
    "ShotstackRenderer",
    "ShotstackTranscriptionProvider",
    "SupabaseStorage",
    "WellSaidTTSProvider",
    "default_adapters",
    "default_storage",
]


def _tts_provider():
    if config.TTS_PROVIDER == "elevenlabs":
        return ElevenLabsTTSProvider()
    if config.TTS_PROVIDER == "wellsaid":
        return WellSaidTTSProvider()
    raise ValueError(f"Unknown TTS_PROVIDER {config.TTS_PROVIDER!r}")


def default_storage():
    if config.STORAGE_BACKEND == "local":
        return LocalStorage()
    if config.STORAGE_BACKEND == "supabase":
        return SupabaseStorage()
    raise ValueError(f"Unknown STORAGE_BACKEND {config.STORAGE_BACKEND!r}")


def _transcription_provider():
    if not config.SHOTSTACK_API_KEY:
        logger.warning("SHOTSTACK_API_KEY not set; captions disabled")
        return None
    return ShotstackTranscriptionProvider()


def _video_renderer():
    if config.RENDER_BACKEND == "moviepy":
        return MoviePyRenderer()
    if config.RENDER_BACKEND == "shotstack":
        if not config.SHOTSTACK_API_KEY:
            logger.warning("SHOTSTACK_API_KEY not set; rendering disabled")
            return None
        return ShotstackRenderer()
    raise ValueError(f"Unknown RENDER_BACKEND {config.RENDER_BACKEND!r}")


_FACTORIES = {
    "tts_provider": _tts_provider,
    "credential_store": lambda: SQLiteCredentialStore(),
    "duration_probe": FFprobeDurationProbe,
    "audio_joiner": FFmpegAudioJoiner,
    "storage": default_storage,
    "transcription_provider": _transcription_provider,
    "video_renderer": _video_renderer,
    "observer": LoggingObserver,
}


def default_adapters(**overrides):
    """
    Build default adapter instances from config, as VideoPipeline keyword arguments.
    Overridden entries are used as given and their defaults are never constructed.
    """
    adapters = {}
    for name, factory in _FACTORIES.items():
        adapters[name] = overrides.pop(name) if name in overrides else factory()
    adapters.update(overrides)
    return adapters
