"""Ports (interfaces) – depend on these, implement in adapters."""

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

__all__ = [
    "IAudioJoiner",
    "ICredentialStore",
    "IDurationProbe",
    "IObjectStorage",
    "IPipelineObserver",
    "ITranscriptionProvider",
    "ITTSProvider",
    "IVideoRenderer",
]
