"""
Port interfaces (Dependency Inversion).
Implement these in adapters; the application layer depends only on these abstractions.
Every network or subprocess call is a coroutine so synthesis jobs can share one event loop.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from panelcast.domain.models import (
    AudioArtifact,
    Credential,
    CredentialStats,
    JobStatus,
    ProviderJobStatus,
    RenderJob,
    TranscriptionJob,
    UsageUpdate,
)
from panelcast.domain.timeline import RenderRequest


class ITTSProvider(ABC):
    """Text-to-speech: one request, one audio clip."""

    #: False for providers that authenticate on their own (no key pool).
    uses_credential_pool: bool = True

    @abstractmethod
    async def synthesize(self, text: str, credential: Optional[Credential] = None) -> bytes:
        """Return raw audio bytes.

        Raises TransientProviderError on rate limiting, AuthError when the
        credential is rejected, PermanentProviderError for anything else.
        """
        pass


class ICredentialStore(ABC):
    """Backing store of the API-key pool. Every mutation must be atomic."""

    @abstractmethod
    async def try_acquire_least_used(self, usage_limit: int) -> Optional[Credential]:
        """Valid credential with the lowest use count below ``usage_limit``, or None."""
        pass

    @abstractmethod
    async def mark_invalid(self, credential_id: str) -> None:
        pass

    @abstractmethod
    async def increment_usage(self, credential_id: str, usage_limit: int) -> UsageUpdate:
        """Atomically add one use; mark invalid once the count reaches ``usage_limit``."""
        pass

    @abstractmethod
    async def add(self, secrets: Sequence[str]) -> int:
        """Insert new secrets, ignoring ones already stored. Returns the number inserted."""
        pass

    @abstractmethod
    async def statistics(self, usage_limit: int) -> CredentialStats:
        pass


class IObjectStorage(ABC):
    """Durable storage that hands back retrievable URLs."""

    @abstractmethod
    async def upload(self, data: bytes, destination_path: str, content_type: str) -> str:
        """Store ``data`` at ``destination_path``; return its public URL. Raises StorageError."""
        pass

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """Fetch bytes from a URL this storage (or any public host) serves."""
        pass


class IDurationProbe(ABC):
    """Measures playback duration of an audio artifact."""

    @abstractmethod
    async def measure(self, artifact: AudioArtifact) -> float:
        """Strict measurement. Raises ProbeFailure."""
        pass

    @abstractmethod
    async def probe(self, artifact: AudioArtifact) -> float:
        """Like measure() but never raises; returns a fallback duration instead."""
        pass


class IAudioJoiner(ABC):
    """Concatenates ordered audio artifacts into one."""

    @abstractmethod
    async def join(self, artifacts: Sequence[AudioArtifact]) -> AudioArtifact:
        """Raises ConcatenationFailed."""
        pass


class ITranscriptionProvider(ABC):
    """Remote speech-to-subtitle service."""

    @abstractmethod
    async def submit(self, audio_url: str) -> str:
        """Start a transcription job; return its id."""
        pass

    @abstractmethod
    async def get_status(self, job_id: str) -> ProviderJobStatus:
        """One poll, translated into the canonical transcription stages."""
        pass

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """Fetch the finished subtitle artifact."""
        pass


class IVideoRenderer(ABC):
    """Remote (or local) timeline renderer."""

    @abstractmethod
    async def submit(self, request: RenderRequest) -> str:
        """Start rendering; return a job id."""
        pass

    @abstractmethod
    async def get_status(self, job_id: str) -> ProviderJobStatus:
        """One poll, translated into the canonical render stages."""
        pass

    async def cancel(self, job_id: str) -> None:
        """Abandon a job the caller stopped waiting for. Remote renderers may ignore this."""
        pass


class IPipelineObserver:
    """Progress events. Called synchronously from the event loop; override what you need."""

    def on_job_state_change(self, index: int, state: JobStatus, error: Optional[str] = None) -> None:
        pass

    def on_transcription_progress(self, job: TranscriptionJob) -> None:
        pass

    def on_render_progress(self, job: RenderJob) -> None:
        pass
