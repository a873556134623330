import asyncio
from typing import Dict, List, Optional, Sequence

import pytest

from panelcast.adapters.credentials import InMemoryCredentialStore
from panelcast.application.credentials import CredentialPool
from panelcast.application.synthesis import SpeechSynthesizer
from panelcast.domain.errors import AuthError, PermanentProviderError, ProbeFailure, StorageError
from panelcast.domain.models import AudioArtifact, Credential, ProviderJobStatus
from panelcast.domain.retry import RetryPolicy
from panelcast.ports.interfaces import (
    IAudioJoiner,
    IDurationProbe,
    IObjectStorage,
    IPipelineObserver,
    ITranscriptionProvider,
    ITTSProvider,
    IVideoRenderer,
)


def audio_for(text: str) -> bytes:
    return f"audio:{text}".encode()


class FakeTTS(ITTSProvider):
    """Returns audio_for(text). ``script`` maps text to outcomes consumed one per call;
    ``delays`` maps text to a sleep so completion order can be forced."""

    def __init__(self, script=None, delays=None, fail=(), reject_secrets=(), uses_pool=True):
        self.script: Dict[str, List] = {k: list(v) for k, v in (script or {}).items()}
        self.delays = delays or {}
        self.fail = set(fail)
        self.reject_secrets = set(reject_secrets)
        self.uses_credential_pool = uses_pool
        self.calls: List[tuple] = []

    async def synthesize(self, text: str, credential: Optional[Credential] = None) -> bytes:
        self.calls.append((text, credential.secret if credential else None))
        await asyncio.sleep(self.delays.get(text, 0))
        if credential is not None and credential.secret in self.reject_secrets:
            raise AuthError(f"key {credential.credential_id} rejected", status_code=401)
        if text in self.fail:
            raise PermanentProviderError(f"cannot synthesize {text!r}", status_code=400)
        queue = self.script.get(text)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return audio_for(text)


class FakeJoiner(IAudioJoiner):
    def __init__(self):
        self.calls: List[List[bytes]] = []

    async def join(self, artifacts: Sequence[AudioArtifact]) -> AudioArtifact:
        self.calls.append([a.data for a in artifacts])
        if len(artifacts) == 1:
            return artifacts[0]
        return AudioArtifact(data=b"+".join(a.data for a in artifacts))


class FakeProbe(IDurationProbe):
    """Durations keyed by audio bytes; joined audio measures as the sum of its parts."""

    def __init__(self, durations=None, fallback=5.0, joined_offset=0.0):
        self.durations: Dict[bytes, float] = dict(durations or {})
        self.fallback = fallback
        self.joined_offset = joined_offset

    async def measure(self, artifact: AudioArtifact) -> float:
        parts = artifact.data.split(b"+")
        if len(parts) > 1:
            return sum([await self.probe(AudioArtifact(data=p)) for p in parts]) + self.joined_offset
        if artifact.data not in self.durations:
            raise ProbeFailure(f"no duration for {artifact.data!r}")
        return self.durations[artifact.data]

    async def probe(self, artifact: AudioArtifact) -> float:
        try:
            return await self.measure(artifact)
        except ProbeFailure:
            return self.fallback


class FakeStorage(IObjectStorage):
    def __init__(self, fail_uploads=False):
        self.objects: Dict[str, tuple] = {}
        self.fail_uploads = fail_uploads

    async def upload(self, data: bytes, destination_path: str, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageError("bucket unavailable")
        self.objects[destination_path] = (data, content_type)
        return f"https://storage.test/{destination_path}"

    async def download(self, url: str) -> bytes:
        path = url.replace("https://storage.test/", "")
        if path not in self.objects:
            raise StorageError(f"missing {url}")
        return self.objects[path][0]


class ScriptedRemote:
    """Replays ProviderJobStatus values (or exceptions) one per poll, repeating the last."""

    def __init__(self, statuses, job_id="job-1"):
        self.statuses = list(statuses)
        self.job_id = job_id
        self.polls = 0

    async def get_status(self, job_id: str) -> ProviderJobStatus:
        assert job_id == self.job_id
        index = min(self.polls, len(self.statuses) - 1)
        self.polls += 1
        outcome = self.statuses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeTranscriptionProvider(ScriptedRemote, ITranscriptionProvider):
    def __init__(self, statuses, subtitle=b"1\n00:00:00,000 --> 00:00:02,000\nHello world.\n",
                 submit_error=None, download_error=None):
        super().__init__(statuses)
        self.subtitle = subtitle
        self.submit_error = submit_error
        self.download_error = download_error
        self.submitted: List[str] = []
        self.downloads: List[str] = []

    async def submit(self, audio_url: str) -> str:
        if self.submit_error:
            raise self.submit_error
        self.submitted.append(audio_url)
        return self.job_id

    async def download(self, url: str) -> bytes:
        self.downloads.append(url)
        if self.download_error:
            raise self.download_error
        return self.subtitle


class FakeRenderer(ScriptedRemote, IVideoRenderer):
    def __init__(self, statuses):
        super().__init__(statuses, job_id="render-1")
        self.requests = []
        self.cancelled = []

    async def submit(self, request) -> str:
        self.requests.append(request)
        return self.job_id

    async def cancel(self, job_id: str) -> None:
        self.cancelled.append(job_id)


class RecordingObserver(IPipelineObserver):
    def __init__(self):
        self.job_events: List[tuple] = []
        self.transcription: List[tuple] = []
        self.render: List[tuple] = []

    def on_job_state_change(self, index, state, error=None):
        self.job_events.append((index, state))

    def on_transcription_progress(self, job):
        self.transcription.append((job.state, job.stage, job.progress_percent))

    def on_render_progress(self, job):
        self.render.append((job.state, job.stage, job.progress_percent))


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def joiner():
    return FakeJoiner()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def observer():
    return RecordingObserver()


def make_synthesizer(tts, joiner, secrets=("key-a",), sleep=None, usage_limit=50, **kwargs):
    store = InMemoryCredentialStore(secrets)
    pool = CredentialPool(store, usage_limit=usage_limit)
    synthesizer = SpeechSynthesizer(
        tts,
        joiner,
        pool,
        retry_policy=kwargs.pop("retry_policy", RetryPolicy(2.0, 30.0, 5, 10)),
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )
    return synthesizer, store
