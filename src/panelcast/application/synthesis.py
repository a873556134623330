"""Per-job speech synthesis: sub-chunking, rate-limit backoff and credential rotation."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from panelcast import config
from panelcast.application.credentials import CredentialPool
from panelcast.domain.chunking import chunk_text
from panelcast.domain.errors import (
    AuthError,
    CredentialPoolExhausted,
    PermanentProviderError,
    RateLimitExceeded,
    TransientProviderError,
)
from panelcast.domain.models import AudioArtifact, Credential, SynthesisJob
from panelcast.domain.retry import RetryPolicy, RetryState
from panelcast.ports.interfaces import IAudioJoiner, ITTSProvider

logger = logging.getLogger(__name__)


class SpeechSynthesizer:
    """Turns one :class:`SynthesisJob` into one audio artifact.

    Text over ``max_text_length`` is split into sub-chunks that are sent
    strictly one after another and joined before the job completes. Audio
    already produced for earlier sub-chunks is kept across retries and
    credential switches.
    """

    def __init__(
        self,
        tts: ITTSProvider,
        joiner: IAudioJoiner,
        pool: Optional[CredentialPool] = None,
        *,
        max_text_length: int = config.TTS_MAX_TEXT_LENGTH,
        retry_policy: Optional[RetryPolicy] = None,
        sub_chunk_delay: float = config.SUB_CHUNK_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if tts.uses_credential_pool and pool is None:
            raise ValueError(f"{type(tts).__name__} needs a credential pool")
        self._tts = tts
        self._joiner = joiner
        self._pool = pool if tts.uses_credential_pool else None
        self._max_text_length = max_text_length
        self._policy = retry_policy or RetryPolicy()
        self._sub_chunk_delay = sub_chunk_delay
        self._sleep = sleep

    async def synthesize(self, job: SynthesisJob) -> AudioArtifact:
        parts = chunk_text(job.text, self._max_text_length)
        if not parts:
            raise PermanentProviderError(f"Job {job.index} has no text to synthesize")
        if len(parts) > 1:
            logger.info("Job %d: text of %d chars split into %d sub-chunks", job.index, len(job.text), len(parts))

        state = RetryState(self._policy)
        credential: Optional[Credential] = None
        audio: List[AudioArtifact] = []
        for position, part in enumerate(parts):
            if position and self._sub_chunk_delay > 0:
                await self._sleep(self._sub_chunk_delay)
            if credential is None and self._pool is not None:
                credential = await self._acquire(state, "")
            data, credential = await self._synthesize_part(part, job, state, credential)
            audio.append(AudioArtifact(data=data))

        if len(audio) == 1:
            return audio[0]
        return await self._joiner.join(audio)

    async def _acquire(self, state: RetryState, last_message: str) -> Credential:
        if not state.on_new_credential():
            raise CredentialPoolExhausted(self._policy.max_attempts, last_message)
        credential = await self._pool.acquire()
        if credential is None:
            raise CredentialPoolExhausted(state.credential_attempts, last_message or "credential pool is empty")
        return credential

    async def _synthesize_part(
        self,
        text: str,
        job: SynthesisJob,
        state: RetryState,
        credential: Optional[Credential],
    ) -> Tuple[bytes, Optional[Credential]]:
        """Returns the audio and the credential to continue with (None once it is retired)."""
        while True:
            try:
                data = await self._tts.synthesize(text, credential)
            except TransientProviderError as exc:
                delay = state.on_rate_limited()
                if delay is None:
                    raise RateLimitExceeded(self._policy.max_rate_limit_retries, str(exc)) from exc
                job.attempt += 1
                logger.warning(
                    "Job %d rate limited, retry %d/%d in %.1fs",
                    job.index, state.rate_limit_retries, self._policy.max_rate_limit_retries, delay,
                )
                await self._sleep(delay)
                continue
            except AuthError as exc:
                if self._pool is None or credential is None:
                    raise
                await self._pool.invalidate(credential)
                job.attempt += 1
                credential = await self._acquire(state, str(exc))
                continue

            if credential is not None:
                update = await self._pool.record_usage(credential)
                if update.marked_invalid:
                    credential = None
            return data, credential
