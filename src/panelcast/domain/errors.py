"""Error taxonomy shared by every layer.

Adapters translate transport errors into these types at the boundary, so the
application layer only ever reasons about the classes below.
"""

from typing import Dict, List, Optional, Sequence


class PipelineError(RuntimeError):
    """Base class for every failure the pipeline reports."""


class ProviderError(PipelineError):
    """A remote provider rejected or failed a request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, provider: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class TransientProviderError(ProviderError):
    """Retryable provider failure (rate limiting)."""


class AuthError(ProviderError):
    """The credential used for the request is invalid or expired."""


class PermanentProviderError(ProviderError):
    """Non-retryable provider failure."""


class RateLimitExceeded(PipelineError):
    def __init__(self, retries: int, last_message: str = ""):
        super().__init__(
            f"Rate limit exceeded. Maximum retries ({retries}) reached: {last_message}".rstrip(": ")
        )
        self.retries = retries
        self.last_message = last_message


class CredentialPoolExhausted(PipelineError):
    def __init__(self, attempts: int, last_message: str = ""):
        super().__init__(
            f"No valid credentials left after {attempts} attempts: {last_message}".rstrip(": ")
        )
        self.attempts = attempts
        self.last_message = last_message


class ProbeFailure(PipelineError):
    """Duration could not be measured. Never fatal: callers fall back."""


class ConcatenationFailed(PipelineError):
    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class StorageError(PipelineError):
    """Upload or download against durable storage failed."""


class ProcessingIncomplete(PipelineError):
    """Some, but not all, segments were produced."""

    def __init__(self, missing_indices: Sequence[int], failures: Optional[Dict[int, str]] = None):
        self.missing_indices: List[int] = sorted(missing_indices)
        self.failures: Dict[int, str] = dict(failures or {})
        super().__init__(
            f"Processing incomplete: missing segment(s) {self.missing_indices}"
        )


class NoSegmentsProduced(PipelineError):
    def __init__(self, failures: Optional[Dict[int, str]] = None):
        self.failures: Dict[int, str] = dict(failures or {})
        super().__init__(f"No segments produced ({len(self.failures)} job(s) failed)")


class TimedOut(PipelineError):
    def __init__(self, attempts: int, elapsed_seconds: float):
        super().__init__(
            f"Polling timed out after {attempts} attempts ({elapsed_seconds:.1f}s)"
        )
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds


class DownloadOrPersistFailed(PipelineError):
    """The provider produced an artifact but it could not be re-hosted."""


class InvalidTimeline(PipelineError, ValueError):
    """Timeline segments violate ordering or duration constraints."""


class InvalidChunkFile(PipelineError, ValueError):
    """A narration chunk file is unreadable or an entry lacks the required fields."""
