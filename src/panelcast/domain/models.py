"""Domain models – records that flow through the segment pipeline."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class SourceRegion:
    """Vertical slice of the page capture a panel was cut from."""
    start_y: int
    end_y: int

    @property
    def height(self) -> int:
        return self.end_y - self.start_y


@dataclass(frozen=True)
class NarrationChunk:
    """One image panel and the narration written for it."""
    image_index: int
    text: str
    image_ref: Optional[str] = None
    source_region: Optional[SourceRegion] = None

    def __post_init__(self):
        if self.image_index < 0:
            raise ValueError(f"image_index must be >= 0, got {self.image_index}")
        if not self.text or not self.text.strip():
            raise ValueError(f"Narration for image {self.image_index} is empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NarrationChunk":
        """Build from the wire shape: imageIndex, imageUrl, narration, startY, endY."""
        region = None
        if data.get("startY") is not None and data.get("endY") is not None:
            region = SourceRegion(int(data["startY"]), int(data["endY"]))
        return cls(
            image_index=int(data["imageIndex"]),
            text=str(data.get("narration") or data.get("text") or ""),
            image_ref=data.get("imageUrl") or data.get("imageRef"),
            source_region=region,
        )


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass
class SynthesisJob:
    """Mutable work record; only the executor that owns it changes it."""
    index: int
    text: str
    status: JobStatus = JobStatus.PENDING
    attempt: int = 1
    last_error: Optional[str] = None


@dataclass(frozen=True)
class AudioArtifact:
    """Audio bytes, optionally already hosted at ``url``."""
    data: bytes = b""
    url: Optional[str] = None
    extension: str = "mp3"
    content_type: str = "audio/mpeg"

    def __post_init__(self):
        if not self.data and not self.url:
            raise ValueError("AudioArtifact needs bytes or a retrievable URL")

    def with_url(self, url: str) -> "AudioArtifact":
        return AudioArtifact(data=self.data, url=url, extension=self.extension, content_type=self.content_type)


@dataclass(frozen=True)
class AudioSegment:
    segment_index: int
    audio: AudioArtifact
    duration_seconds: float
    text: str

    def __post_init__(self):
        if not self.duration_seconds > 0:
            raise ValueError(
                f"Segment {self.segment_index} has non-positive duration {self.duration_seconds}"
            )


DURATION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class JoinedAudio:
    audio: AudioArtifact
    total_duration_seconds: float
    segments: Tuple[AudioSegment, ...]

    def __post_init__(self):
        expected = math.fsum(s.duration_seconds for s in self.segments)
        if not math.isclose(self.total_duration_seconds, expected, rel_tol=0.0, abs_tol=DURATION_TOLERANCE):
            raise ValueError(
                f"Joined duration {self.total_duration_seconds} != sum of segments {expected}"
            )
        indices = [s.segment_index for s in self.segments]
        if indices != sorted(set(indices)):
            raise ValueError(f"Segments must be strictly ascending by index, got {indices}")

    @property
    def segment_indices(self) -> Tuple[int, ...]:
        return tuple(s.segment_index for s in self.segments)


class RemoteJobState(str, Enum):
    """Uniform state of a job running on a remote provider."""
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    DOWNLOAD_OR_PERSIST_FAILED = "download_or_persist_failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (RemoteJobState.SUBMITTED, RemoteJobState.PROCESSING)


@dataclass
class ProviderJobStatus:
    """One poll response, already translated to the canonical stage vocabulary."""
    stage: str
    progress: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TranscriptionJob:
    job_id: str
    state: RemoteJobState = RemoteJobState.SUBMITTED
    progress_percent: int = 0
    stage: str = "uploading"
    result_ref: Optional[str] = None
    provider_url: Optional[str] = None
    error: Optional[Exception] = None
    polls: int = 0


@dataclass
class RenderJob:
    job_id: str
    state: RemoteJobState = RemoteJobState.SUBMITTED
    progress_percent: int = 0
    stage: str = "queued"
    video_url: Optional[str] = None
    error: Optional[Exception] = None
    polls: int = 0


@dataclass(frozen=True)
class Credential:
    credential_id: str
    secret: str
    use_count: int = 0
    is_valid: bool = True

    def __repr__(self):
        return f"Credential(id={self.credential_id!r}, uses={self.use_count}, valid={self.is_valid})"


@dataclass(frozen=True)
class UsageUpdate:
    new_count: int
    marked_invalid: bool


@dataclass(frozen=True)
class CredentialStats:
    valid: int
    invalid: int
    total: int
    usage_limit_reached: int
    average_usage: float
