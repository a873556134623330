"""Domain models, errors and pure algorithms."""

from panelcast.domain.models import (
    AudioArtifact,
    AudioSegment,
    Credential,
    CredentialStats,
    JobStatus,
    JoinedAudio,
    NarrationChunk,
    ProviderJobStatus,
    RemoteJobState,
    RenderJob,
    SourceRegion,
    SynthesisJob,
    TranscriptionJob,
    UsageUpdate,
)
from panelcast.domain.timeline import (
    OutputSpec,
    RenderRequest,
    TimelineSegment,
    build_render_request,
    compute_offsets,
)

__all__ = [
    "AudioArtifact",
    "AudioSegment",
    "Credential",
    "CredentialStats",
    "JobStatus",
    "JoinedAudio",
    "NarrationChunk",
    "OutputSpec",
    "ProviderJobStatus",
    "RemoteJobState",
    "RenderJob",
    "RenderRequest",
    "SourceRegion",
    "SynthesisJob",
    "TimelineSegment",
    "TranscriptionJob",
    "UsageUpdate",
    "build_render_request",
    "compute_offsets",
]
