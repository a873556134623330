"""Timeline offsets and the declarative render request handed to the renderer."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from panelcast import config
from panelcast.domain.errors import InvalidTimeline

CAPTION_FONT_SIZE = 70
CAPTION_PADDING = 15


def compute_offsets(durations: Sequence[float]) -> List[float]:
    """Prefix sums: offset[0] = 0, offset[i] = offset[i-1] + durations[i-1]."""
    offsets: List[float] = []
    running = 0.0
    for duration in durations:
        offsets.append(running)
        running += duration
    return offsets


@dataclass(frozen=True)
class TimelineSegment:
    image_ref: Optional[str]
    start_offset_seconds: float
    duration_seconds: float

    @property
    def end_seconds(self) -> float:
        return self.start_offset_seconds + self.duration_seconds


def build_timeline_segments(
    image_refs: Sequence[Optional[str]],
    durations: Sequence[float],
) -> List[TimelineSegment]:
    if len(image_refs) != len(durations):
        raise InvalidTimeline(
            f"{len(image_refs)} image refs but {len(durations)} durations"
        )
    return [
        TimelineSegment(image_ref=ref, start_offset_seconds=offset, duration_seconds=duration)
        for ref, offset, duration in zip(image_refs, compute_offsets(durations), durations)
    ]


@dataclass(frozen=True)
class OutputSpec:
    format: str = "mp4"
    width: int = config.VIDEO_WIDTH
    height: int = config.VIDEO_HEIGHT
    fps: int = config.FPS


@dataclass(frozen=True)
class RenderRequest:
    video_track_segments: Tuple[TimelineSegment, ...]
    audio_ref: str
    caption_ref: Optional[str] = None
    output: OutputSpec = field(default_factory=OutputSpec)

    @property
    def total_duration_seconds(self) -> float:
        return self.video_track_segments[-1].end_seconds

    def to_payload(self) -> Dict[str, Any]:
        """Translate into the renderer's timeline JSON.

        Track order is top layer first: captions, then images, then the
        narration audio spanning the whole video.
        """
        total = self.total_duration_seconds
        tracks: List[Dict[str, Any]] = []
        if self.caption_ref:
            tracks.append({
                "clips": [{
                    "asset": {
                        "type": "caption",
                        "src": self.caption_ref,
                        "font": {"size": CAPTION_FONT_SIZE},
                        "background": {"padding": CAPTION_PADDING},
                    },
                    "start": 0,
                    "length": total,
                    "position": "bottom",
                }]
            })
        tracks.append({
            "clips": [
                {
                    "asset": {"type": "image", "src": seg.image_ref},
                    "start": seg.start_offset_seconds,
                    "length": seg.duration_seconds,
                    "effect": "zoomIn",
                    "fit": "cover",
                }
                for seg in self.video_track_segments
            ]
        })
        tracks.append({
            "clips": [{
                "asset": {"type": "audio", "src": self.audio_ref, "volume": 1},
                "start": 0,
                "length": total,
            }]
        })
        return {
            "timeline": {"tracks": tracks},
            "output": {
                "format": self.output.format,
                "size": {"width": self.output.width, "height": self.output.height},
            },
        }


def build_render_request(
    segments: Sequence[TimelineSegment],
    audio_ref: str,
    caption_ref: Optional[str] = None,
    output: Optional[OutputSpec] = None,
) -> RenderRequest:
    """Validate ``segments`` and wrap them into a :class:`RenderRequest`.

    Segments are taken in the given order. Raises :class:`InvalidTimeline`
    on an empty list, a missing audio ref, a non-positive duration, or an
    offset that goes backwards.
    """
    if not segments:
        raise InvalidTimeline("Timeline has no segments")
    if not audio_ref:
        raise InvalidTimeline("Timeline has no audio track")
    previous = 0.0
    for position, seg in enumerate(segments):
        if not seg.duration_seconds > 0:
            raise InvalidTimeline(
                f"Segment {position} has non-positive duration {seg.duration_seconds}"
            )
        if seg.start_offset_seconds < previous:
            raise InvalidTimeline(
                f"Segment {position} starts at {seg.start_offset_seconds}, before {previous}"
            )
        previous = seg.start_offset_seconds
    return RenderRequest(
        video_track_segments=tuple(segments),
        audio_ref=audio_ref,
        caption_ref=caption_ref,
        output=output or OutputSpec(),
    )
