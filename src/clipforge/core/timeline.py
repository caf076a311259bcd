"""
Timeline intermediate representation.

Produced by the scene walker, consumed by the interchange builders. All
times are seconds; builders quantise to frames with ``seconds_to_frames``,
which rounds half up and is the only seconds-to-frames conversion used.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import TimelineError
from .models import MediaReference


def seconds_to_frames(seconds: float, fps: float) -> int:
    """Frame count for ``seconds`` at ``fps``, rounding half up."""
    value = Decimal(repr(float(seconds))) * Decimal(repr(float(fps)))
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def frames_to_seconds(frames: int, fps: float) -> float:
    return frames / float(fps)


@dataclass
class ClipItem:
    """One placement of an asset on a track."""
    id: str
    asset_id: str
    start_time: float
    duration: float
    clip_index: Optional[int] = None
    trim_start: Optional[float] = None
    trim_end: Optional[float] = None
    volume: Optional[float] = None
    position: Optional[Any] = None
    size: Optional[Any] = None
    zoom: Optional[Any] = None
    layout: Optional[Dict[str, Any]] = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "assetId": self.asset_id,
            "startTime": self.start_time,
            "duration": self.duration,
        }
        optional = {
            "clipIndex": self.clip_index,
            "trimStart": self.trim_start,
            "trimEnd": self.trim_end,
            "volume": self.volume,
            "position": self.position,
            "size": self.size,
            "zoom": self.zoom,
            "layout": self.layout,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class Track:
    id: str
    name: str
    kind: str  # "video" | "audio"
    items: List[ClipItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class Transition:
    """Overlap of ``duration`` seconds between clip ``after_clip_index - 1`` and ``after_clip_index``."""
    type: str
    duration: float
    after_clip_index: int
    start_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "duration": self.duration,
            "afterClipIndex": self.after_clip_index,
            "startTime": self.start_time,
        }


@dataclass
class TextItem:
    id: str
    text: str
    start_time: float
    duration: float
    kind: str = "title"  # "title" | "subtitle" | "caption"
    position: Optional[str] = None
    color: Optional[str] = None
    background_color: Optional[str] = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "text": self.text,
            "startTime": self.start_time,
            "duration": self.duration,
            "kind": self.kind,
        }
        optional = {"position": self.position, "color": self.color, "backgroundColor": self.background_color}
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class Timeline:
    fps: float
    width: int
    height: int
    duration: float = 0.0
    video_tracks: List[Track] = field(default_factory=list)
    audio_tracks: List[Track] = field(default_factory=list)
    text_items: List[TextItem] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)
    assets: List[MediaReference] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def tracks(self) -> List[Track]:
        return [*self.video_tracks, *self.audio_tracks]

    def iter_items(self) -> Iterator[ClipItem]:
        for track in self.tracks:
            yield from track.items

    def asset(self, asset_id: str) -> Optional[MediaReference]:
        for asset in self.assets:
            if asset.id == asset_id:
                return asset
        return None

    def asset_map(self) -> Dict[str, MediaReference]:
        return {asset.id: asset for asset in self.assets}

    @property
    def placed_clip_count(self) -> int:
        """Number of sequential clips that made it onto the timeline."""
        indexes = {item.clip_index for item in self.iter_items() if item.clip_index is not None}
        return len(indexes)

    def validate(self) -> None:
        """
        Check structural invariants.

        Raises:
            TimelineError: dangling asset id, duplicate asset id or negative timing
        """
        ids = [asset.id for asset in self.assets]
        if len(ids) != len(set(ids)):
            raise TimelineError("Duplicate asset ids in timeline")
        known = set(ids)
        for track in self.tracks:
            for item in track.items:
                if item.asset_id not in known:
                    raise TimelineError(f"Clip item {item.id} on {track.id} references unknown asset {item.asset_id}")
                if item.start_time < 0 or item.duration <= 0:
                    raise TimelineError(f"Clip item {item.id} has invalid timing")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fps": self.fps,
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "videoTracks": [t.to_dict() for t in self.video_tracks],
            "audioTracks": [t.to_dict() for t in self.audio_tracks],
            "textItems": [t.to_dict() for t in self.text_items],
            "transitions": [t.to_dict() for t in self.transitions],
            "assets": [a.to_dict() for a in self.assets],
            "metadata": dict(self.metadata),
        }
