"""
Frame quantisation shared by the interchange builders.

Both builders place items from the same frame numbers, so a timeline
serialised to either format re-derives identical frame positions.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.models import MediaReference
from ..core.timeline import ClipItem, Timeline, Track, seconds_to_frames
from ..exceptions import SerializationError


@dataclass
class FramedItem:
    item: ClipItem
    asset: MediaReference
    start: int
    duration: int
    trim_start: int

    @property
    def end(self) -> int:
        return self.start + self.duration


def check_fps(fps: float, format_name: str) -> float:
    if fps is None or fps <= 0:
        raise SerializationError(f"Timeline fps must be positive, got {fps!r}", format=format_name)
    return float(fps)


def frame_track(track: Track, assets: Dict[str, MediaReference], fps: float, format_name: str) -> List[FramedItem]:
    """
    Quantise a track's items to frames, ordered by start.

    Raises:
        SerializationError: dangling asset id or an item shorter than a frame
    """
    framed = []
    for item in sorted(track.items, key=lambda i: (i.start_time, i.id)):
        asset = assets.get(item.asset_id)
        if asset is None:
            raise SerializationError(
                f"Clip item {item.id} on {track.id} references unknown asset {item.asset_id}",
                format=format_name,
            )
        duration = seconds_to_frames(item.duration, fps)
        if duration <= 0:
            raise SerializationError(
                f"Clip item {item.id} on {track.id} is shorter than one frame at {fps:g} fps",
                format=format_name,
            )
        framed.append(FramedItem(
            item=item,
            asset=asset,
            start=seconds_to_frames(item.start_time, fps),
            duration=duration,
            trim_start=seconds_to_frames(item.trim_start or 0.0, fps),
        ))
    return framed


def asset_frames(asset: MediaReference, used_frames: int, fps: float) -> int:
    """Available media length in frames, falling back to the extent actually used."""
    if asset.duration:
        return max(seconds_to_frames(asset.duration, fps), used_frames)
    return used_frames


def used_extent(timeline: Timeline, fps: float) -> Dict[str, int]:
    """Furthest source frame used per asset id (trim start + duration)."""
    extent: Dict[str, int] = {}
    for item in timeline.iter_items():
        end = seconds_to_frames(item.trim_start or 0.0, fps) + seconds_to_frames(item.duration, fps)
        extent[item.asset_id] = max(extent.get(item.asset_id, 0), end)
    return extent


def transition_types(timeline: Timeline) -> Dict[int, str]:
    """Transition type keyed by the index of the incoming clip."""
    return {t.after_clip_index: t.type for t in timeline.transitions}


def overlap_type(item: ClipItem, types: Dict[int, str], default: str = "fade") -> str:
    if item.clip_index is not None and item.clip_index in types:
        return types[item.clip_index]
    return default


def next_start(framed: List[FramedItem], index: int) -> Optional[int]:
    return framed[index + 1].start if index + 1 < len(framed) else None
