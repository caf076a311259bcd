"""
OTIO-based interchange-json builder.

Layout:
- Timeline -> Stack "tracks" -> one Track per timeline track
- Non-contiguous items are separated by Gaps
- An item that overlaps the next one on its track (a transition) becomes
  a Clip whose source range is shortened by the overlap, followed by a
  Transition with in_offset 0 and out_offset = overlap
- Text items become markers on the root stack
- Provenance (asset id, prompt, placeholder flag) lives in
  ``metadata["clipforge"]`` on clips and media references

``read_layout`` re-derives ``(start, duration)`` per track from the
serialised form.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import opentimelineio as otio

from ..core.timeline import Timeline, Track, seconds_to_frames
from ..exceptions import SerializationError
from .framing import (
    asset_frames,
    check_fps,
    frame_track,
    next_start,
    overlap_type,
    transition_types,
    used_extent,
)

logger = logging.getLogger(__name__)

FORMAT_NAME = "interchange-json"
METADATA_KEY = "clipforge"


def _clean(values: dict) -> dict:
    """Drop unset entries from a metadata mapping."""
    return {k: v for k, v in values.items() if v is not None}


class OTIOBuilder:
    """Build an OpenTimelineIO timeline from a ClipForge Timeline."""

    def __init__(self, fps: float = 30.0, video_width: int = 1080, video_height: int = 1920):
        self.fps = check_fps(fps, FORMAT_NAME)
        self.video_width = video_width
        self.video_height = video_height

    def _rt(self, frames: int) -> otio.opentime.RationalTime:
        return otio.opentime.RationalTime(frames, self.fps)

    def _range(self, start: int, duration: int) -> otio.opentime.TimeRange:
        return otio.opentime.TimeRange(start_time=self._rt(start), duration=self._rt(duration))

    def build(
        self,
        timeline: Timeline,
        name: str = "ClipForge Timeline",
        source_file: Optional[str] = None,
    ) -> otio.schema.Timeline:
        """Convert ``timeline`` into an ``otio.schema.Timeline``."""
        assets = timeline.asset_map()
        extents = used_extent(timeline, self.fps)
        types = transition_types(timeline)

        otio_timeline = otio.schema.Timeline(
            name=name,
            global_start_time=self._rt(0),
        )
        otio_timeline.metadata[METADATA_KEY] = _clean({
            "width": self.video_width,
            "height": self.video_height,
            "fps": self.fps,
            "duration": timeline.duration,
            "mode": timeline.metadata.get("mode"),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "sourceFile": source_file,
            "transitions": [t.to_dict() for t in timeline.transitions],
        })

        for track in timeline.tracks:
            otio_timeline.tracks.append(self._build_track(track, assets, extents, types))

        for text in timeline.text_items:
            start = seconds_to_frames(text.start_time, self.fps)
            duration = seconds_to_frames(text.duration, self.fps)
            marker = otio.schema.Marker(
                name=text.text,
                marked_range=self._range(start, duration),
                color=otio.schema.MarkerColor.YELLOW,
                metadata={METADATA_KEY: _clean(text.to_dict())},
            )
            otio_timeline.tracks.markers.append(marker)

        logger.info(
            f"Built OTIO timeline: {name} ({len(timeline.tracks)} tracks, "
            f"{self.fps:g}fps, {self.video_width}x{self.video_height})"
        )
        return otio_timeline

    def _build_track(self, track: Track, assets, extents: Dict[str, int], types: Dict[int, str]) -> otio.schema.Track:
        kind = otio.schema.TrackKind.Video if track.kind == "video" else otio.schema.TrackKind.Audio
        otio_track = otio.schema.Track(
            name=track.name,
            kind=kind,
            metadata={METADATA_KEY: {"trackId": track.id}},
        )

        framed = frame_track(track, assets, self.fps, FORMAT_NAME)
        cursor = 0
        for index, fi in enumerate(framed):
            if fi.start < cursor:
                raise SerializationError(
                    f"Items on {track.id} overlap by more than one transition at frame {fi.start}",
                    format=FORMAT_NAME,
                )
            if fi.start > cursor:
                otio_track.append(otio.schema.Gap(source_range=self._range(0, fi.start - cursor)))

            following = next_start(framed, index)
            overlap = fi.end - following if following is not None and following < fi.end else 0
            placed = fi.duration - overlap
            if placed <= 0 or (overlap and overlap > framed[index + 1].duration):
                raise SerializationError(
                    f"Overlap of {overlap} frames on {track.id} cannot be expressed as a transition",
                    format=FORMAT_NAME,
                )

            asset = fi.asset
            available = None
            if asset.duration:
                available = self._range(0, asset_frames(asset, extents.get(asset.id, 0), self.fps))
            media_ref = otio.schema.ExternalReference(
                target_url=asset.location,
                available_range=available,
                metadata={METADATA_KEY: _clean({
                    "assetId": asset.id,
                    "kind": asset.kind.value,
                    "prompt": asset.prompt_text,
                    "isPlaceholder": asset.is_placeholder,
                })},
            )
            media_ref.name = f"Media-{index + 1:03d}"

            clip = otio.schema.Clip(
                name=f"Clip-{index + 1:03d}",
                media_reference=media_ref,
                source_range=self._range(fi.trim_start, placed),
                metadata={METADATA_KEY: _clean({
                    "itemId": fi.item.id,
                    "assetId": asset.id,
                    "prompt": asset.prompt_text,
                    "isPlaceholder": asset.is_placeholder,
                    "clipIndex": fi.item.clip_index,
                    "trimEnd": fi.item.trim_end,
                    "volume": fi.item.volume,
                    "layout": fi.item.layout,
                })},
            )
            otio_track.append(clip)
            cursor = fi.start + placed

            if overlap:
                transition_name = overlap_type(framed[index + 1].item, types)
                otio_track.append(otio.schema.Transition(
                    name=transition_name,
                    transition_type=otio.schema.TransitionTypes.SMPTE_Dissolve,
                    in_offset=self._rt(0),
                    out_offset=self._rt(overlap),
                    metadata={METADATA_KEY: {"type": transition_name}},
                ))

        logger.debug(f"Track {track.id}: {len(framed)} clips")
        return otio_track

    def to_string(self, timeline: Timeline, **kwargs) -> str:
        return otio.adapters.write_to_string(self.build(timeline, **kwargs), "otio_json")


def build_otio_json(timeline: Timeline, name: str = "ClipForge Timeline", source_file: Optional[str] = None) -> str:
    """Serialise ``timeline`` as OpenTimelineIO JSON."""
    builder = OTIOBuilder(fps=timeline.fps, video_width=timeline.width, video_height=timeline.height)
    return builder.to_string(timeline, name=name, source_file=source_file)


def read_layout(text: str) -> Dict[str, List[Tuple[float, float]]]:
    """
    Re-derive clip placement from OTIO JSON.

    Returns:
        ``{track_id: [(start_seconds, duration_seconds), ...]}``
    """
    otio_timeline = otio.adapters.read_from_string(text, "otio_json")
    layout: Dict[str, List[Tuple[float, float]]] = {}
    for track in otio_timeline.tracks:
        track_id = track.metadata.get(METADATA_KEY, {}).get("trackId", track.name)
        cursor = None
        entries: List[List[float]] = []
        for child in track:
            if isinstance(child, otio.schema.Transition):
                if entries:
                    entries[-1][1] += child.out_offset.to_seconds()
                continue
            duration = child.source_range.duration
            if cursor is None:
                cursor = otio.opentime.RationalTime(0, duration.rate)
            if isinstance(child, otio.schema.Clip):
                entries.append([cursor.to_seconds(), duration.to_seconds()])
            cursor = cursor + duration
        layout[track_id] = [(start, dur) for start, dur in entries]
    return layout


def write_otio(timeline: Timeline, path: Path, **kwargs) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_otio_json(timeline, **kwargs), encoding="utf-8")
    return path
