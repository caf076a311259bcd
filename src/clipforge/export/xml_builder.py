"""
Interchange-xml builder: Premiere / Final Cut Pro 7 ``xmeml``.

    <xmeml version="4">
      <sequence id="sequence-1">
        <duration/> <rate><timebase/><ntsc/></rate>
        <media>
          <video> <format/> <track MZ.TrackName="V1"> clipitem* transitionitem* </track>
                  <track MZ.TrackName="T1"> generatoritem* </track> </video>
          <audio> <track MZ.TrackName="A1"> clipitem* </track> </audio>
        </media>
      </sequence>
    </xmeml>

Clip items carry absolute ``start``/``end`` frames on the sequence and
source ``in``/``out`` frames. Each asset gets one full ``<file>`` element
on first use and id-only references afterwards. Overlapping neighbours
get a ``transitionitem`` spanning the overlap.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from lxml import etree

from ..core.models import MediaKind, MediaReference
from ..core.timeline import TextItem, Timeline, Track, seconds_to_frames
from ..exceptions import SerializationError
from .framing import (
    FramedItem,
    asset_frames,
    check_fps,
    frame_track,
    next_start,
    overlap_type,
    transition_types,
    used_extent,
)

logger = logging.getLogger(__name__)

FORMAT_NAME = "interchange-xml"
XMEML_VERSION = "4"

TRANSITION_EFFECTS = {
    "video": ("Cross Dissolve", "Dissolve"),
    "audio": ("Cross Fade (+3dB)", "Crossfade"),
}


def xmeml_rate(fps: float) -> Tuple[int, bool]:
    """
    (timebase, ntsc) for ``fps``.

    Raises:
        SerializationError: fps is neither integral nor an NTSC rate
    """
    rounded = round(fps)
    if abs(fps - rounded) < 1e-6:
        return int(rounded), False
    ntsc_base = round(fps * 1001 / 1000)
    if abs(fps - ntsc_base * 1000 / 1001) < 0.01:
        return int(ntsc_base), True
    raise SerializationError(f"{fps:g} fps has no xmeml timebase", format=FORMAT_NAME)


def rate_to_fps(timebase: int, ntsc: bool) -> float:
    return timebase * 1000 / 1001 if ntsc else float(timebase)


def _text(parent: etree._Element, tag: str, value) -> etree._Element:
    element = etree.SubElement(parent, tag)
    element.text = str(value)
    return element


def _display_name(asset: MediaReference) -> str:
    if asset.location.startswith("data:"):
        return asset.id
    path = unquote(urlparse(asset.location).path) or asset.location
    return Path(path).name or asset.location


class XMLBuilder:
    """Build an xmeml document from a ClipForge Timeline."""

    def __init__(self, fps: float = 30.0, video_width: int = 1080, video_height: int = 1920):
        self.fps = check_fps(fps, FORMAT_NAME)
        self.timebase, self.ntsc = xmeml_rate(self.fps)
        self.video_width = video_width
        self.video_height = video_height
        self._files_written: set = set()
        self._item_counter = 0

    def _rate(self, parent: etree._Element) -> None:
        rate = etree.SubElement(parent, "rate")
        _text(rate, "timebase", self.timebase)
        _text(rate, "ntsc", "TRUE" if self.ntsc else "FALSE")

    def build(self, timeline: Timeline, name: str = "ClipForge Timeline") -> etree._Element:
        self._files_written = set()
        self._item_counter = 0
        assets = timeline.asset_map()
        extents = used_extent(timeline, self.fps)
        types = transition_types(timeline)

        root = etree.Element("xmeml", version=XMEML_VERSION)
        sequence = etree.SubElement(root, "sequence", id="sequence-1")
        _text(sequence, "name", name)
        _text(sequence, "duration", seconds_to_frames(timeline.duration, self.fps))
        self._rate(sequence)

        media = etree.SubElement(sequence, "media")
        video = etree.SubElement(media, "video")
        video_format = etree.SubElement(video, "format")
        characteristics = etree.SubElement(video_format, "samplecharacteristics")
        self._rate(characteristics)
        _text(characteristics, "width", self.video_width)
        _text(characteristics, "height", self.video_height)
        _text(characteristics, "pixelaspectratio", "square")

        for track in timeline.video_tracks:
            self._build_track(video, track, assets, extents, types)
        for lane_index, lane in enumerate(self._text_lanes(timeline.text_items), start=1):
            self._build_text_track(video, f"T{lane_index}", lane)

        audio = etree.SubElement(media, "audio")
        for track in timeline.audio_tracks:
            self._build_track(audio, track, assets, extents, types)

        logger.info(f"Built xmeml sequence: {name} ({len(timeline.tracks)} tracks, {self.fps:g}fps)")
        return root

    def _build_track(self, parent, track: Track, assets, extents: Dict[str, int], types: Dict[int, str]) -> None:
        element = etree.SubElement(parent, "track", {"MZ.TrackName": track.id})
        framed = frame_track(track, assets, self.fps, FORMAT_NAME)

        for index, fi in enumerate(framed):
            if index and fi.start < framed[index - 1].start:
                raise SerializationError(f"Items on {track.id} are out of order", format=FORMAT_NAME)
            if index >= 2 and fi.start < framed[index - 2].end:
                raise SerializationError(
                    f"Items on {track.id} overlap by more than one transition at frame {fi.start}",
                    format=FORMAT_NAME,
                )
            self._clip_item(element, fi, index, track.kind, extents.get(fi.asset.id, 0))

            following = next_start(framed, index)
            if following is not None and following < fi.end:
                incoming = framed[index + 1]
                if following <= fi.start or incoming.end < fi.end:
                    raise SerializationError(
                        f"Overlap on {track.id} at frame {following} cannot be expressed as a transition",
                        format=FORMAT_NAME,
                    )
                self._transition_item(element, following, fi.end, track.kind, overlap_type(incoming.item, types))

    def _clip_item(self, track_el, fi: FramedItem, index: int, kind: str, used: int) -> None:
        self._item_counter += 1
        asset = fi.asset
        available = asset_frames(asset, used, self.fps)

        clip = etree.SubElement(track_el, "clipitem", id=f"clipitem-{self._item_counter}")
        _text(clip, "masterclipid", f"masterclip-{asset.id}")
        _text(clip, "name", f"Clip-{index + 1:03d}")
        _text(clip, "enabled", "TRUE")
        _text(clip, "duration", available)
        self._rate(clip)
        _text(clip, "start", fi.start)
        _text(clip, "end", fi.end)
        _text(clip, "in", fi.trim_start)
        _text(clip, "out", fi.trim_start + fi.duration)
        self._file(clip, asset, available)

        comments = etree.SubElement(clip, "comments")
        _text(comments, "mastercomment1", asset.prompt_text or "")
        _text(comments, "mastercomment2", "placeholder" if asset.is_placeholder else "")
        _text(comments, "mastercomment3", asset.id)
        if fi.item.volume is not None:
            _text(comments, "mastercomment4", f"volume={fi.item.volume:g}")
        if kind == "audio":
            source = etree.SubElement(clip, "sourcetrack")
            _text(source, "mediatype", "audio")
            _text(source, "trackindex", 1)

    def _file(self, parent, asset: MediaReference, frames: int) -> None:
        file_id = f"file-{asset.id}"
        if file_id in self._files_written:
            etree.SubElement(parent, "file", id=file_id)
            return
        self._files_written.add(file_id)

        file_el = etree.SubElement(parent, "file", id=file_id)
        _text(file_el, "name", _display_name(asset))
        _text(file_el, "pathurl", asset.location)
        self._rate(file_el)
        _text(file_el, "duration", frames)
        media = etree.SubElement(file_el, "media")
        if asset.kind == MediaKind.AUDIO:
            audio = etree.SubElement(media, "audio")
            characteristics = etree.SubElement(audio, "samplecharacteristics")
            _text(characteristics, "depth", 16)
            _text(characteristics, "samplerate", 48000)
        else:
            video = etree.SubElement(media, "video")
            characteristics = etree.SubElement(video, "samplecharacteristics")
            _text(characteristics, "width", asset.width or self.video_width)
            _text(characteristics, "height", asset.height or self.video_height)

    def _transition_item(self, track_el, start: int, end: int, kind: str, name: str) -> None:
        effect_name, category = TRANSITION_EFFECTS[kind]
        item = etree.SubElement(track_el, "transitionitem")
        self._rate(item)
        _text(item, "start", start)
        _text(item, "end", end)
        _text(item, "alignment", "center")
        effect = etree.SubElement(item, "effect")
        _text(effect, "name", effect_name)
        _text(effect, "effectid", effect_name)
        _text(effect, "effectcategory", category)
        _text(effect, "effecttype", "transition")
        _text(effect, "mediatype", kind)
        _text(item, "name", name)

    def _text_lanes(self, items: List[TextItem]) -> List[List[Tuple[TextItem, int, int]]]:
        """Spread text items over as few non-overlapping lanes as possible."""
        lanes: List[List[Tuple[TextItem, int, int]]] = []
        for text in sorted(items, key=lambda t: (t.start_time, t.id)):
            start = seconds_to_frames(text.start_time, self.fps)
            end = start + seconds_to_frames(text.duration, self.fps)
            if end <= start:
                raise SerializationError(f"Text item {text.id} is shorter than one frame", format=FORMAT_NAME)
            for lane in lanes:
                if lane[-1][2] <= start:
                    lane.append((text, start, end))
                    break
            else:
                lanes.append([(text, start, end)])
        return lanes

    def _build_text_track(self, parent, track_name: str, lane: List[Tuple[TextItem, int, int]]) -> None:
        element = etree.SubElement(parent, "track", {"MZ.TrackName": track_name})
        for text, start, end in lane:
            self._item_counter += 1
            item = etree.SubElement(element, "generatoritem", id=f"generator-{self._item_counter}")
            _text(item, "name", text.kind.capitalize())
            _text(item, "enabled", "TRUE")
            _text(item, "duration", end - start)
            self._rate(item)
            _text(item, "start", start)
            _text(item, "end", end)
            _text(item, "in", 0)
            _text(item, "out", end - start)
            effect = etree.SubElement(item, "effect")
            _text(effect, "name", "Text")
            _text(effect, "effectid", "Text")
            _text(effect, "effectcategory", "Text")
            _text(effect, "effecttype", "generator")
            _text(effect, "mediatype", "video")
            parameter = etree.SubElement(effect, "parameter")
            _text(parameter, "parameterid", "str")
            _text(parameter, "name", "Text")
            _text(parameter, "value", text.text)
            if text.position:
                _text(item, "comments", f"position={text.position}")

    def to_string(self, timeline: Timeline, **kwargs) -> str:
        root = self.build(timeline, **kwargs)
        return etree.tostring(
            root,
            pretty_print=True,
            xml_declaration=True,
            encoding="UTF-8",
            doctype="<!DOCTYPE xmeml>",
        ).decode("utf-8")


def build_xmeml(timeline: Timeline, name: str = "ClipForge Timeline") -> str:
    """Serialise ``timeline`` as an xmeml document."""
    builder = XMLBuilder(fps=timeline.fps, video_width=timeline.width, video_height=timeline.height)
    return builder.to_string(timeline, name=name)


def read_layout(text: str) -> Dict[str, List[Tuple[float, float]]]:
    """
    Re-derive clip placement from an xmeml document.

    Returns:
        ``{track_id: [(start_seconds, duration_seconds), ...]}`` for every
        track holding clip items
    """
    root = etree.fromstring(text.encode("utf-8"))
    sequence = root.find("sequence")
    if sequence is None:
        raise SerializationError("No <sequence> element", format=FORMAT_NAME)
    fps = rate_to_fps(
        int(sequence.findtext("rate/timebase")),
        sequence.findtext("rate/ntsc", "FALSE").upper() == "TRUE",
    )

    layout: Dict[str, List[Tuple[float, float]]] = {}
    tracks = [*sequence.iterfind("media/video/track"), *sequence.iterfind("media/audio/track")]
    for track in tracks:
        items = track.findall("clipitem")
        if not items:
            continue
        entries = []
        for item in items:
            start = int(item.findtext("start"))
            end = int(item.findtext("end"))
            entries.append((start / fps, (end - start) / fps))
        layout[track.get("MZ.TrackName")] = entries
    return layout


def write_xmeml(timeline: Timeline, path: Path, name: Optional[str] = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_xmeml(timeline, name=name or path.stem), encoding="utf-8")
    return path
