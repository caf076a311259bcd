"""
Scene Walker

Walks a render node and assigns absolute timing:

- ``clip`` children are placed in document order. A clip starts where the
  previous one ended, minus the previous clip's transition overlap.
- Media leaves inside a clip are resolved concurrently and span the whole
  clip: first visual on V1, further visuals on V2, speech on A1 then A3,
  music on A2. An item that would overlap another on its lane (other than
  a transition between neighbouring clips) opens a new lane of the same
  role instead, e.g. A4 "Music 2" or V3 "Overlay 2".
- ``title``/``subtitle`` children become text items (start/end are
  clip-relative); ``captions`` become caption text items.
- Render-level ``music``/``speech``/``captions``/overlays are global: they
  span ``[start or 0, total duration]`` and never add time.
- Composites (split/slider/swipe/grid) resolve every child but occupy a
  single V1 placement carrying a ``layout`` descriptor.

Leaves that cannot be resolved are skipped with a warning. A clip left with
nothing to show is skipped entirely and consumes no time.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .._version import __version__
from ..exceptions import CompositionError, PlaceholderError, ResolutionError
from ..logger import log_step, logger
from .captions import CaptionSegment, load_srt, parse_srt
from .context import RenderContext
from .models import MediaKind, MediaReference
from .nodes import (
    AUDIO_TYPES,
    TEXT_TYPES,
    VISUAL_TYPES,
    Node,
    NodeType,
    normalize_prompt,
)
from .resolver import MediaResolver
from .timeline import ClipItem, TextItem, Timeline, Track, Transition, seconds_to_frames

# (track id, display name, kind) of the lanes every walk starts with
TRACK_LAYOUT = (
    ("V1", "Video 1", "video"),
    ("V2", "Overlay", "video"),
    ("A1", "Audio 1", "audio"),
    ("A2", "Music", "audio"),
    ("A3", "Audio 2", "audio"),
)

# Lanes tried in order per role. A role whose lanes are all busy opens a
# new lane "<base name> <n>" with the next free track number of its kind.
LANE_ROLES = {
    "visual": ("V1",),
    "overlay": ("V2",),
    "speech": ("A1", "A3"),
    "music": ("A2",),
}
LANE_BASE_NAMES = {"overlay": "Overlay", "speech": "Audio", "music": "Music"}

# Failures that drop a single node instead of aborting the walk
RECOVERABLE_ERRORS = (ResolutionError, CompositionError, PlaceholderError)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass
class LeafResult:
    node: Node
    ref: MediaReference
    children: List[MediaReference] = field(default_factory=list)
    layout: Optional[Dict[str, Any]] = None


@dataclass
class ClipPlan:
    node: Node
    duration: float
    leaves: List[LeafResult]
    texts: List[Node]
    captions: List[CaptionSegment]
    transition: Optional[Tuple[str, float]]


class SceneWalker:
    """Builds a Timeline from a render node."""

    def __init__(self, context: RenderContext, resolver: Optional[MediaResolver] = None):
        self.ctx = context
        self.resolver = resolver or MediaResolver(context)
        self._reset()

    def _reset(self) -> None:
        self._assets: Dict[str, MediaReference] = {}
        self._tracks: Dict[str, Track] = {
            track_id: Track(id=track_id, name=name, kind=kind) for track_id, name, kind in TRACK_LAYOUT
        }
        self._lanes: Dict[str, List[str]] = {role: list(ids) for role, ids in LANE_ROLES.items()}
        self._texts: List[TextItem] = []
        self._counters: Dict[str, int] = {}
        self.skipped_clips = 0

    def _next_id(self, prefix: str) -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        return f"{prefix}_{self._counters[prefix]:03d}"

    # =========================================================================
    # Entry point
    # =========================================================================
    async def walk(self, render_node: Node) -> Timeline:
        """
        Walk ``render_node`` and return the resolved Timeline.

        Raises:
            CompositionError: root is not a render node or has invalid geometry
            ProviderError: provider failure in strict mode
            AbortedError: abort requested before a provider call
        """
        if render_node.type != NodeType.RENDER:
            raise CompositionError(f"Expected a render node, got '{render_node.type.value}'")
        self._reset()

        fps = _number(render_node.props.get("fps", self.ctx.fps))
        width = render_node.props.get("width", self.ctx.width)
        height = render_node.props.get("height", self.ctx.height)
        if not fps or fps <= 0:
            raise CompositionError(f"Render fps must be positive, got {render_node.props.get('fps')!r}")
        if not isinstance(width, int) or not isinstance(height, int) or width <= 0 or height <= 0:
            raise CompositionError(f"Render size must be positive integers, got {width!r}x{height!r}")
        self.ctx.fps, self.ctx.width, self.ctx.height = fps, width, height

        clips = [c for c in render_node.node_children if c.type == NodeType.CLIP]
        global_nodes = [c for c in render_node.node_children if c.type != NodeType.CLIP]
        log_step(f"Walking {len(clips)} clips ({self.ctx.mode.value} mode)", emoji="🎬")

        transitions: List[Transition] = []
        cursor = 0.0
        clip_index = 0
        pending: Optional[Tuple[str, float]] = None
        previous_duration = 0.0

        for ordinal, clip_node in enumerate(clips, start=1):
            plan = await self._plan_clip(clip_node, ordinal)
            if plan is None:
                self.skipped_clips += 1
                continue

            start = cursor
            if pending is not None:
                name, requested = pending
                overlap = min(requested, previous_duration, plan.duration)
                if overlap < requested:
                    self.ctx.add_warning(
                        "transition",
                        f"Transition '{name}' before clip {ordinal} shortened from {requested:g}s to {overlap:g}s",
                        clip_node,
                    )
                if overlap > 0:
                    start = cursor - overlap
                    transitions.append(Transition(
                        type=name,
                        duration=overlap,
                        after_clip_index=clip_index,
                        start_time=start,
                    ))

            self._place_clip(plan, clip_index, start)
            logger.debug(f"Clip {ordinal} placed at {start:.3f}s for {plan.duration:.3f}s")

            cursor = start + plan.duration
            pending = plan.transition
            previous_duration = plan.duration
            clip_index += 1

        if pending is not None:
            self.ctx.add_warning("transition", f"Transition '{pending[0]}' after the last clip was dropped")

        total = cursor
        await self._place_globals(global_nodes, total)

        timeline = Timeline(
            fps=fps,
            width=width,
            height=height,
            duration=total,
            video_tracks=self._collect_tracks("video"),
            audio_tracks=self._collect_tracks("audio"),
            text_items=sorted(self._texts, key=lambda t: (t.start_time, t.id)),
            transitions=transitions,
            assets=list(self._assets.values()),
            metadata={
                "mode": self.ctx.mode.value,
                "generator": f"clipforge {__version__}",
                "skippedClips": self.skipped_clips,
            },
        )
        timeline.validate()
        return timeline

    # =========================================================================
    # Clips
    # =========================================================================
    async def _plan_clip(self, node: Node, ordinal: int) -> Optional[ClipPlan]:
        children = node.node_children
        media = [c for c in children if c.is_media or c.is_composite]
        texts = [c for c in children if c.type in TEXT_TYPES]
        caption_nodes = [c for c in children if c.type == NodeType.CAPTIONS]

        # Speech used as a caption source is also placed as audio
        caption_speech = [
            c.props["src"] for c in caption_nodes
            if isinstance(c.props.get("src"), Node) and c.props["src"].type == NodeType.SPEECH
        ]

        results = await asyncio.gather(*(self._resolve_leaf(c) for c in [*media, *caption_speech]))
        leaves = [r for r in results if r is not None]
        speech_refs = {id(r.node): r.ref for r in leaves}

        if not leaves and not texts and not caption_nodes:
            reason = "could not resolve any media" if media else "has no media or text"
            self.ctx.add_warning("skipped-clip", f"Skipped clip {ordinal}: {reason}", node)
            return None

        duration = self._clip_duration(node, leaves)

        captions: List[CaptionSegment] = []
        for caption_node in caption_nodes:
            src = caption_node.props.get("src")
            speech_ref = speech_refs.get(id(src)) if isinstance(src, Node) else None
            captions.extend(self._caption_segments(caption_node, duration, speech_ref))

        return ClipPlan(
            node=node,
            duration=duration,
            leaves=leaves,
            texts=texts,
            captions=captions,
            transition=self._parse_transition(node),
        )

    def _clip_duration(self, node: Node, leaves: List[LeafResult]) -> float:
        value = node.props.get("duration", "auto")
        if value is not None and value != "auto":
            number = _number(value)
            if number is not None and number > 0:
                return number
            self.ctx.add_warning(
                "duration",
                f"Invalid clip duration {value!r}, using automatic duration",
                node,
            )
        return self._auto_duration(leaves)

    def _auto_duration(self, leaves: List[LeafResult]) -> float:
        for leaf in leaves:
            if leaf.node.type != NodeType.VIDEO:
                continue
            cut_from = _number(leaf.node.props.get("cut_from")) or 0.0
            cut_to = _number(leaf.node.props.get("cut_to"))
            if cut_to is not None and cut_to > cut_from:
                return cut_to - cut_from
            if leaf.ref.duration:
                remaining = leaf.ref.duration - cut_from
                if remaining > 0:
                    return remaining

        speech = [leaf.ref.duration for leaf in leaves if leaf.node.type == NodeType.SPEECH and leaf.ref.duration]
        if speech:
            return max(speech)
        return self.ctx.default_clip_duration

    def _parse_transition(self, node: Node) -> Optional[Tuple[str, float]]:
        value = node.props.get("transition")
        if value is None or value is False:
            return None
        name, duration = self.ctx.default_transition, self.ctx.default_transition_duration
        if isinstance(value, str):
            name = value
        elif isinstance(value, dict):
            name = value.get("name") or value.get("type") or name
            if "duration" in value:
                duration = _number(value["duration"])
                if duration is None or duration < 0:
                    self.ctx.add_warning("transition", f"Invalid transition duration {value['duration']!r}", node)
                    return None
        elif value is not True:
            self.ctx.add_warning("transition", f"Invalid transition {value!r}", node)
            return None
        return (name, duration) if duration > 0 else None

    def _place_clip(self, plan: ClipPlan, clip_index: int, start: float) -> None:
        visual_placed = False
        for leaf in plan.leaves:
            node_type = leaf.node.type
            if node_type in VISUAL_TYPES or leaf.node.is_composite:
                role = "overlay" if visual_placed else "visual"
                visual_placed = True
            elif node_type == NodeType.SPEECH:
                role = "speech"
            else:
                role = "music"
            self._add_item(role, leaf, start, plan.duration, clip_index)

        for text_node in plan.texts:
            self._add_text(text_node, start, plan.duration)
        for segment in plan.captions:
            self._texts.append(TextItem(
                id=self._next_id("text"),
                text=segment.text,
                start_time=start + segment.start,
                duration=segment.duration,
                kind="caption",
            ))

    # =========================================================================
    # Leaves
    # =========================================================================
    async def _resolve_leaf(self, node: Node) -> Optional[LeafResult]:
        try:
            if node.is_composite:
                return await self._resolve_composite(node)
            ref = await self.resolver.resolve(node)
            return LeafResult(node=node, ref=ref)
        except RECOVERABLE_ERRORS as e:
            self.ctx.add_warning("skipped-node", f"Skipped {node.describe()}: {e}", node)
            return None

    async def _resolve_composite(self, node: Node) -> LeafResult:
        members = [c for c in node.node_children if c.is_media or c.is_composite]
        results = [r for r in await asyncio.gather(*(self._resolve_leaf(c) for c in members)) if r]

        visuals = [r for r in results if r.ref.kind in (MediaKind.IMAGE, MediaKind.VIDEO)]
        if not visuals:
            raise ResolutionError(f"{node.describe()} has no resolvable visual children", node_type=node.type.value)

        nested: List[MediaReference] = []
        for r in results:
            nested.append(r.ref)
            nested.extend(r.children)

        layout: Dict[str, Any] = {"type": node.type.value, "children": [r.ref.id for r in results]}
        for prop in ("direction", "interval", "columns"):
            if node.props.get(prop) is not None:
                layout[prop] = node.props[prop]
        return LeafResult(node=node, ref=visuals[0].ref, children=nested, layout=layout)

    def _register(self, *refs: MediaReference) -> None:
        for ref in refs:
            self._assets.setdefault(ref.id, ref)

    # =========================================================================
    # Lanes
    # =========================================================================
    def _frame_span(self, start: float, duration: float) -> Tuple[int, int]:
        first = seconds_to_frames(start, self.ctx.fps)
        return first, first + seconds_to_frames(duration, self.ctx.fps)

    def _fits(self, track: Track, start: float, duration: float, clip_index: Optional[int]) -> bool:
        """
        True if an item can join ``track`` without an overlap the exporters reject.

        The only overlap allowed is a single transition between items of
        neighbouring clips, the later one starting after and ending no
        earlier than the one it overlaps.
        """
        span = self._frame_span(start, duration)
        overlapping = []
        for item in track.items:
            other = self._frame_span(item.start_time, item.duration)
            if span[0] < other[1] and other[0] < span[1]:
                overlapping.append((item, other))

        if not overlapping:
            return True
        if len(overlapping) > 1:
            return False
        item, other = overlapping[0]
        if clip_index is None or item.clip_index is None or abs(clip_index - item.clip_index) != 1:
            return False
        earlier, later = sorted([span, other])
        return earlier[0] < later[0] and earlier[1] <= later[1]

    def _lane_for(self, role: str, start: float, duration: float, clip_index: Optional[int]) -> str:
        if role == "visual":
            if self._fits(self._tracks["V1"], start, duration, clip_index):
                return "V1"
            role = "overlay"

        lanes = self._lanes[role]
        for track_id in lanes:
            if self._fits(self._tracks[track_id], start, duration, clip_index):
                return track_id

        kind = "video" if role == "overlay" else "audio"
        prefix = kind[0].upper()
        number = 1 + max(int(t.id[1:]) for t in self._tracks.values() if t.kind == kind)
        track = Track(id=f"{prefix}{number}", name=f"{LANE_BASE_NAMES[role]} {len(lanes) + 1}", kind=kind)
        self._tracks[track.id] = track
        lanes.append(track.id)
        logger.debug(f"Opened lane {track.id} ({track.name})")
        return track.id

    def _add_item(
        self,
        role: str,
        leaf: LeafResult,
        start: float,
        duration: float,
        clip_index: Optional[int],
    ) -> ClipItem:
        track_id = self._lane_for(role, start, duration, clip_index)
        self._register(leaf.ref, *leaf.children)
        props = leaf.node.props
        trim_start = _number(props.get("cut_from"))
        trim_end = _number(props.get("cut_to"))
        item = ClipItem(
            id=self._next_id("item"),
            asset_id=leaf.ref.id,
            start_time=start,
            duration=duration,
            clip_index=clip_index,
            trim_start=trim_start if trim_start else None,
            trim_end=trim_end,
            volume=_number(props.get("volume")),
            position=props.get("position"),
            size=props.get("size"),
            zoom=props.get("zoom"),
            layout=leaf.layout,
        )
        self._tracks[track_id].items.append(item)
        return item

    def _add_text(self, node: Node, span_start: float, span_duration: float) -> None:
        text = node.text
        if not text:
            self.ctx.add_warning("skipped-node", f"Skipped empty {node.type.value}", node)
            return
        rel_start = min(max(_number(node.props.get("start")) or 0.0, 0.0), span_duration)
        rel_end = _number(node.props.get("end"))
        rel_end = span_duration if rel_end is None else min(rel_end, span_duration)
        if rel_end <= rel_start:
            self.ctx.add_warning("skipped-node", f"Skipped {node.describe()}: empty time range", node)
            return
        self._texts.append(TextItem(
            id=self._next_id("text"),
            text=text,
            start_time=span_start + rel_start,
            duration=rel_end - rel_start,
            kind=node.type.value,
            position=node.props.get("position"),
            color=node.props.get("color"),
            background_color=node.props.get("background_color"),
        ))

    def _caption_segments(
        self,
        node: Node,
        span: float,
        speech_ref: Optional[MediaReference] = None,
    ) -> List[CaptionSegment]:
        src = node.props.get("src")
        try:
            if node.props.get("srt"):
                segments = parse_srt(str(node.props["srt"]))
            elif isinstance(src, str):
                segments = load_srt(src)
            elif isinstance(src, Node):
                prompt = normalize_prompt(src.props.get("prompt"))
                text = src.text or (prompt.text if prompt else "")
                end = min(speech_ref.duration, span) if speech_ref and speech_ref.duration else span
                segments = [CaptionSegment(0.0, end, text)] if text else []
            elif node.text:
                segments = [CaptionSegment(0.0, span, node.text)]
            else:
                segments = []
        except CompositionError as e:
            self.ctx.add_warning("skipped-node", f"Skipped captions: {e}", node)
            return []

        clamped = []
        for seg in segments:
            end = min(seg.end, span)
            if seg.start < end:
                clamped.append(CaptionSegment(seg.start, end, seg.text))
        return clamped

    # =========================================================================
    # Global nodes
    # =========================================================================
    async def _place_globals(self, nodes: List[Node], total: float) -> None:
        if not nodes:
            return
        if total <= 0:
            for node in nodes:
                self.ctx.add_warning("skipped-node", f"Skipped global {node.describe()}: no clips to span", node)
            return

        media = [n for n in nodes if n.is_media or n.is_composite]
        caption_nodes = [n for n in nodes if n.type == NodeType.CAPTIONS]
        caption_speech = [
            n.props["src"] for n in caption_nodes
            if isinstance(n.props.get("src"), Node) and n.props["src"].type == NodeType.SPEECH
        ]
        results = await asyncio.gather(*(self._resolve_leaf(n) for n in [*media, *caption_speech]))
        by_node = {id(r.node): r for r in results if r is not None}

        for node in nodes:
            start = max(_number(node.props.get("start")) or 0.0, 0.0)
            if start >= total:
                self.ctx.add_warning("skipped-node", f"Skipped global {node.describe()}: starts after the end", node)
                continue
            span = total - start

            if node.type in TEXT_TYPES:
                self._add_text(node, 0.0, total)
            elif node.type == NodeType.CAPTIONS:
                src = node.props.get("src")
                leaf = by_node.get(id(src)) if isinstance(src, Node) else None
                if leaf is not None:
                    self._place_global_audio(leaf, start, span)
                for seg in self._caption_segments(node, span, leaf.ref if leaf else None):
                    self._texts.append(TextItem(
                        id=self._next_id("text"),
                        text=seg.text,
                        start_time=start + seg.start,
                        duration=seg.duration,
                        kind="caption",
                        color=node.props.get("color"),
                    ))
            elif node.is_media or node.is_composite:
                leaf = by_node.get(id(node))
                if leaf is None:
                    continue
                if node.type in AUDIO_TYPES:
                    self._place_global_audio(leaf, start, span)
                else:
                    self._add_item("overlay", leaf, start, span, None)
            else:
                self.ctx.add_warning(
                    "skipped-node",
                    f"Skipped '{node.type.value}' at render level: not a clip or global node",
                    node,
                )

    def _place_global_audio(self, leaf: LeafResult, start: float, span: float) -> None:
        role = "music" if leaf.node.type == NodeType.MUSIC else "speech"
        self._add_item(role, leaf, start, span, None)

    def _collect_tracks(self, kind: str) -> List[Track]:
        tracks = sorted(
            (t for t in self._tracks.values() if t.kind == kind and t.items),
            key=lambda t: int(t.id[1:]),
        )
        for track in tracks:
            track.items.sort(key=lambda item: (item.start_time, item.id))
        return tracks
