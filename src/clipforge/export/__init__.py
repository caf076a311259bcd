"""
Export entry points.

    resolve_composition(render_node, mode=..., cache_dir=...)   -> Timeline
    export_timeline(render_node, format=..., output=..., ...)   -> ExportResult

Both accept an explicit ``RenderContext``; without one a context is built
from ``get_settings()`` plus the keyword overrides.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import get_settings
from ..core.context import RenderContext, RenderWarning
from ..core.models import MediaReference, ModelBinding
from ..core.nodes import Node
from ..core.timeline import Timeline
from ..core.walker import SceneWalker
from ..exceptions import SerializationError
from ..logger import log_phase, log_success, logger
from . import otio_builder, xml_builder

FORMAT_ALIASES = {
    "interchange-json": otio_builder.FORMAT_NAME,
    "otio": otio_builder.FORMAT_NAME,
    "json": otio_builder.FORMAT_NAME,
    "interchange-xml": xml_builder.FORMAT_NAME,
    "xml": xml_builder.FORMAT_NAME,
    "xmeml": xml_builder.FORMAT_NAME,
    "premiere": xml_builder.FORMAT_NAME,
}

EXTENSIONS = {
    otio_builder.FORMAT_NAME: ".otio",
    xml_builder.FORMAT_NAME: ".xml",
}


def normalize_format(value: str) -> str:
    """Canonical format name for ``value`` or one of its aliases."""
    name = FORMAT_ALIASES.get(str(value).strip().lower())
    if name is None:
        raise SerializationError(
            f"Unknown export format '{value}'. Available: {', '.join(sorted(FORMAT_ALIASES))}",
            format=str(value),
        )
    return name


def build_timeline(timeline: Timeline, format: str, name: str = "ClipForge Timeline") -> str:
    """Serialise ``timeline`` in ``format``."""
    fmt = normalize_format(format)
    if fmt == otio_builder.FORMAT_NAME:
        return otio_builder.build_otio_json(timeline, name=name)
    return xml_builder.build_xmeml(timeline, name=name)


def read_layout(text: str, format: str) -> Dict[str, List[Any]]:
    fmt = normalize_format(format)
    if fmt == otio_builder.FORMAT_NAME:
        return otio_builder.read_layout(text)
    return xml_builder.read_layout(text)


# =============================================================================
# Summary
# =============================================================================
class WarningRecord(BaseModel):
    code: str
    message: str
    node: Optional[str] = None


class ExportSummary(BaseModel):
    """What ended up in the exported timeline, and what was approximated."""

    model_config = ConfigDict(populate_by_name=True)

    clip_count: int = Field(0, alias="clipCount", ge=0)
    track_count: int = Field(0, alias="trackCount", ge=0)
    transition_count: int = Field(0, alias="transitionCount", ge=0)
    placeholder_count: int = Field(0, alias="placeholderCount", ge=0)
    text_item_count: int = Field(0, alias="textItemCount", ge=0)
    skipped_clips: int = Field(0, alias="skippedClips", ge=0)
    total_duration: float = Field(0.0, alias="totalDuration", ge=0.0)
    warnings: List[WarningRecord] = Field(default_factory=list)

    @classmethod
    def from_timeline(cls, timeline: Timeline, warnings: Iterable[RenderWarning] = ()) -> "ExportSummary":
        return cls(
            clip_count=timeline.placed_clip_count,
            track_count=len(timeline.tracks),
            transition_count=len(timeline.transitions),
            placeholder_count=sum(1 for asset in timeline.assets if asset.is_placeholder),
            text_item_count=len(timeline.text_items),
            skipped_clips=timeline.metadata.get("skippedClips", 0),
            total_duration=timeline.duration,
            warnings=[WarningRecord(**w.to_dict()) for w in warnings],
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class ExportResult:
    timeline_path: Path
    format: str
    assets: List[MediaReference]
    summary: ExportSummary
    warnings: List[RenderWarning] = field(default_factory=list)
    timeline: Optional[Timeline] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timelinePath": str(self.timeline_path),
            "format": self.format,
            "assets": [asset.to_dict() for asset in self.assets],
            "summary": self.summary.to_dict(),
        }


# =============================================================================
# Entry points
# =============================================================================
def _context(
    context: Optional[RenderContext],
    mode: Optional[str],
    cache_dir: Optional[Union[str, Path]],
    bindings: Optional[Iterable[ModelBinding]],
    defaults: Optional[Dict[str, ModelBinding]],
    use_cache: Optional[bool],
) -> RenderContext:
    if context is not None:
        return context
    return RenderContext.from_settings(
        mode=mode,
        cache_dir=cache_dir,
        bindings=bindings,
        defaults=defaults,
        use_cache=use_cache,
    )


async def resolve_composition_async(
    render_node: Node,
    *,
    mode: Optional[str] = None,
    cache_dir: Optional[Union[str, Path]] = None,
    context: Optional[RenderContext] = None,
    bindings: Optional[Iterable[ModelBinding]] = None,
    defaults: Optional[Dict[str, ModelBinding]] = None,
    use_cache: Optional[bool] = None,
) -> Timeline:
    """Resolve every producible node under ``render_node`` and lay out the Timeline."""
    ctx = _context(context, mode, cache_dir, bindings, defaults, use_cache)
    walker = SceneWalker(ctx)
    timeline = await walker.walk(render_node)
    logger.info(
        f"Resolved {timeline.placed_clip_count} clips, {len(timeline.assets)} assets "
        f"({walker.resolver.provider_calls} provider calls, {walker.resolver.cache_hits} cache hits)"
    )
    return timeline


def resolve_composition(render_node: Node, **kwargs: Any) -> Timeline:
    """Synchronous wrapper around :func:`resolve_composition_async`."""
    return asyncio.run(resolve_composition_async(render_node, **kwargs))


def _output_path(output: Optional[Union[str, Path]], fmt: str, project_name: str) -> Path:
    extension = EXTENSIONS[fmt]
    if output is None:
        paths = get_settings().paths
        paths.ensure_directories()
        return paths.output_dir / f"{project_name}{extension}"
    path = Path(output)
    if path.is_dir():
        return path / f"{project_name}{extension}"
    return path


async def export_timeline_async(
    render_node: Node,
    format: Optional[str] = None,
    *,
    mode: Optional[str] = None,
    output: Optional[Union[str, Path]] = None,
    cache_dir: Optional[Union[str, Path]] = None,
    context: Optional[RenderContext] = None,
    bindings: Optional[Iterable[ModelBinding]] = None,
    defaults: Optional[Dict[str, ModelBinding]] = None,
    use_cache: Optional[bool] = None,
    name: Optional[str] = None,
) -> ExportResult:
    """
    Resolve ``render_node`` and write it as an interchange timeline.

    Returns:
        ExportResult with the written path, assets and summary

    Raises:
        SerializationError: unknown format or a timeline the format cannot express
        ProviderError: provider failure in strict mode
        AbortedError: the context was aborted
    """
    settings = get_settings()
    fmt = normalize_format(format or settings.export.default_format)
    project_name = name or settings.export.project_name
    ctx = _context(context, mode, cache_dir, bindings, defaults, use_cache)

    log_phase(f"Export ({fmt}, {ctx.mode.value} mode)")
    timeline = await resolve_composition_async(render_node, context=ctx)
    text = build_timeline(timeline, fmt, name=project_name)

    path = _output_path(output, fmt, project_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")

    summary = ExportSummary.from_timeline(timeline, ctx.warnings)
    log_success(
        f"Exported {summary.clip_count} clips / {summary.track_count} tracks "
        f"({summary.total_duration:.2f}s) to {path}"
    )
    if summary.placeholder_count:
        logger.info(f"   {summary.placeholder_count} placeholder asset(s) in timeline")

    return ExportResult(
        timeline_path=path,
        format=fmt,
        assets=list(timeline.assets),
        summary=summary,
        warnings=list(ctx.warnings),
        timeline=timeline,
    )


def export_timeline(render_node: Node, format: Optional[str] = None, **kwargs: Any) -> ExportResult:
    """Synchronous wrapper around :func:`export_timeline_async`."""
    return asyncio.run(export_timeline_async(render_node, format, **kwargs))


__all__ = [
    "EXTENSIONS",
    "ExportResult",
    "ExportSummary",
    "WarningRecord",
    "build_timeline",
    "export_timeline",
    "export_timeline_async",
    "normalize_format",
    "read_layout",
    "resolve_composition",
    "resolve_composition_async",
]
