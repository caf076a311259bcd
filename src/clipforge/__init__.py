"""
ClipForge - declarative AI video compositions to NLE timelines

Core:
    from clipforge import render, clip, image, title, export_timeline

    composition = render(
        clip(image(prompt="a lighthouse at dusk"), title("Chapter One"), duration=3),
        width=1080, height=1920, fps=30,
    )
    result = export_timeline(composition, format="interchange-xml", mode="preview")
    print(result.summary.to_dict())

Programmatic timeline (for a rendering backend):
    from clipforge import resolve_composition
    timeline = resolve_composition(composition, mode="strict")

Model bindings:
    from clipforge import FunctionModelBinding
    binding = FunctionModelBinding("acme", "img-1", generate_fn)
    export_timeline(composition, defaults={"image": binding})

Documents:
    from clipforge import load_composition
    composition = load_composition("story.yaml")
"""

from ._version import __version__
from .core.context import RenderContext, RenderWarning
from .core.models import (
    FunctionModelBinding,
    GenerationResult,
    MediaKind,
    MediaReference,
    ModelBinding,
    ModelHandle,
    RunMode,
)
from .core.nodes import (
    Node,
    NodeType,
    Prompt,
    captions,
    clip,
    grid,
    image,
    load_composition,
    music,
    render,
    slider,
    speech,
    split,
    subtitle,
    swipe,
    title,
    video,
)
from .core.timeline import Timeline
from .exceptions import ClipForgeError
from .export import (
    ExportResult,
    ExportSummary,
    export_timeline,
    export_timeline_async,
    resolve_composition,
    resolve_composition_async,
)

__all__ = [
    "__version__",
    "ClipForgeError",
    "ExportResult",
    "ExportSummary",
    "FunctionModelBinding",
    "GenerationResult",
    "MediaKind",
    "MediaReference",
    "ModelBinding",
    "ModelHandle",
    "Node",
    "NodeType",
    "Prompt",
    "RenderContext",
    "RenderWarning",
    "RunMode",
    "Timeline",
    "captions",
    "clip",
    "export_timeline",
    "export_timeline_async",
    "grid",
    "image",
    "load_composition",
    "music",
    "render",
    "resolve_composition",
    "resolve_composition_async",
    "slider",
    "speech",
    "split",
    "subtitle",
    "swipe",
    "title",
    "video",
]
