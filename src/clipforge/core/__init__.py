"""
ClipForge Core Module

Contains the resolution pipeline components:
- SceneWalker: lays out a render node as a Timeline
- MediaResolver: turns producible nodes into MediaReferences
- RenderContext: per-run state threaded through both
"""

from .context import RenderContext, RenderWarning
from .resolver import MediaResolver
from .timeline import ClipItem, TextItem, Timeline, Track, Transition
from .walker import SceneWalker

__all__ = [
    "ClipItem",
    "MediaResolver",
    "RenderContext",
    "RenderWarning",
    "SceneWalker",
    "TextItem",
    "Timeline",
    "Track",
    "Transition",
]
