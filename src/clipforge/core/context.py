"""
Render context threaded through resolve/walk/build.

Holds everything that would otherwise be process-wide state: run mode,
cache handle, model bindings, collaborators, output geometry, the abort
signal and the warnings collected during one export.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import Settings, get_settings
from ..exceptions import ResolutionError
from ..logger import log_warning
from .cache import MEDIA_DIRNAME, FileCache, MediaCache, MemoryCache
from .fetcher import SourceFetcher
from .models import ModelBinding, ModelHandle, RunMode
from .nodes import Node
from .placeholder import PlaceholderGenerator


@dataclass
class RenderWarning:
    """A degradation that did not abort the export."""
    code: str          # "placeholder", "skipped-clip", "skipped-node", "transition", ...
    message: str
    node: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "node": self.node}


@dataclass
class RenderContext:
    mode: RunMode = RunMode.DEFAULT
    cache: MediaCache = field(default_factory=MemoryCache)
    cache_dir: Path = field(default_factory=lambda: Path(".clipforge/cache"))
    bindings: Dict[Tuple[str, str], ModelBinding] = field(default_factory=dict)
    # Default binding per node type name ("image", "video", "speech", "music")
    defaults: Dict[str, ModelBinding] = field(default_factory=dict)
    placeholder: PlaceholderGenerator = field(default_factory=PlaceholderGenerator)
    fetcher: SourceFetcher = field(default_factory=SourceFetcher)
    width: int = 1080
    height: int = 1920
    fps: float = 30.0
    default_clip_duration: float = 3.0
    default_transition: str = "fade"
    default_transition_duration: float = 0.5
    warnings: List[RenderWarning] = field(default_factory=list)
    _abort_event: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    def __post_init__(self):
        self.mode = RunMode.parse(self.mode)
        self.cache_dir = Path(self.cache_dir)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        mode: Optional[Any] = None,
        cache_dir: Optional[Path] = None,
        bindings: Optional[Iterable[ModelBinding]] = None,
        defaults: Optional[Dict[str, ModelBinding]] = None,
        use_cache: Optional[bool] = None,
        **overrides: Any,
    ) -> "RenderContext":
        """Build a context from configuration, with per-call overrides."""
        settings = settings or get_settings()
        cache_dir = Path(cache_dir) if cache_dir is not None else settings.paths.cache_dir
        enabled = settings.cache.enabled if use_cache is None else use_cache
        cache: MediaCache = FileCache(cache_dir, ttl_hours=settings.cache.ttl_hours) if enabled else MemoryCache()

        ctx = cls(
            mode=mode if mode is not None else settings.render.mode,
            cache=cache,
            cache_dir=cache_dir,
            defaults=dict(defaults or {}),
            placeholder=PlaceholderGenerator(
                ffmpeg_binary=settings.placeholder.ffmpeg_binary,
                font_path=settings.placeholder.font_path,
                default_duration=settings.placeholder.duration,
                fps=settings.render.fps,
            ),
            width=settings.render.width,
            height=settings.render.height,
            fps=settings.render.fps,
            default_clip_duration=settings.render.default_clip_duration,
            default_transition=settings.render.default_transition,
            default_transition_duration=settings.render.default_transition_duration,
            **overrides,
        )
        for binding in bindings or ():
            ctx.register(binding)
        return ctx

    @property
    def media_dir(self) -> Path:
        return self.cache_dir / MEDIA_DIRNAME

    # -------------------------------------------------------------------------
    # Model bindings
    # -------------------------------------------------------------------------
    def register(self, binding: ModelBinding) -> None:
        self.bindings[(binding.provider, binding.model_id)] = binding

    def binding_for(self, node: Node) -> ModelBinding:
        """
        Binding that should generate ``node``.

        Raises:
            ResolutionError: the node names an unregistered model, or has no
                model and there is no default for its type
        """
        model = node.props.get("model")
        if isinstance(model, ModelBinding):
            return model
        if isinstance(model, str):
            model = ModelHandle.parse(model)
        if isinstance(model, ModelHandle):
            binding = self.bindings.get((model.provider, model.model_id))
            if binding is None:
                raise ResolutionError(
                    f"No binding registered for model {model.provider}/{model.model_id}",
                    node_type=node.type.value,
                )
            return binding
        binding = self.defaults.get(node.type.value)
        if binding is None:
            raise ResolutionError(f"No model bound for {node.describe()}", node_type=node.type.value)
        return binding

    # -------------------------------------------------------------------------
    # Abort & warnings
    # -------------------------------------------------------------------------
    def abort(self) -> None:
        """Stop issuing new provider calls; in-flight calls run to completion."""
        self._abort_event.set()

    @property
    def aborted(self) -> bool:
        return self._abort_event.is_set()

    def add_warning(self, code: str, message: str, node: Optional[Node] = None) -> RenderWarning:
        warning = RenderWarning(code=code, message=message, node=node.describe() if node else None)
        self.warnings.append(warning)
        log_warning(message)
        return warning
