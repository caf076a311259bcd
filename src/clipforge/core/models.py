"""
Model bindings and media references.

Every generation backend is reached through the same capability:

    class MyImageModel(ModelBinding):
        async def do_generate(self, prompt, params):
            png = await call_backend(prompt.text, **params)
            return GenerationResult(data=png, media_type="image/png")

The resolver only ever calls ``do_generate``; it never depends on a
concrete provider type.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..exceptions import CompositionError, ConfigurationError


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class RunMode(str, Enum):
    """How the resolver treats cache misses."""
    STRICT = "strict"      # provider failures propagate
    DEFAULT = "default"    # provider failures become placeholders + warning
    PREVIEW = "preview"    # never call providers

    @classmethod
    def parse(cls, value: Any) -> "RunMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Unknown run mode '{value}' (expected one of {valid})") from None


@dataclass(frozen=True)
class ModelHandle:
    """Identity of a model, without the ability to call it."""
    provider: str
    model_id: str
    settings: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, value: str) -> "ModelHandle":
        """Parse ``provider/model-id`` notation."""
        provider, sep, model_id = value.partition("/")
        if not sep or not provider or not model_id:
            raise CompositionError(f"Model must be written as 'provider/model-id', got '{value}'")
        return cls(provider=provider, model_id=model_id)

    def identity(self) -> Tuple[str, str, str]:
        return model_identity(self)


def model_identity(model: Any) -> Tuple[str, str, str]:
    """(provider, model_id, settings-json) for a handle or a binding."""
    settings = json.dumps(dict(model.settings or {}), sort_keys=True, default=str)
    return (model.provider, model.model_id, settings)


@dataclass
class PromptPayload:
    """Prompt as handed to a provider, with references loaded as bytes."""
    text: str
    images: List[bytes] = field(default_factory=list)
    videos: List[bytes] = field(default_factory=list)
    audio: List[bytes] = field(default_factory=list)


@dataclass
class GenerationResult:
    data: Optional[bytes] = None
    url: Optional[str] = None
    media_type: Optional[str] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    warnings: List[str] = field(default_factory=list)


class ModelBinding(ABC):
    """A callable generation model for one media kind."""

    def __init__(self, provider: str, model_id: str, settings: Optional[Dict[str, Any]] = None):
        self.provider = provider
        self.model_id = model_id
        self.settings = dict(settings or {})

    @property
    def handle(self) -> ModelHandle:
        return ModelHandle(self.provider, self.model_id, dict(self.settings))

    @abstractmethod
    async def do_generate(self, prompt: PromptPayload, params: Dict[str, Any]) -> GenerationResult:
        """Produce media for ``prompt``. Raise on failure."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider}/{self.model_id})"


class FunctionModelBinding(ModelBinding):
    """Adapt a plain sync or async callable ``fn(prompt, params)`` to a binding.

    The callable may return a ``GenerationResult``, raw ``bytes`` or a mapping
    of ``GenerationResult`` fields. Sync callables run in a worker thread.
    """

    def __init__(
        self,
        provider: str,
        model_id: str,
        fn: Callable[[PromptPayload, Dict[str, Any]], Any],
        settings: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(provider, model_id, settings)
        self.fn = fn

    async def do_generate(self, prompt: PromptPayload, params: Dict[str, Any]) -> GenerationResult:
        if asyncio.iscoroutinefunction(self.fn):
            result = await self.fn(prompt, params)
        else:
            result = await asyncio.to_thread(self.fn, prompt, params)
        if isinstance(result, GenerationResult):
            return result
        if isinstance(result, (bytes, bytearray)):
            return GenerationResult(data=bytes(result))
        if isinstance(result, dict):
            return GenerationResult(**result)
        raise TypeError(f"{self!r} returned unsupported value {type(result).__name__}")


@dataclass(frozen=True)
class MediaReference:
    """A resolved asset. Immutable once produced."""
    id: str
    kind: MediaKind
    location: str
    is_placeholder: bool = False
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    prompt_text: Optional[str] = None
    key: Optional[str] = None
    media_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "location": self.location,
            "isPlaceholder": self.is_placeholder,
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "promptText": self.prompt_text,
            "key": self.key,
            "mediaType": self.media_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaReference":
        return cls(
            id=data["id"],
            kind=MediaKind(data["kind"]),
            location=data["location"],
            is_placeholder=bool(data.get("isPlaceholder", False)),
            duration=data.get("duration"),
            width=data.get("width"),
            height=data.get("height"),
            prompt_text=data.get("promptText"),
            key=data.get("key"),
            media_type=data.get("mediaType"),
        )
