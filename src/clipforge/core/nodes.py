"""
Composition Nodes

A composition is a tree of declarative nodes rooted at a ``render`` node:

    render(width=1080, height=1920, fps=30)
      clip(duration=3)
        image(prompt="a lighthouse at dusk")
        title("Chapter One")
      clip(duration="auto", transition={"name": "fade", "duration": 0.5})
        video(prompt={"text": "waves", "references": [image(prompt="...")]})
      music(prompt="ambient piano")

Nodes are plain values. Prompts are normalised into a single ``Prompt``
shape as soon as they are read, whatever form the author used.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from ..exceptions import CompositionError
from .models import ModelHandle


class NodeType(str, Enum):
    RENDER = "render"
    CLIP = "clip"
    IMAGE = "image"
    VIDEO = "video"
    SPEECH = "speech"
    MUSIC = "music"
    TITLE = "title"
    SUBTITLE = "subtitle"
    CAPTIONS = "captions"
    SPLIT = "split"
    SLIDER = "slider"
    SWIPE = "swipe"
    GRID = "grid"


MEDIA_TYPES = frozenset({NodeType.IMAGE, NodeType.VIDEO, NodeType.SPEECH, NodeType.MUSIC})
VISUAL_TYPES = frozenset({NodeType.IMAGE, NodeType.VIDEO})
AUDIO_TYPES = frozenset({NodeType.SPEECH, NodeType.MUSIC})
TEXT_TYPES = frozenset({NodeType.TITLE, NodeType.SUBTITLE})
COMPOSITE_TYPES = frozenset({NodeType.SPLIT, NodeType.SLIDER, NodeType.SWIPE, NodeType.GRID})

Child = Union["Node", str]


@dataclass
class Node:
    """One element of a composition tree."""
    type: NodeType
    props: Dict[str, Any] = field(default_factory=dict)
    children: List[Child] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        return self.props.get(name, default)

    @property
    def node_children(self) -> List["Node"]:
        return [c for c in self.children if isinstance(c, Node)]

    @property
    def text(self) -> str:
        return text_content(self)

    @property
    def is_media(self) -> bool:
        return self.type in MEDIA_TYPES

    @property
    def is_composite(self) -> bool:
        return self.type in COMPOSITE_TYPES

    def describe(self) -> str:
        """Short human-readable label used in warnings and the CLI tree."""
        prompt = normalize_prompt(self.props.get("prompt"))
        if prompt and prompt.text:
            label = prompt.text
        elif self.props.get("src") is not None and not isinstance(self.props["src"], Node):
            label = str(self.props["src"])
        else:
            label = self.text
        label = label.strip()
        if len(label) > 40:
            label = label[:37] + "..."
        return f"{self.type.value}({label})" if label else self.type.value


@dataclass(frozen=True)
class Prompt:
    """Canonical prompt: text plus ordered reference values.

    References are nested ``Node`` values (producible media), raw ``bytes``,
    or string locators (URL or local path).
    """
    text: str = ""
    references: Tuple[Any, ...] = ()

    @property
    def node_references(self) -> List[Node]:
        return [r for r in self.references if isinstance(r, Node)]


_REFERENCE_KEYS = ("references", "images", "video", "videos", "audio")


def normalize_prompt(value: Any) -> Optional[Prompt]:
    """
    Normalise the accepted prompt shapes into a ``Prompt``.

    Accepts None, a string, a Prompt, or a mapping with ``text`` and any of
    ``references``/``images``/``video``/``audio`` lists.
    """
    if value is None:
        return None
    if isinstance(value, Prompt):
        return value
    if isinstance(value, str):
        return Prompt(text=value)
    if isinstance(value, dict):
        text = value.get("text") or ""
        if not isinstance(text, str):
            raise CompositionError(f"Prompt text must be a string, got {type(text).__name__}")
        refs: List[Any] = []
        for key in _REFERENCE_KEYS:
            entries = value.get(key)
            if entries is None:
                continue
            if not isinstance(entries, (list, tuple)):
                entries = [entries]
            refs.extend(entries)
        if not text and not refs:
            return None
        return Prompt(text=text, references=tuple(refs))
    raise CompositionError(f"Unsupported prompt value: {type(value).__name__}")


def text_content(node: Node) -> str:
    """Concatenate the string children of a node."""
    return "".join(c for c in node.children if isinstance(c, str)).strip()


# =============================================================================
# Node factories
# =============================================================================

def _flatten(children: Iterable[Any]) -> List[Child]:
    flat: List[Child] = []
    for child in children:
        if child is None or child is False:
            continue
        if isinstance(child, (list, tuple)):
            flat.extend(_flatten(child))
        elif isinstance(child, (Node, str)):
            flat.append(child)
        elif isinstance(child, (int, float)):
            flat.append(str(child))
        else:
            raise CompositionError(f"Invalid child: {child!r}")
    return flat


def create_node(node_type: Union[NodeType, str], *children: Any, **props: Any) -> Node:
    try:
        node_type = NodeType(node_type)
    except ValueError:
        raise CompositionError(f"Unknown node type: {node_type!r}") from None
    clean = {k: v for k, v in props.items() if v is not None}
    return Node(type=node_type, props=clean, children=_flatten(children))


def render(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.RENDER, *children, **props)


def clip(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.CLIP, *children, **props)


def image(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.IMAGE, *children, **props)


def video(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.VIDEO, *children, **props)


def speech(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.SPEECH, *children, **props)


def music(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.MUSIC, *children, **props)


def title(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.TITLE, *children, **props)


def subtitle(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.SUBTITLE, *children, **props)


def captions(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.CAPTIONS, *children, **props)


def split(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.SPLIT, *children, **props)


def slider(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.SLIDER, *children, **props)


def swipe(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.SWIPE, *children, **props)


def grid(*children: Any, **props: Any) -> Node:
    return create_node(NodeType.GRID, *children, **props)


# =============================================================================
# Document loading (YAML / JSON)
# =============================================================================

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _parse_model(value: Any) -> Any:
    if isinstance(value, str):
        return ModelHandle.parse(value)
    if isinstance(value, dict):
        provider = value.get("provider")
        model_id = value.get("model_id") or value.get("modelId") or value.get("id")
        if not provider or not model_id:
            raise CompositionError(f"Model mapping needs provider and model id: {value!r}")
        return ModelHandle(provider=provider, model_id=model_id, settings=dict(value.get("settings") or {}))
    raise CompositionError(f"Unsupported model value: {value!r}")


def _parse_reference(value: Any) -> Any:
    if isinstance(value, dict) and len(value) == 1 and next(iter(value)) in NodeType._value2member_map_:
        return parse_node(value)
    if isinstance(value, str):
        return value
    raise CompositionError(f"Unsupported prompt reference: {value!r}")


def _parse_prompt(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    parsed: Dict[str, Any] = {"text": value.get("text", "")}
    for key in _REFERENCE_KEYS:
        if key in value:
            entries = value[key]
            if not isinstance(entries, list):
                entries = [entries]
            parsed[key] = [_parse_reference(e) for e in entries]
    return parsed


def parse_node(data: Any) -> Child:
    """Parse one document entry (``{type: body}`` mapping or text) into a node."""
    if isinstance(data, str):
        return data
    if not isinstance(data, dict) or len(data) != 1:
        raise CompositionError(f"Expected a single-key node mapping, got {data!r}")

    type_name, body = next(iter(data.items()))
    if body is None:
        body = {}
    elif isinstance(body, str):
        body = {"children": [body]}
    elif isinstance(body, list):
        body = {"children": body}
    elif not isinstance(body, dict):
        raise CompositionError(f"Invalid body for '{type_name}': {body!r}")

    props: Dict[str, Any] = {}
    children: List[Child] = []
    for key, value in body.items():
        name = _snake(key)
        if name == "children":
            children.extend(parse_node(c) for c in (value or []))
        elif name == "text":
            children.append(str(value))
        elif name == "model":
            props[name] = _parse_model(value)
        elif name == "prompt":
            props[name] = _parse_prompt(value)
        elif name == "src" and isinstance(value, dict):
            props[name] = parse_node(value)
        else:
            props[name] = value
    return create_node(type_name, *children, **props)


def load_composition(path: Union[str, Path]) -> Node:
    """Load a YAML or JSON composition document and return its render node."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CompositionError(f"Cannot read composition {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CompositionError(f"Cannot parse composition {path}: {e}") from e

    root = parse_node(data)
    if not isinstance(root, Node) or root.type != NodeType.RENDER:
        raise CompositionError(f"Composition root must be a 'render' node: {path}")
    return root
