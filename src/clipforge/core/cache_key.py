"""
Cache key derivation for media-producing nodes.

A key is a flat list of JSON primitives built from the node kind, model
identity, prompt text, the keys of its references (in order) and its
generation parameters (sorted). Layout and playback props such as
position or volume do not change what a model produces and are left out,
so the same generated asset is shared wherever it is placed.

Nested reference nodes contribute their own derived key, framed as
``["ref", <length>, *key]``, never the node object itself.
"""

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import ResolutionError
from .models import ModelBinding, ModelHandle, model_identity
from .nodes import MEDIA_TYPES, Node, NodeType, normalize_prompt

KEY_VERSION = 1

_LAYOUT_PROPS = frozenset({"id", "position", "size", "zoom", "resize", "left", "top", "width", "height"})

# Props that never influence generated content.
IGNORED_PROPS: Dict[NodeType, frozenset] = {
    NodeType.IMAGE: _LAYOUT_PROPS,
    NodeType.VIDEO: _LAYOUT_PROPS | {"cut_from", "cut_to", "volume", "keep_audio"},
    NodeType.SPEECH: frozenset({"id", "volume", "start"}),
    NodeType.MUSIC: frozenset({"id", "volume", "start", "loop", "ducking", "cut_from", "cut_to"}),
}

# Handled explicitly by derive_key
_STRUCTURAL_PROPS = frozenset({"prompt", "src", "model"})


def is_url(value: str) -> bool:
    return value.startswith(("http://", "https://", "data:"))


def _short_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


def literal_fingerprint(value: Any) -> str:
    """
    Fingerprint a literal reference (bytes, URL or local path).

    Local files are identified by absolute path, mtime and size so edits to
    the file produce a new key without hashing its contents.
    """
    if isinstance(value, (bytes, bytearray)):
        return f"bytes:{_short_hash(bytes(value))}"
    text = str(value)
    if text.startswith("data:"):
        return f"data:{_short_hash(text.encode('utf-8'))}"
    if is_url(text):
        return text
    if text.startswith("file://"):
        text = text[len("file://"):]
    path = Path(text).expanduser().absolute()
    try:
        stat = os.stat(path)
    except OSError:
        return f"path:{path}"
    return f"file:{path}:{stat.st_mtime_ns}:{stat.st_size}"


def _primitive(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"bytes:{_short_hash(bytes(value))}"
    return json.dumps(value, sort_keys=True, default=str)


def _model_for(node: Node, defaults: Optional[Mapping[str, Any]]) -> Optional[Any]:
    model = node.props.get("model")
    if isinstance(model, (ModelHandle, ModelBinding)):
        return model
    if isinstance(model, str):
        return ModelHandle.parse(model)
    if defaults:
        return defaults.get(node.type.value)
    return None


def derive_key(node: Node, defaults: Optional[Mapping[str, Any]] = None) -> List[Any]:
    """
    Derive the cache key of a media node.

    Args:
        node: image, video, speech or music node
        defaults: default model bindings keyed by node type name, used when
            the node does not name a model itself

    Raises:
        ResolutionError: node has no prompt, no source and no text
    """
    if node.type not in MEDIA_TYPES:
        raise ResolutionError(f"'{node.type.value}' nodes do not produce media", node_type=node.type.value)

    prompt = normalize_prompt(node.props.get("prompt"))
    src = node.props.get("src")
    text = node.text

    if prompt is None and src is None and not text:
        raise ResolutionError(
            f"{node.describe()} has neither a prompt nor a source",
            node_type=node.type.value,
        )

    key: List[Any] = [f"v{KEY_VERSION}", node.type.value]

    if src is not None:
        if isinstance(src, Node):
            sub = derive_key(src, defaults)
            key.extend(["src", "ref", len(sub), *sub])
        else:
            key.extend(["src", literal_fingerprint(src)])
        return key

    model = _model_for(node, defaults)
    if model is None:
        key.extend(["model", None, None, None])
    else:
        key.extend(["model", *model_identity(model)])

    if prompt is not None:
        key.extend(["prompt", prompt.text, "refs", len(prompt.references)])
        for ref in prompt.references:
            if isinstance(ref, Node):
                sub = derive_key(ref, defaults)
                key.extend(["ref", len(sub), *sub])
            else:
                key.extend(["literal", literal_fingerprint(ref)])

    if text:
        key.extend(["text", text])

    ignored = IGNORED_PROPS.get(node.type, frozenset())
    for name in sorted(node.props):
        if name in ignored or name in _STRUCTURAL_PROPS:
            continue
        key.extend([name, _primitive(node.props[name])])

    return key


def key_digest(key: List[Any]) -> str:
    """Stable hex digest of a derived key."""
    encoded = json.dumps(key, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def asset_id_for(digest: str) -> str:
    return f"asset_{digest[:12]}"
