"""
Media Resolver

Turns a media node into a MediaReference:

1. Literal ``src`` -> location-backed reference, no cache, no provider.
2. Otherwise derive the cache key and consult the cache.
3. On a miss, by run mode:
   - preview: placeholder, never persisted
   - strict:  provider call, failures propagate
   - default: provider call, failures become a placeholder plus a warning
4. Persist real results in the cache.

Concurrent resolutions of the same key share one task, so a key is
produced at most once per resolver even when requested by many nodes.
"""

import asyncio
import base64
import functools
import hashlib
import mimetypes
from typing import Any, Dict, List, Optional

from ..exceptions import AbortedError, ProviderError, ResolutionError
from ..logger import logger
from .cache_key import IGNORED_PROPS, asset_id_for, derive_key, key_digest
from .context import RenderContext
from .fetcher import location_to_path
from .models import GenerationResult, MediaKind, MediaReference, ModelBinding, PromptPayload, RunMode
from .nodes import MEDIA_TYPES, Node, NodeType, Prompt, normalize_prompt
from .placeholder import PlaceholderGenerator

NODE_KINDS = {
    NodeType.IMAGE: MediaKind.IMAGE,
    NodeType.VIDEO: MediaKind.VIDEO,
    NodeType.SPEECH: MediaKind.AUDIO,
    NodeType.MUSIC: MediaKind.AUDIO,
}

_PAYLOAD_EXCLUDED = frozenset({"prompt", "src", "model"})


def kind_for(node: Node) -> MediaKind:
    try:
        return NODE_KINDS[node.type]
    except KeyError:
        raise ResolutionError(f"'{node.type.value}' nodes do not produce media", node_type=node.type.value) from None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


class MediaResolver:
    """Resolves media nodes against cache, providers and placeholders."""

    def __init__(self, context: RenderContext):
        self.ctx = context
        self._inflight: Dict[str, asyncio.Future] = {}
        self._resolved: Dict[str, MediaReference] = {}
        self.provider_calls = 0
        self.cache_hits = 0

    async def resolve(self, node: Node) -> MediaReference:
        """
        Resolve ``node`` to a MediaReference.

        Raises:
            ResolutionError: nothing to resolve, or no model bound
            ProviderError: provider failed in strict mode
            AbortedError: abort was requested before a provider call
        """
        if node.type not in MEDIA_TYPES:
            raise ResolutionError(f"'{node.type.value}' nodes do not produce media", node_type=node.type.value)

        src = node.props.get("src")
        if src is not None:
            return await self._resolve_source(node, src)

        key = derive_key(node, self.ctx.defaults)
        digest = key_digest(key)

        ref = self._resolved.get(digest)
        if ref is not None:
            return ref

        task = self._inflight.get(digest)
        if task is None:
            task = asyncio.ensure_future(self._produce(node, key, digest))
            self._inflight[digest] = task
            task.add_done_callback(functools.partial(self._settle, digest))
        return await asyncio.shield(task)

    def _settle(self, digest: str, task: asyncio.Future) -> None:
        self._inflight.pop(digest, None)
        if not task.cancelled() and task.exception() is None:
            self._resolved[digest] = task.result()

    # -------------------------------------------------------------------------
    # Literal sources
    # -------------------------------------------------------------------------
    async def _resolve_source(self, node: Node, src: Any) -> MediaReference:
        if isinstance(src, Node):
            return await self.resolve(src)

        location = self.ctx.fetcher.to_location(src, self.ctx.media_dir)
        digest = hashlib.sha256(f"src:{location}".encode("utf-8")).hexdigest()
        ref = self._resolved.get(digest)
        if ref is None:
            ref = MediaReference(
                id=asset_id_for(digest),
                kind=kind_for(node),
                location=location,
                is_placeholder=False,
                duration=_number(node.props.get("duration")),
                key=digest,
                media_type=self.ctx.fetcher.guess_media_type(location),
            )
            self._resolved[digest] = ref
        return ref

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------
    async def _produce(self, node: Node, key: List[Any], digest: str) -> MediaReference:
        cached = self.ctx.cache.get(key)
        if cached is not None and self._is_available(cached):
            self.cache_hits += 1
            logger.debug(f"Cache hit {cached.id} for {node.describe()}")
            return cached

        kind = kind_for(node)
        prompt = normalize_prompt(node.props.get("prompt"))
        prompt_text = prompt.text if prompt else node.text

        if self.ctx.mode == RunMode.PREVIEW:
            return await self._placeholder(node, kind, prompt_text, digest)

        binding = self.ctx.binding_for(node)
        payload = await self._payload(node, prompt)
        params = self._params(node)

        try:
            result = await self._call_provider(binding, payload, params)
        except ProviderError as e:
            if self.ctx.mode == RunMode.STRICT:
                raise
            self.ctx.add_warning(
                "placeholder",
                f"Provider failed for {node.describe()}, using placeholder: {e}",
                node,
            )
            return await self._placeholder(node, kind, prompt_text, digest)

        for message in result.warnings:
            self.ctx.add_warning("provider", f"{binding!r}: {message}", node)

        ref = self._materialize(result, node, kind, prompt_text, digest)
        # inline data: references are never cached
        if not ref.location.startswith("data:"):
            self.ctx.cache.set(key, ref)
        logger.debug(f"Generated {ref.id} for {node.describe()}")
        return ref

    async def _call_provider(
        self,
        binding: ModelBinding,
        payload: PromptPayload,
        params: Dict[str, Any],
    ) -> GenerationResult:
        if self.ctx.aborted:
            raise AbortedError(f"Render aborted before calling {binding!r}")

        self.provider_calls += 1
        try:
            result = await binding.do_generate(payload, params)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{binding!r} failed: {e}",
                provider=binding.provider,
                model_id=binding.model_id,
            ) from e

        if not isinstance(result, GenerationResult) or not (result.data or result.url):
            raise ProviderError(
                f"{binding!r} returned no media",
                provider=binding.provider,
                model_id=binding.model_id,
            )
        return result

    async def _payload(self, node: Node, prompt: Optional[Prompt]) -> PromptPayload:
        """Resolve nested references depth-first and load them as bytes."""
        payload = PromptPayload(text=prompt.text if prompt else node.text)
        if prompt is None or not prompt.references:
            return payload

        nested = await asyncio.gather(*(self.resolve(r) for r in prompt.node_references))
        resolved = iter(nested)
        fetcher = self.ctx.fetcher

        for ref in prompt.references:
            if isinstance(ref, Node):
                media = next(resolved)
                data = await fetcher.fetch_async(media.location)
                kind = media.kind
            else:
                data = await fetcher.fetch_async(ref)
                media_type = fetcher.guess_media_type(str(ref)) if isinstance(ref, str) else None
                if media_type and media_type.startswith("video/"):
                    kind = MediaKind.VIDEO
                elif media_type and media_type.startswith("audio/"):
                    kind = MediaKind.AUDIO
                else:
                    kind = MediaKind.IMAGE

            if kind == MediaKind.VIDEO:
                payload.videos.append(data)
            elif kind == MediaKind.AUDIO:
                payload.audio.append(data)
            else:
                payload.images.append(data)
        return payload

    @staticmethod
    def _params(node: Node) -> Dict[str, Any]:
        ignored = IGNORED_PROPS.get(node.type, frozenset())
        return {
            name: value
            for name, value in node.props.items()
            if name not in ignored and name not in _PAYLOAD_EXCLUDED
        }

    # -------------------------------------------------------------------------
    # Materialisation
    # -------------------------------------------------------------------------
    def _write_media(self, name: str, data: bytes, media_type: str) -> str:
        """
        Write ``data`` under the media directory and return its file URI.

        If the directory is not writable the bytes are kept inline as a
        base64 ``data:`` URI so the asset still reaches the timeline.
        """
        path = self.ctx.media_dir / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            self.ctx.add_warning("media-inline", f"Cannot write media file {path}, embedding it inline: {e}")
            return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
        return path.resolve().as_uri()

    def _materialize(
        self,
        result: GenerationResult,
        node: Node,
        kind: MediaKind,
        prompt_text: str,
        digest: str,
    ) -> MediaReference:
        default_type, default_ext = PlaceholderGenerator.media_type(kind)
        media_type = result.media_type or default_type
        if result.data:
            ext = mimetypes.guess_extension(media_type) or default_ext
            location = self._write_media(f"{digest[:24]}{ext}", result.data, media_type)
        else:
            location = result.url

        duration = result.duration or _number(node.props.get("duration"))
        return MediaReference(
            id=asset_id_for(digest),
            kind=kind,
            location=location,
            is_placeholder=False,
            duration=duration if kind != MediaKind.IMAGE else None,
            width=result.width,
            height=result.height,
            prompt_text=prompt_text or None,
            key=digest,
            media_type=media_type,
        )

    async def _placeholder(self, node: Node, kind: MediaKind, prompt_text: str, digest: str) -> MediaReference:
        generator = self.ctx.placeholder
        duration = None
        if kind != MediaKind.IMAGE:
            duration = _number(node.props.get("duration")) or generator.default_duration

        data = await asyncio.to_thread(
            generator.generate, kind, prompt_text, duration, self.ctx.width, self.ctx.height
        )
        media_type, ext = PlaceholderGenerator.media_type(kind)
        location = self._write_media(f"placeholder_{digest[:24]}{ext}", data, media_type)
        visual = kind != MediaKind.AUDIO
        return MediaReference(
            id=asset_id_for(digest),
            kind=kind,
            location=location,
            is_placeholder=True,
            duration=duration,
            width=self.ctx.width if visual else None,
            height=self.ctx.height if visual else None,
            prompt_text=prompt_text or None,
            key=digest,
            media_type=media_type,
        )

    @staticmethod
    def _is_available(ref: MediaReference) -> bool:
        if ref.location.startswith("file://"):
            path = location_to_path(ref.location)
            if not path.exists():
                logger.debug(f"Cached media for {ref.id} missing on disk, regenerating")
                return False
        return True
