import asyncio

import pytest

from clipforge import config
from clipforge.core.cache import MemoryCache
from clipforge.core.context import RenderContext
from clipforge.core.models import GenerationResult, ModelBinding
from clipforge.core.placeholder import PlaceholderGenerator

_ENV_VARS = (
    "CLIPFORGE_MODE",
    "CLIPFORGE_EXPORT_FORMAT",
    "CLIPFORGE_FPS",
    "CLIPFORGE_WIDTH",
    "CLIPFORGE_HEIGHT",
    "CLIPFORGE_CACHE",
    "CLIPFORGE_CACHE_TTL_HOURS",
    "CLIPFORGE_PROJECT_NAME",
)


class CountingBinding(ModelBinding):
    """Fake provider that records every call and returns deterministic bytes."""

    def __init__(
        self,
        provider="fake",
        model_id="gen-1",
        *,
        media_type="image/png",
        duration=None,
        fail=False,
        delay=0.0,
        settings=None,
    ):
        super().__init__(provider, model_id, settings)
        self.media_type = media_type
        self.duration = duration
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def do_generate(self, prompt, params):
        self.calls.append((prompt, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("backend unavailable")
        return GenerationResult(
            data=f"{self.model_id}:{prompt.text}".encode("utf-8"),
            media_type=self.media_type,
            duration=self.duration,
        )


class StubPlaceholder(PlaceholderGenerator):
    """Placeholder generator that never touches Pillow or ffmpeg."""

    def __init__(self):
        super().__init__(default_duration=3.0)
        self.calls = []

    def generate(self, kind, prompt_text="", duration=None, width=1080, height=1920):
        self.calls.append((kind, prompt_text, duration))
        return f"placeholder:{kind.value}:{prompt_text}".encode("utf-8")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temp dir and drop any CLIPFORGE_* overrides."""
    monkeypatch.setenv("CLIPFORGE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("CLIPFORGE_OUTPUT_DIR", str(tmp_path / "output"))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    config.reload_settings()
    yield
    config._settings = None


@pytest.fixture
def stub_placeholder():
    return StubPlaceholder()


@pytest.fixture
def bindings():
    return {
        "image": CountingBinding(model_id="img-1", media_type="image/png"),
        "video": CountingBinding(model_id="vid-1", media_type="video/mp4", duration=5.0),
        "speech": CountingBinding(model_id="tts-1", media_type="audio/wav", duration=2.0),
        "music": CountingBinding(model_id="mus-1", media_type="audio/wav", duration=30.0),
    }


@pytest.fixture
def make_context(tmp_path, stub_placeholder):
    """Factory for a RenderContext with an in-memory cache and stub placeholders."""

    def _make(mode="default", defaults=None, bindings=(), cache=None, **kwargs):
        ctx = RenderContext(
            mode=mode,
            cache=cache if cache is not None else MemoryCache(),
            cache_dir=tmp_path / "cache",
            defaults=dict(defaults or {}),
            placeholder=stub_placeholder,
            **kwargs,
        )
        for binding in bindings:
            ctx.register(binding)
        return ctx

    return _make


def build_sample_timeline(fps=30):
    """Three clips with a 0.5s fade into the third, music underneath and two text items."""
    from clipforge.core.models import MediaKind, MediaReference
    from clipforge.core.timeline import ClipItem, TextItem, Timeline, Track, Transition

    assets = [
        MediaReference("asset_harbour0001", MediaKind.IMAGE, "file:///media/harbour.png",
                       is_placeholder=True, prompt_text="harbour at dawn", media_type="image/png"),
        MediaReference("asset_boats000002", MediaKind.VIDEO, "file:///media/boats.mp4",
                       duration=6.0, prompt_text="fishing boats", media_type="video/mp4"),
        MediaReference("asset_market00003", MediaKind.IMAGE, "https://cdn.example.com/market.png",
                       prompt_text="market stalls", media_type="image/png"),
        MediaReference("asset_theme000004", MediaKind.AUDIO, "file:///media/theme.wav",
                       duration=30.0, prompt_text="ambient piano", media_type="audio/wav"),
    ]
    video_track = Track("V1", "Video 1", "video", [
        ClipItem("item_001", "asset_harbour0001", 0.0, 3.0, clip_index=0),
        ClipItem("item_002", "asset_boats000002", 3.0, 5.0, clip_index=1, trim_start=0.5, trim_end=5.5),
        ClipItem("item_003", "asset_market00003", 7.5, 4.0, clip_index=2),
    ])
    music_track = Track("A2", "Music", "audio", [
        ClipItem("item_004", "asset_theme000004", 0.0, 11.5, volume=0.6),
    ])
    return Timeline(
        fps=fps,
        width=1080,
        height=1920,
        duration=11.5,
        video_tracks=[video_track],
        audio_tracks=[music_track],
        text_items=[
            TextItem("text_001", "Chapter One", 0.0, 2.0, kind="title", position="top"),
            TextItem("text_002", "Hello", 1.0, 1.5, kind="caption"),
        ],
        transitions=[Transition("fade", 0.5, after_clip_index=2, start_time=7.5)],
        assets=assets,
        metadata={"mode": "preview", "skippedClips": 0},
    )
