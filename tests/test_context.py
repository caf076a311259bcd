import pytest

from clipforge.core.cache import FileCache, MemoryCache
from clipforge.core.context import RenderContext
from clipforge.core.models import ModelHandle, RunMode
from clipforge.core.nodes import image, music
from clipforge.exceptions import ResolutionError

from conftest import CountingBinding


class TestFromSettings:

    def test_defaults_from_environment(self, tmp_path):
        ctx = RenderContext.from_settings()
        assert ctx.mode == RunMode.DEFAULT
        assert isinstance(ctx.cache, FileCache)
        assert ctx.cache_dir == tmp_path / "cache"
        assert ctx.media_dir == tmp_path / "cache" / "media"
        assert (ctx.width, ctx.height, ctx.fps) == (1080, 1920, 30.0)

    def test_overrides(self, tmp_path):
        binding = CountingBinding("acme", "img-1")
        ctx = RenderContext.from_settings(
            mode="preview",
            cache_dir=tmp_path / "elsewhere",
            bindings=[binding],
            use_cache=False,
            width=320,
        )
        assert ctx.mode == RunMode.PREVIEW
        assert isinstance(ctx.cache, MemoryCache)
        assert ctx.cache_dir == tmp_path / "elsewhere"
        assert ctx.width == 320
        assert ctx.bindings[("acme", "img-1")] is binding

    def test_cache_disabled_by_env(self, monkeypatch):
        from clipforge.config import reload_settings

        monkeypatch.setenv("CLIPFORGE_CACHE", "false")
        reload_settings()
        assert isinstance(RenderContext.from_settings().cache, MemoryCache)


class TestBindingFor:

    def setup_method(self):
        self.default_image = CountingBinding("fake", "img-default")
        self.registered = CountingBinding("acme", "img-2")
        self.ctx = RenderContext(defaults={"image": self.default_image})
        self.ctx.register(self.registered)

    def test_default_for_type(self):
        assert self.ctx.binding_for(image(prompt="a")) is self.default_image

    def test_handle_lookup(self):
        assert self.ctx.binding_for(image(prompt="a", model=ModelHandle("acme", "img-2"))) is self.registered
        assert self.ctx.binding_for(image(prompt="a", model="acme/img-2")) is self.registered

    def test_binding_instance(self):
        other = CountingBinding("other", "x")
        assert self.ctx.binding_for(image(prompt="a", model=other)) is other

    def test_unregistered_handle(self):
        with pytest.raises(ResolutionError):
            self.ctx.binding_for(image(prompt="a", model="acme/missing"))

    def test_no_default(self):
        with pytest.raises(ResolutionError):
            self.ctx.binding_for(music(prompt="piano"))


def test_warnings_and_abort():
    ctx = RenderContext()
    warning = ctx.add_warning("placeholder", "used a placeholder", image(prompt="a"))
    assert ctx.warnings == [warning]
    assert warning.to_dict() == {"code": "placeholder", "message": "used a placeholder", "node": "image(a)"}

    assert not ctx.aborted
    ctx.abort()
    assert ctx.aborted
