import json
import time

from clipforge.core.cache import MEDIA_DIRNAME, FileCache, MemoryCache
from clipforge.core.models import MediaKind, MediaReference

KEY = ["v1", "image", "model", "acme", "img-1", "{}", "prompt", "cat", "refs", 0]


def make_ref(**overrides):
    values = dict(
        id="asset_abc123abc123",
        kind=MediaKind.IMAGE,
        location="file:///tmp/cat.png",
        prompt_text="cat",
        key="abc123",
        media_type="image/png",
    )
    values.update(overrides)
    return MediaReference(**values)


class TestFileCache:

    def test_round_trip(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        ref = make_ref()
        assert cache.set(KEY, ref) is True
        assert cache.get(KEY) == ref
        assert len(cache) == 1

    def test_record_layout(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        cache.set(KEY, make_ref())
        record = json.loads(cache.path_for(KEY).read_text())
        assert record["value"]["id"] == "asset_abc123abc123"
        assert record["value"]["kind"] == "image"
        assert record["expiresAt"] is None

    def test_miss(self, tmp_path):
        assert FileCache(tmp_path / "cache").get(KEY) is None

    def test_expired_entry_is_a_miss(self, tmp_path, monkeypatch):
        cache = FileCache(tmp_path / "cache", ttl_hours=1)
        cache.set(KEY, make_ref())
        assert cache.get(KEY) is not None

        now = time.time()
        monkeypatch.setattr(time, "time", lambda: now + 2 * 3600)
        assert cache.get(KEY) is None

    def test_corrupt_entry_is_a_miss(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        path = cache.path_for(KEY)
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        assert cache.get(KEY) is None

    def test_entry_without_value_is_a_miss(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        path = cache.path_for(KEY)
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"expiresAt": None}))
        assert cache.get(KEY) is None

    def test_write_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        cache = FileCache(blocker / "cache")
        assert cache.set(KEY, make_ref()) is False
        assert cache.get(KEY) is None

    def test_disabled(self, tmp_path):
        cache = FileCache(tmp_path / "cache", enabled=False)
        assert cache.set(KEY, make_ref()) is False
        assert cache.get(KEY) is None
        assert not (tmp_path / "cache").exists()

    def test_clear(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        cache.set(KEY, make_ref())
        cache.set([*KEY, "seed", 2], make_ref(id="asset_def456def456"))
        assert cache.clear() == 2
        assert len(cache) == 0
        assert cache.get(KEY) is None

    def test_clear_missing_dir(self, tmp_path):
        assert FileCache(tmp_path / "nowhere").clear() == 0

    def test_clear_removes_generated_media(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        cache.set(KEY, make_ref())
        media_dir = tmp_path / "cache" / MEDIA_DIRNAME
        media_dir.mkdir()
        (media_dir / "abc123.png").write_bytes(b"png")
        (media_dir / "placeholder_abc123.wav").write_bytes(b"wav")

        assert cache.clear() == 1
        assert list(media_dir.iterdir()) == []

    def test_no_temp_files_left(self, tmp_path):
        cache = FileCache(tmp_path / "cache")
        cache.set(KEY, make_ref())
        assert [p.name for p in (tmp_path / "cache").iterdir()] == [cache.path_for(KEY).name]


class TestMemoryCache:

    def test_round_trip(self):
        cache = MemoryCache()
        ref = make_ref()
        cache.set(KEY, ref)
        assert cache.get(KEY) == ref
        assert len(cache) == 1

    def test_ttl(self, monkeypatch):
        cache = MemoryCache(ttl_hours=1)
        cache.set(KEY, make_ref())
        now = time.time()
        monkeypatch.setattr(time, "time", lambda: now + 3601)
        assert cache.get(KEY) is None
