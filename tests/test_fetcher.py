import base64
from unittest.mock import MagicMock

import pytest
import requests

from clipforge.core.fetcher import SourceFetcher, location_to_path
from clipforge.exceptions import ResolutionError


class TestToLocation:

    def test_url_kept(self):
        assert SourceFetcher().to_location("https://example.com/a.png") == "https://example.com/a.png"

    def test_path_becomes_file_uri(self, tmp_path):
        path = tmp_path / "a b.png"
        path.write_bytes(b"x")
        location = SourceFetcher().to_location(str(path))
        assert location.startswith("file://")
        assert location_to_path(location) == path.resolve()

    def test_missing_path(self, tmp_path):
        with pytest.raises(ResolutionError):
            SourceFetcher().to_location(str(tmp_path / "missing.png"))

    def test_bytes_stored_once(self, tmp_path):
        fetcher = SourceFetcher()
        first = fetcher.to_location(b"raw", tmp_path / "media")
        second = fetcher.to_location(b"raw", tmp_path / "media")
        assert first == second
        assert location_to_path(first).read_bytes() == b"raw"

    def test_bytes_need_media_dir(self):
        with pytest.raises(ResolutionError):
            SourceFetcher().to_location(b"raw")


class TestFetch:

    def test_file(self, tmp_path):
        path = tmp_path / "a.png"
        path.write_bytes(b"png")
        fetcher = SourceFetcher()
        assert fetcher.fetch(str(path)) == b"png"
        assert fetcher.fetch(path.as_uri()) == b"png"

    def test_data_uri(self):
        payload = base64.b64encode(b"hello").decode()
        assert SourceFetcher().fetch(f"data:image/png;base64,{payload}") == b"hello"

    def test_bad_data_uri(self):
        with pytest.raises(ResolutionError):
            SourceFetcher().fetch("data:image/png;base64,@@@")

    def test_http(self):
        session = MagicMock()
        session.get.return_value.content = b"remote"
        fetcher = SourceFetcher(timeout=5, session=session)
        assert fetcher.fetch("https://example.com/a.png") == b"remote"
        session.get.assert_called_once_with("https://example.com/a.png", timeout=5)

    def test_http_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ResolutionError):
            SourceFetcher(session=session).fetch("https://example.com/a.png")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResolutionError):
            SourceFetcher().fetch(str(tmp_path / "gone.png"))

    def test_guess_media_type(self):
        assert SourceFetcher.guess_media_type("file:///x/clip.mp4") == "video/mp4"
        assert SourceFetcher.guess_media_type("https://cdn/x.png?sig=1") == "image/png"
