import io
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from clipforge.core.models import MediaKind
from clipforge.core.placeholder import PlaceholderGenerator, prompt_color, truncate_prompt
from clipforge.exceptions import CommandError, PlaceholderError


def fake_ffmpeg(cmd, **kwargs):
    Path(cmd[-1]).write_bytes(b"synthetic-media")


class TestHelpers:

    def test_color_is_stable(self):
        assert prompt_color("a lighthouse") == prompt_color("a lighthouse")
        assert prompt_color("a lighthouse") != prompt_color("a harbour")

    def test_truncate(self):
        assert truncate_prompt("  many   spaces ") == "many spaces"
        long = truncate_prompt("word " * 50, limit=20)
        assert len(long) <= 20
        assert long.endswith("...")


class TestPlaceholderGenerator:

    def test_image(self):
        data = PlaceholderGenerator().generate(MediaKind.IMAGE, "a lighthouse at dusk", width=320, height=240)
        img = Image.open(io.BytesIO(data))
        assert img.format == "PNG"
        assert img.size == (320, 240)
        assert img.getpixel((1, 1)) == prompt_color("a lighthouse at dusk")

    def test_empty_prompt_image(self):
        data = PlaceholderGenerator().generate(MediaKind.IMAGE, "", width=64, height=64)
        assert data.startswith(b"\x89PNG")

    @patch("clipforge.core.placeholder.run_command", side_effect=fake_ffmpeg)
    def test_video_uses_lavfi_color(self, mock_run):
        gen = PlaceholderGenerator(ffmpeg_binary="/opt/ffmpeg", fps=25)
        data = gen.generate(MediaKind.VIDEO, "waves", duration=4.0, width=720, height=1280)

        assert data == b"synthetic-media"
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "/opt/ffmpeg"
        source = cmd[cmd.index("-i") + 1]
        assert source.startswith("color=c=0x")
        assert "s=720x1280" in source
        assert "r=25" in source
        assert cmd[cmd.index("-t") + 1] == "4.000"

    @patch("clipforge.core.placeholder.run_command", side_effect=fake_ffmpeg)
    def test_audio_uses_anullsrc(self, mock_run):
        PlaceholderGenerator().generate(MediaKind.AUDIO, "theme")
        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-i") + 1].startswith("anullsrc")
        assert cmd[cmd.index("-t") + 1] == "3.000"

    @patch("clipforge.core.placeholder.run_command")
    def test_ffmpeg_failure(self, mock_run):
        mock_run.side_effect = CommandError(["ffmpeg"], 1, stderr="Unknown encoder")
        with pytest.raises(PlaceholderError):
            PlaceholderGenerator().generate(MediaKind.VIDEO, "waves")

    @patch("clipforge.core.placeholder.run_command", side_effect=FileNotFoundError("ffmpeg"))
    def test_missing_ffmpeg(self, mock_run):
        with pytest.raises(PlaceholderError):
            PlaceholderGenerator().generate(MediaKind.AUDIO, "theme")

    def test_media_types(self):
        assert PlaceholderGenerator.media_type(MediaKind.VIDEO) == ("video/mp4", ".mp4")
        assert PlaceholderGenerator.media_type(MediaKind.AUDIO) == ("audio/wav", ".wav")
