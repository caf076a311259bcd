"""
Placeholder media for preview runs and provider failures.

Images are drawn with Pillow: a solid colour derived from the prompt text,
with the truncated prompt and kind printed on it. Video and audio are
synthesised by ffmpeg from ``lavfi`` sources (``color`` / ``anullsrc``).

The colour depends only on the prompt, so the same prompt always renders
the same placeholder.
"""

import colorsys
import hashlib
import io
import subprocess
import tempfile
import textwrap
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from ..exceptions import CommandError, PlaceholderError
from ..logger import logger
from .cmd_runner import build_ffmpeg_cmd, run_command
from .models import MediaKind

DEFAULT_DURATION = 3.0
DEFAULT_SIZE = (1080, 1920)
MAX_LABEL_CHARS = 80

MEDIA_TYPES = {
    MediaKind.IMAGE: ("image/png", ".png"),
    MediaKind.VIDEO: ("video/mp4", ".mp4"),
    MediaKind.AUDIO: ("audio/wav", ".wav"),
}


def prompt_color(text: str) -> Tuple[int, int, int]:
    """Stable muted RGB colour for a prompt."""
    digest = hashlib.sha256((text or "").encode("utf-8")).digest()
    hue = int.from_bytes(digest[:4], "big") % 360
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, 0.35, 0.55)
    return int(r * 255), int(g * 255), int(b * 255)


def truncate_prompt(text: str, limit: int = MAX_LABEL_CHARS) -> str:
    text = " ".join((text or "").split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def _load_font(font_path: Optional[str], size: int):
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            logger.debug(f"Font {font_path} unavailable, trying DejaVuSans")
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


class PlaceholderGenerator:
    """Produces synthetic stand-in media bytes."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        font_path: Optional[str] = None,
        default_duration: float = DEFAULT_DURATION,
        fps: float = 30.0,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.font_path = font_path
        self.default_duration = default_duration
        self.fps = fps

    @staticmethod
    def media_type(kind: MediaKind) -> Tuple[str, str]:
        """(mime type, file extension) of placeholders of ``kind``."""
        return MEDIA_TYPES[kind]

    def generate(
        self,
        kind: MediaKind,
        prompt_text: str = "",
        duration: Optional[float] = None,
        width: int = DEFAULT_SIZE[0],
        height: int = DEFAULT_SIZE[1],
    ) -> bytes:
        """
        Render a placeholder.

        Raises:
            PlaceholderError: drawing or ffmpeg synthesis failed
        """
        duration = duration if duration and duration > 0 else self.default_duration
        if kind == MediaKind.IMAGE:
            return self._image(prompt_text, width, height)
        if kind == MediaKind.VIDEO:
            return self._video(prompt_text, duration, width, height)
        return self._audio(duration)

    def _image(self, prompt_text: str, width: int, height: int) -> bytes:
        color = prompt_color(prompt_text)
        img = Image.new("RGB", (width, height), color)
        draw = ImageDraw.Draw(img)

        font_size = max(12, min(width, height) // 18)
        font = _load_font(self.font_path, font_size)
        label = textwrap.fill(truncate_prompt(prompt_text) or "placeholder", width=24)
        left, top, right, bottom = draw.multiline_textbbox((0, 0), label, font=font, align="center")
        origin = ((width - (right - left)) // 2, (height - (bottom - top)) // 2)
        draw.multiline_text(origin, label, fill=(255, 255, 255), font=font, align="center")
        draw.text((font_size, font_size), "PLACEHOLDER", fill=(230, 230, 230), font=font)

        buffer = io.BytesIO()
        try:
            img.save(buffer, format="PNG")
        except OSError as e:
            raise PlaceholderError(f"Cannot encode placeholder image: {e}") from e
        return buffer.getvalue()

    def _synthesize(self, args, suffix: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="clipforge-ph-") as tmp:
            out_path = Path(tmp) / f"placeholder{suffix}"
            cmd = build_ffmpeg_cmd([*args, str(out_path)], binary=self.ffmpeg_binary)
            try:
                run_command(cmd, timeout=120)
                return out_path.read_bytes()
            except (CommandError, OSError, subprocess.TimeoutExpired) as e:
                raise PlaceholderError(f"ffmpeg placeholder synthesis failed: {e}") from e

    def _video(self, prompt_text: str, duration: float, width: int, height: int) -> bytes:
        r, g, b = prompt_color(prompt_text)
        source = f"color=c=0x{r:02x}{g:02x}{b:02x}:s={width}x{height}:r={self.fps:g}:d={duration:.3f}"
        args = [
            "-f", "lavfi", "-i", source,
            "-t", f"{duration:.3f}",
            "-c:v", "libx264", "-preset", "ultrafast",
            "-pix_fmt", "yuv420p",
        ]
        return self._synthesize(args, ".mp4")

    def _audio(self, duration: float) -> bytes:
        args = [
            "-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo",
            "-t", f"{duration:.3f}",
            "-c:a", "pcm_s16le",
        ]
        return self._synthesize(args, ".wav")
