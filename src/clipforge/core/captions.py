"""SRT caption parsing for ``captions`` nodes."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from ..exceptions import CompositionError

# SRT format: index, timestamp, text, blank line
_SRT_PATTERN = re.compile(
    r"(\d+)\s*\n"
    r"(\d{2}):(\d{2}):(\d{2})[,.](\d{3})\s*-->\s*"
    r"(\d{2}):(\d{2}):(\d{2})[,.](\d{3})[^\n]*\n"
    r"(.*?)(?=\n\s*\n|\s*$)",
    re.DOTALL
)


@dataclass
class CaptionSegment:
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


def _timestamp(hours: str, minutes: str, seconds: str, millis: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds) + int(millis) / 1000


def parse_srt(content: str) -> List[CaptionSegment]:
    """Parse SRT text into segments, dropping empty or zero-length cues."""
    content = content.replace("\r\n", "\n").lstrip("\ufeff")
    segments = []
    for match in _SRT_PATTERN.finditer(content):
        start = _timestamp(*match.group(2, 3, 4, 5))
        end = _timestamp(*match.group(6, 7, 8, 9))
        text = " ".join(line.strip() for line in match.group(10).strip().splitlines())
        if text and end > start:
            segments.append(CaptionSegment(start=start, end=end, text=text))
    return segments


def load_srt(path: Union[str, Path]) -> List[CaptionSegment]:
    path = Path(path)
    try:
        return parse_srt(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CompositionError(f"Cannot read captions file {path}: {e}") from e
