"""
Literal source fetching.

Literal sources are URLs, local paths, ``file://`` URIs or raw bytes. The
fetcher turns them into a stable location string for the timeline and,
only when a provider needs the content (a literal used as a prompt
reference), into bytes.
"""

import asyncio
import base64
import binascii
import hashlib
import mimetypes
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse

import requests

from ..exceptions import ResolutionError
from ..logger import logger
from .cache_key import is_url

Source = Union[str, Path, bytes]


def location_to_path(location: str) -> Path:
    """Filesystem path of a local location (plain path or file:// URI)."""
    if location.startswith("file://"):
        return Path(unquote(urlparse(location).path))
    return Path(location).expanduser()


class SourceFetcher:
    """Reads local files and downloads URLs with ``requests``."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def to_location(self, src: Source, media_dir: Optional[Path] = None) -> str:
        """
        Location string for a literal source.

        URLs are kept verbatim; paths become absolute ``file://`` URIs. Raw
        bytes are written once into ``media_dir`` under their content hash.

        Raises:
            ResolutionError: local file missing, or bytes without a media dir
        """
        if isinstance(src, (bytes, bytearray)):
            if media_dir is None:
                raise ResolutionError("Byte sources need a media directory to be stored in")
            digest = hashlib.sha256(bytes(src)).hexdigest()[:24]
            path = media_dir / f"literal_{digest}.bin"
            if not path.exists():
                try:
                    media_dir.mkdir(parents=True, exist_ok=True)
                    path.write_bytes(bytes(src))
                except OSError as e:
                    raise ResolutionError(f"Cannot store literal bytes: {e}") from e
            return path.resolve().as_uri()

        text = str(src)
        if is_url(text):
            return text
        path = location_to_path(text).resolve()
        if not path.is_file():
            raise ResolutionError(f"Source file not found: {path}")
        return path.as_uri()

    def fetch(self, src: Source) -> bytes:
        """Return the bytes behind a literal source or location."""
        if isinstance(src, (bytes, bytearray)):
            return bytes(src)

        text = str(src)
        if text.startswith("data:"):
            header, _, payload = text.partition(",")
            try:
                if header.endswith(";base64"):
                    return base64.b64decode(payload, validate=True)
            except binascii.Error as e:
                raise ResolutionError(f"Invalid data URI: {e}") from e
            return unquote(payload).encode("utf-8")
        if text.startswith(("http://", "https://")):
            logger.debug(f"Downloading {text}")
            try:
                response = self.session.get(text, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise ResolutionError(f"Cannot download {text}: {e}") from e
            return response.content

        path = location_to_path(text)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ResolutionError(f"Cannot read {path}: {e}") from e

    async def fetch_async(self, src: Source) -> bytes:
        return await asyncio.to_thread(self.fetch, src)

    @staticmethod
    def guess_media_type(location: str) -> Optional[str]:
        media_type, _ = mimetypes.guess_type(urlparse(location).path)
        return media_type
