"""
Image loading from a location reference.

Accepts plain filesystem paths, ``file://`` URIs and ``http(s)://`` URLs.
One attempt, no retry: anything unreadable or undecodable is an
``InvalidSource``.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from PIL import Image, ImageOps, UnidentifiedImageError
import requests

from . import config
from .errors import InvalidSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceImage:
    image: Image.Image  # RGB or RGBA, orientation already applied
    name: str
    uri: str

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self):
        return self.image.size


def _download_image(url: str, timeout_seconds: int) -> bytes:
    resp = requests.get(url, timeout=(5, timeout_seconds))
    resp.raise_for_status()
    return resp.content


def _read_source(uri: str, settings: config.Settings) -> tuple[bytes, str]:
    """Resolve a reference to raw bytes plus the basename used for the output."""
    if not uri or not uri.strip():
        raise InvalidSource("Empty image reference")

    try:
        parsed = urlparse(uri)
    except ValueError as exc:
        raise InvalidSource(f"Cannot parse image reference {uri!r}", exc) from exc

    scheme = parsed.scheme.lower()
    if scheme in {"http", "https"}:
        name = PurePosixPath(unquote(parsed.path)).name or "image"
        try:
            return _download_image(uri, settings.request_timeout_seconds), name
        except requests.RequestException as exc:
            raise InvalidSource(f"Could not download image from {uri}", exc) from exc

    if scheme == "file":
        path = Path(url2pathname(parsed.path))
    elif "://" in uri:
        raise InvalidSource(f"Unsupported image reference scheme {parsed.scheme!r}")
    else:
        # Anything else is a filesystem path, colons and drive letters included.
        path = Path(uri)

    try:
        return path.read_bytes(), path.name
    except (OSError, ValueError) as exc:
        raise InvalidSource(f"Could not read image at {path}", exc) from exc


def decode_image(data: bytes) -> Image.Image:
    """Decode bytes, apply EXIF orientation and normalize to RGB/RGBA."""
    try:
        image = Image.open(BytesIO(data))
        image.load()
        image = ImageOps.exif_transpose(image)
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise InvalidSource("Invalid or unreadable image data", exc) from exc

    has_alpha = image.mode in {"RGBA", "LA", "PA"} or (
        image.mode == "P" and "transparency" in image.info
    )
    return image.convert("RGBA" if has_alpha else "RGB")


def load_source_image(uri: str, settings: Optional[config.Settings] = None) -> SourceImage:
    """Read and decode the image behind ``uri``."""
    settings = settings or config.get_settings()
    data, name = _read_source(uri, settings)
    image = decode_image(data)
    logger.debug("Loaded %s (%dx%d, %s)", uri, image.width, image.height, image.mode)
    return SourceImage(image=image, name=name, uri=uri)
