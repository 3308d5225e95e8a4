"""
Composite the mask with the source, encode to PNG and persist it.

Writing the PNG is the only persistent side effect of a pipeline call; the
file is left in place for the caller (or the OS temp cleaner) to remove.
"""

from __future__ import annotations

from io import BytesIO
import logging
import os
from pathlib import Path
import tempfile

from PIL import Image, ImageChops

from .errors import EncodingFailed, MaskConstructionFailed, WriteFailed
from .loader import SourceImage
from .preprocessing import RenderContext

logger = logging.getLogger(__name__)


def compose(source: SourceImage, mask: Image.Image, output_mode: str = "cutout") -> Image.Image:
    """`cutout` attaches the mask as alpha; `mask` returns the mask on its own."""
    if mask.size != source.size:
        raise MaskConstructionFailed(
            f"Mask size {mask.size} does not match source size {source.size}"
        )
    if output_mode == "mask":
        return mask

    rgba = source.image.convert("RGBA")
    if source.image.mode == "RGBA":
        # Respect transparency that was already in the source.
        mask = ImageChops.multiply(source.image.getchannel("A"), mask)
    rgba.putalpha(mask)
    return rgba


def encode_png(image: Image.Image, context: RenderContext) -> bytes:
    buf = BytesIO()
    try:
        image.save(buf, format="PNG", compress_level=context.png_compress_level)
    except (OSError, ValueError) as exc:
        raise EncodingFailed("Error creating mask image data", exc) from exc
    return buf.getvalue()


def output_path_for(source_name: str, output_dir: Path) -> Path:
    """`<basename>.png` inside the scratch directory."""
    stem = Path(source_name).stem or "image"
    return Path(output_dir) / f"{stem}.png"


def write_artifact(data: bytes, path: Path) -> Path:
    """Write to a sibling temp file, then rename it over ``path``."""
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp", delete=False
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise WriteFailed(f"Error saving image to {path}", exc) from exc
    logger.debug("Wrote %d bytes to %s", len(data), path)
    return path
