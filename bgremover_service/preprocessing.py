"""
Pixel buffer normalization and model-input preparation.

``RenderContext`` is the explicit rendering context owned by whoever invokes
the pipeline. It is immutable, so one instance can be shared across threads
without locking; it never holds per-call state.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image
import torch

from . import config
from .errors import BufferAllocationFailed
from .loader import SourceImage

logger = logging.getLogger(__name__)

# torchvision segmentation weights are trained with ImageNet statistics.
IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

PIXEL_FORMAT_BGRA = "BGRA"
BGRA_CHANNELS = 4


@dataclass(frozen=True)
class NormalizedBuffer:
    pixels: np.ndarray  # (H, W, 4) uint8, C-contiguous, BGRA
    pixel_format: str = PIXEL_FORMAT_BGRA

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class RenderContext:
    pixel_format: str = PIXEL_FORMAT_BGRA
    resample: int = Image.BILINEAR
    png_compress_level: int = 6
    max_pixels: int = 40_000_000

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "RenderContext":
        settings = settings or config.get_settings()
        return cls(
            png_compress_level=settings.png_compress_level,
            max_pixels=settings.max_image_pixels,
        )

    def render(self, source: SourceImage) -> NormalizedBuffer:
        """Full-frame copy of ``source`` into a BGRA buffer of the same extent."""
        width, height = source.size
        if width <= 0 or height <= 0:
            raise BufferAllocationFailed(f"Cannot allocate a buffer for a {width}x{height} image")
        if width * height > self.max_pixels:
            raise BufferAllocationFailed(
                f"Image of {width}x{height} exceeds the {self.max_pixels} pixel limit"
            )

        try:
            rgba = np.asarray(source.image.convert("RGBA"), dtype=np.uint8)
            bgra = np.ascontiguousarray(cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
        except MemoryError as exc:
            raise BufferAllocationFailed("Out of memory while rendering pixel buffer", exc) from exc
        except cv2.error as exc:
            raise BufferAllocationFailed("Unable to create pixel buffer", exc) from exc

        if bgra.shape != (height, width, BGRA_CHANNELS):
            raise BufferAllocationFailed(
                f"Rendered buffer has shape {bgra.shape}, expected {(height, width, BGRA_CHANNELS)}"
            )
        return NormalizedBuffer(pixels=bgra, pixel_format=self.pixel_format)


def to_model_tensor(buffer: NormalizedBuffer, input_size: int, device: torch.device) -> torch.Tensor:
    """
    Resize a BGRA buffer to the model's square input and normalize.

    The model sees RGB in NCHW order, scaled to [0, 1] and standardized with
    ImageNet mean/std. Alpha is dropped.
    """
    rgb = cv2.cvtColor(buffer.pixels, cv2.COLOR_BGRA2RGB)
    if rgb.shape[:2] != (input_size, input_size):
        rgb = cv2.resize(rgb, (input_size, input_size), interpolation=cv2.INTER_LINEAR)

    im_np = rgb.astype(np.float32) / 255.0
    im_np = (im_np - IMAGENET_MEAN) / IMAGENET_STD
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW

    return torch.from_numpy(np.ascontiguousarray(im_np)).unsqueeze(0).to(device)
