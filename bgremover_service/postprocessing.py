"""Turn raw segmentation scores into a mask the size of the source image."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from . import config
from .errors import MaskConstructionFailed
from .inference import SegmentationResult
from .preprocessing import RenderContext

logger = logging.getLogger(__name__)

SUPPORTED_SCORE_DTYPES = (np.dtype(np.float32), np.dtype(np.float64), np.dtype(np.uint8))


@dataclass
class MaskOptions:
    refine: bool = True
    threshold: Optional[float] = None  # hard cutoff; None keeps a soft mask
    keep_largest_component: bool = True
    cc_keep_threshold: float = 0.05
    edge_band_low: float = 0.08
    edge_band_high: float = 0.92
    edge_smooth_blend: float = 0.55
    bilateral_sigma_color: float = 28.0

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "MaskOptions":
        settings = settings or config.get_settings()
        return cls(
            refine=settings.refine_mask,
            threshold=settings.mask_threshold,
            keep_largest_component=settings.keep_largest_component,
            cc_keep_threshold=settings.cc_keep_threshold,
            edge_band_low=settings.edge_band_low,
            edge_band_high=settings.edge_band_high,
            edge_smooth_blend=settings.edge_smooth_blend,
            bilateral_sigma_color=settings.bilateral_sigma_color,
        )


def _validated_scores(scores: np.ndarray) -> np.ndarray:
    """
    Check element type, dimensionality and memory layout before reinterpreting
    the model output as pixels. Returns a C-contiguous array.
    """
    if not isinstance(scores, np.ndarray):
        raise MaskConstructionFailed(f"Expected a numpy array, got {type(scores).__name__}")
    if scores.ndim != 2:
        raise MaskConstructionFailed(f"Expected 2-D scores, got shape {scores.shape}")
    if scores.size == 0:
        raise MaskConstructionFailed("Model output is empty")
    if scores.dtype not in SUPPORTED_SCORE_DTYPES:
        raise MaskConstructionFailed(f"Unsupported score element type {scores.dtype}")

    if not scores.flags.c_contiguous:
        scores = np.ascontiguousarray(scores)
    rows, cols = scores.shape
    if scores.strides != (cols * scores.itemsize, scores.itemsize):
        raise MaskConstructionFailed(
            f"Score strides {scores.strides} do not match a {rows}x{cols} "
            f"buffer of {scores.itemsize}-byte elements"
        )
    if scores.dtype != np.uint8 and not np.all(np.isfinite(scores)):
        raise MaskConstructionFailed("Model output contains non-finite values")
    return scores


def _quantize(scores: np.ndarray) -> np.ndarray:
    if scores.dtype == np.uint8:
        return scores
    return np.round(np.clip(scores, 0.0, 1.0) * 255.0).astype(np.uint8)


def _band_mask(alpha: np.ndarray, low: float, high: float) -> np.ndarray:
    return (alpha > low) & (alpha < high)


def _keep_largest_component(alpha: np.ndarray, threshold: float = 0.05) -> np.ndarray:
    """Zero out all but the largest connected component above threshold."""
    mask = (alpha > threshold).astype(np.uint8)
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    if num_labels <= 2:
        return alpha

    logger.debug("postprocess: keeping largest of %d components", num_labels - 1)
    largest_label = 1 + np.argmax(stats[1:, cv2.CC_STAT_AREA])
    keep = labels == largest_label
    return np.where(keep, alpha, 0.0).astype(np.float32)


def _smooth_edge_band(
    alpha: np.ndarray,
    band_low: float,
    band_high: float,
    blend: float,
    bilateral_sigma_color: float,
) -> np.ndarray:
    """Limit smoothing to uncertain edge band to avoid halos."""
    band = _band_mask(alpha, band_low, band_high)
    if not np.any(band) or min(alpha.shape) < 3:
        return alpha

    alpha_out = alpha.copy()
    alpha_u8 = np.clip(alpha * 255.0, 0, 255).astype(np.uint8)
    median = cv2.medianBlur(alpha_u8, 3)
    bilateral = cv2.bilateralFilter(median, d=3, sigmaColor=bilateral_sigma_color, sigmaSpace=2)

    smooth = np.clip(bilateral.astype(np.float32) / 255.0, 0.0, 1.0)
    alpha_out[band] = alpha_out[band] * (1.0 - blend) + smooth[band] * blend
    return alpha_out


def refine_mask(mask_u8: np.ndarray, options: MaskOptions) -> np.ndarray:
    """Edge-aware cleanup on a full-resolution 8-bit mask."""
    alpha = mask_u8.astype(np.float32) / 255.0

    if options.threshold is not None:
        alpha = (alpha >= options.threshold).astype(np.float32)

    if options.keep_largest_component:
        alpha = _keep_largest_component(alpha, threshold=options.cc_keep_threshold)

    band_low, band_high = options.edge_band_low, options.edge_band_high
    if band_high <= band_low:
        band_low, band_high = 0.05, 0.95
    if options.threshold is None and options.edge_smooth_blend > 0:
        alpha = _smooth_edge_band(
            alpha,
            band_low=band_low,
            band_high=band_high,
            blend=options.edge_smooth_blend,
            bilateral_sigma_color=options.bilateral_sigma_color,
        )

    return np.clip(alpha * 255.0, 0, 255).astype(np.uint8)


def materialize_mask(
    result: SegmentationResult,
    width: int,
    height: int,
    context: RenderContext,
    options: Optional[MaskOptions] = None,
) -> Image.Image:
    """Resample model-native scores to an 8-bit `L` mask of exactly ``width x height``."""
    options = options or MaskOptions()
    if width <= 0 or height <= 0:
        raise MaskConstructionFailed(f"Invalid target size {width}x{height}")

    scores = _validated_scores(result.scores)
    try:
        native = Image.fromarray(_quantize(scores))
        mask = native.resize((width, height), context.resample)
    except MemoryError as exc:
        raise MaskConstructionFailed("Out of memory while building mask", exc) from exc
    except (ValueError, OSError) as exc:
        raise MaskConstructionFailed("Error converting model output to a mask", exc) from exc

    if options.refine:
        mask = Image.fromarray(refine_mask(np.asarray(mask), options))

    if mask.size != (width, height):
        raise MaskConstructionFailed(
            f"Mask size {mask.size[0]}x{mask.size[1]} does not match source {width}x{height}"
        )
    logger.debug(
        "Materialized mask %dx%d from native %dx%d", width, height, scores.shape[1], scores.shape[0]
    )
    return mask
