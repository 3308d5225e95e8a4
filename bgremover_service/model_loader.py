"""
Model loading utilities for the segmentation model.

The loader:
 - loads the asset at `BGREMOVER_MODEL_PATH`, as TorchScript first and as a
   torchvision state_dict checkpoint second,
 - either keeps a single shared, read-only instance (`model_cache=shared`) or
   loads a fresh one for every call (`model_cache=per_call`),
 - reports every failure as `ModelUnavailable`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional

import torch
from torchvision.models import segmentation

from . import config
from .errors import ModelUnavailable

logger = logging.getLogger(__name__)


SUPPORTED_ARCHITECTURES: Dict[str, Callable[..., torch.nn.Module]] = {
    "deeplabv3_mobilenet_v3_large": segmentation.deeplabv3_mobilenet_v3_large,
    "deeplabv3_resnet50": segmentation.deeplabv3_resnet50,
    "lraspp_mobilenet_v3_large": segmentation.lraspp_mobilenet_v3_large,
}


def _try_load_torchscript(model_path: Path, device: torch.device) -> torch.nn.Module:
    """Load a TorchScript model if possible."""
    model = torch.jit.load(str(model_path), map_location=device)
    model.eval()
    return model


def _clean_state_dict(state_dict: dict) -> dict:
    """Remove common wrappers such as 'module.' prefixes."""
    cleaned = {}
    for key, value in state_dict.items():
        new_key = key
        if new_key.startswith("module."):
            new_key = new_key[len("module.") :]
        if new_key.startswith("model."):
            new_key = new_key[len("model.") :]
        cleaned[new_key] = value
    return cleaned


def _build_architecture(settings: config.Settings) -> torch.nn.Module:
    try:
        builder = SUPPORTED_ARCHITECTURES[settings.model_arch]
    except KeyError:
        raise ModelUnavailable(f"Unknown model architecture {settings.model_arch!r}") from None
    # lraspp has no auxiliary head
    kwargs = {"weights": None, "weights_backbone": None, "num_classes": settings.model_num_classes}
    if not settings.model_arch.startswith("lraspp"):
        kwargs["aux_loss"] = True
    return builder(**kwargs)


def _load_from_state_dict(model_path: Path, device: torch.device, settings: config.Settings) -> torch.nn.Module:
    """Load a vanilla PyTorch checkpoint into the configured torchvision architecture."""
    checkpoint = torch.load(model_path, map_location=device, weights_only=True)
    if isinstance(checkpoint, dict) and "state_dict" in checkpoint:
        checkpoint = checkpoint["state_dict"]
    if not isinstance(checkpoint, dict):
        raise ModelUnavailable("Unsupported checkpoint format for segmentation model")

    checkpoint = _clean_state_dict(checkpoint)
    model = _build_architecture(settings)
    missing, unexpected = model.load_state_dict(checkpoint, strict=False)
    if missing:
        logger.warning("Missing keys when loading segmentation checkpoint: %s", missing)
    if unexpected:
        logger.warning("Unexpected keys when loading segmentation checkpoint: %s", unexpected)

    model.to(device)
    model.eval()
    return model


def load_model(settings: config.Settings, device: torch.device) -> torch.nn.Module:
    """Load the model asset from disk; raises `ModelUnavailable` on any failure."""
    model_path = Path(settings.model_path)
    if not model_path.is_file():
        raise ModelUnavailable(f"Segmentation model not found at {model_path}")

    try:
        logger.info("Attempting to load TorchScript model from %s", model_path)
        return _try_load_torchscript(model_path, device)
    except Exception as script_error:  # noqa: BLE001
        logger.info("TorchScript load failed, falling back to state_dict. Error: %s", script_error)

    try:
        return _load_from_state_dict(model_path, device, settings)
    except ModelUnavailable:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ModelUnavailable(f"Segmentation model at {model_path} failed to initialize", exc) from exc


class ModelProvider:
    """
    Hands out the model for one pipeline call.

    With `shared` caching the model is loaded once on first access (or by
    `warmup`) and reused read-only across threads; with `per_call` every
    `acquire` loads a fresh instance.
    """

    def __init__(self, settings: config.Settings, device: torch.device):
        self._settings = settings
        self._device = device
        self._model: Optional[torch.nn.Module] = None
        self._lock = Lock()

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def shared(self) -> bool:
        return self._settings.model_cache == "shared"

    def acquire(self) -> torch.nn.Module:
        if not self.shared:
            return load_model(self._settings, self._device)

        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                self._model = load_model(self._settings, self._device)
                logger.info("Segmentation model loaded on device: %s", self._device)
        return self._model

    def warmup(self) -> None:
        if self.shared:
            self.acquire()
