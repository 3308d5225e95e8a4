"""Single forward pass of the segmentation model."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional, Tuple

import numpy as np
import torch

from . import config
from .errors import InferenceFailed
from .preprocessing import NormalizedBuffer, to_model_tensor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentationResult:
    scores: np.ndarray  # (H', W') foreground probability at model-native resolution

    @property
    def native_size(self) -> Tuple[int, int]:
        """(width, height) of the model output."""
        return int(self.scores.shape[1]), int(self.scores.shape[0])


def _extract_logits(output: Any) -> torch.Tensor:
    """Pull the prediction tensor out of the shapes segmentation models return."""
    if isinstance(output, dict):
        if "out" not in output:
            raise InferenceFailed(f"Model output dict has no 'out' entry (keys: {sorted(output)})")
        output = output["out"]
    elif isinstance(output, (list, tuple)):
        if not output:
            raise InferenceFailed("Model returned an empty sequence")
        output = output[-1]
    elif hasattr(output, "logits"):
        output = output.logits

    if not isinstance(output, torch.Tensor):
        raise InferenceFailed(f"Model returned {type(output).__name__}, expected a tensor")
    return output


def _to_chw(logits: torch.Tensor) -> torch.Tensor:
    if logits.dim() == 4:
        return logits[0]
    if logits.dim() == 3:
        return logits
    if logits.dim() == 2:
        return logits.unsqueeze(0)
    raise InferenceFailed(f"Unexpected model output shape {tuple(logits.shape)}")


class SegmentationEngine:
    """Wraps one loaded model and turns its raw output into foreground scores."""

    def __init__(
        self,
        model: torch.nn.Module,
        device: torch.device,
        input_size: int = 513,
        foreground_class: Optional[int] = 15,
        background_class: int = 0,
    ):
        self.model = model
        self.device = device
        self.input_size = input_size
        self.foreground_class = foreground_class
        self.background_class = background_class

    @classmethod
    def from_settings(
        cls, model: torch.nn.Module, device: torch.device, settings: config.Settings
    ) -> "SegmentationEngine":
        return cls(
            model,
            device,
            input_size=settings.model_input_size,
            foreground_class=settings.foreground_class,
            background_class=settings.background_class,
        )

    def _foreground_probability(self, chw: torch.Tensor) -> torch.Tensor:
        channels = chw.shape[0]
        if channels == 1:
            return torch.sigmoid(chw[0])

        probs = torch.softmax(chw, dim=0)
        if self.foreground_class is not None:
            if self.foreground_class >= channels:
                raise InferenceFailed(
                    f"Foreground class {self.foreground_class} outside model's {channels} classes"
                )
            return probs[self.foreground_class]
        if self.background_class >= channels:
            raise InferenceFailed(
                f"Background class {self.background_class} outside model's {channels} classes"
            )
        return 1.0 - probs[self.background_class]

    def run(self, buffer: NormalizedBuffer) -> SegmentationResult:
        try:
            tensor = to_model_tensor(buffer, self.input_size, self.device)
            with torch.no_grad():
                output = self.model(tensor)
            chw = _to_chw(_extract_logits(output).float())
            foreground = self._foreground_probability(chw)
            scores = foreground.detach().cpu().numpy().astype(np.float32)
        except InferenceFailed:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InferenceFailed("Error during background removal", exc) from exc

        logger.debug("Inference produced %dx%d scores", scores.shape[1], scores.shape[0])
        return SegmentationResult(scores=scores)
