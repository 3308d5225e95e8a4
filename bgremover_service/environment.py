"""
Runtime capability probe.

Decides once, at startup, which torch device inference runs on and whether
this process can run the model at all. The result is cached and handed to the
pipeline explicitly so an unsupported context fails before any buffer work.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
from typing import Optional

import torch

from . import config
from .errors import UnsupportedEnvironment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvironmentReport:
    device: torch.device
    supported: bool
    reason: Optional[str] = None

    def ensure_supported(self) -> None:
        if not self.supported:
            raise UnsupportedEnvironment(self.reason or "Execution environment cannot run the model")


def _mps_available() -> bool:
    mps = getattr(torch.backends, "mps", None)
    return bool(mps is not None and mps.is_available())


def _detect_device() -> torch.device:
    # Prefer CUDA -> Apple MPS -> CPU to support both GPU servers and local macOS dev.
    if torch.cuda.is_available():
        return torch.device("cuda")
    if _mps_available():
        return torch.device("mps")
    return torch.device("cpu")


def probe_environment(settings: Optional[config.Settings] = None) -> EnvironmentReport:
    """Inspect the runtime and report the device plus whether it is usable."""
    settings = settings or config.get_settings()

    if settings.force_unsupported:
        return EnvironmentReport(
            device=torch.device("cpu"),
            supported=False,
            reason="Segmentation is disabled in this execution environment",
        )

    required = settings.required_device
    if required == "auto":
        device = _detect_device()
    elif required == "cuda" and not torch.cuda.is_available():
        return EnvironmentReport(torch.device("cpu"), False, "CUDA device required but not available")
    elif required == "mps" and not _mps_available():
        return EnvironmentReport(torch.device("cpu"), False, "MPS device required but not available")
    else:
        device = torch.device(required)

    logger.info("Environment probe: inference device=%s", device)
    return EnvironmentReport(device=device, supported=True)


@lru_cache()
def get_environment() -> EnvironmentReport:
    """Return the process-wide probe result, computed on first use."""
    return probe_environment(config.get_settings())
