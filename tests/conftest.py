"""Shared fixtures: a tiny deterministic TorchScript model and sample images."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Tuple

import numpy as np
import pytest
import torch
from PIL import Image

from bgremover_service import config
from bgremover_service.environment import EnvironmentReport
from bgremover_service.pipeline import BackgroundRemover

from .segmenters import MeanSegmenter


@pytest.fixture
def model_path(tmp_path: Path) -> Path:
    path = tmp_path / "model" / "segmenter.pt"
    path.parent.mkdir(parents=True)
    torch.jit.script(MeanSegmenter()).save(str(path))
    return path


@pytest.fixture
def settings(tmp_path: Path, model_path: Path) -> config.Settings:
    return config.Settings(
        model_path=model_path,
        model_input_size=32,
        model_cache="shared",
        output_dir=tmp_path / "out",
    )


@pytest.fixture
def cpu_environment() -> EnvironmentReport:
    return EnvironmentReport(device=torch.device("cpu"), supported=True)


@pytest.fixture
def remover(settings: config.Settings, cpu_environment: EnvironmentReport):
    with BackgroundRemover(settings=settings, environment=cpu_environment) as instance:
        yield instance


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Write a horizontal-gradient image with a bright square in the middle."""

    def _make(name: str = "photo.jpg", size: Tuple[int, int] = (64, 48), mode: str = "RGB", **save_kwargs) -> Path:
        width, height = size
        ramp = np.tile(np.linspace(0, 120, width, dtype=np.uint8), (height, 1))
        pixels = np.dstack([ramp, ramp, ramp])
        pixels[height // 4 : 3 * height // 4, width // 4 : 3 * width // 4] = 240
        image = Image.fromarray(pixels).convert(mode)
        path = tmp_path / "in" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path, **save_kwargs)
        return path

    return _make
