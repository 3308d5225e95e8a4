"""
Configuration loader for the background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on the pipeline and to make operational tuning clear. Every field
can be set with a ``BGREMOVER_`` prefixed variable, e.g. ``BGREMOVER_MODEL_PATH``.
"""

from functools import lru_cache
from pathlib import Path
import tempfile
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MODEL_CACHE_MODES = {"shared", "per_call"}
DEVICE_CHOICES = {"auto", "cuda", "mps", "cpu"}
OUTPUT_MODES = {"cutout", "mask"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BGREMOVER_",
        env_file=".env",
        case_sensitive=False,
        protected_namespaces=(),
        env_parse_none_str="null",
    )

    # Model
    model_path: Path = Field(Path("models/deeplabv3.pt"))
    model_arch: str = Field("deeplabv3_mobilenet_v3_large")
    model_num_classes: int = Field(21, ge=1)
    model_input_size: int = Field(513, ge=1)
    model_cache: str = Field("shared")
    # VOC "person"; "null" uses 1 - p(background) instead
    foreground_class: Optional[int] = Field(15, ge=0)
    background_class: int = Field(0, ge=0)

    # Execution environment gate
    required_device: str = Field("auto")
    force_unsupported: bool = Field(False)

    # Input / buffers
    max_image_pixels: int = Field(40_000_000, ge=1)
    request_timeout_seconds: int = Field(30, ge=1)

    # Output
    output_dir: Path = Field(Path(tempfile.gettempdir()))
    output_mode: str = Field("cutout")
    return_file_uri: bool = Field(False)
    png_compress_level: int = Field(6, ge=0, le=9)

    # Mask refinement
    refine_mask: bool = Field(True)
    mask_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    keep_largest_component: bool = Field(True)
    cc_keep_threshold: float = Field(0.05, ge=0.0, le=1.0)
    edge_band_low: float = Field(0.08, ge=0.0, le=1.0)
    edge_band_high: float = Field(0.92, ge=0.0, le=1.0)
    edge_smooth_blend: float = Field(0.55, ge=0.0, le=1.0)
    bilateral_sigma_color: float = Field(28.0, ge=0.0)

    # Runtime
    worker_threads: int = Field(2, ge=1)
    log_level: str = Field("INFO")

    @field_validator("model_cache")
    @classmethod
    def validate_model_cache(cls, v: str) -> str:
        if v not in MODEL_CACHE_MODES:
            raise ValueError("MODEL_CACHE must be one of shared|per_call")
        return v

    @field_validator("required_device")
    @classmethod
    def validate_required_device(cls, v: str) -> str:
        v = v.lower()
        if v not in DEVICE_CHOICES:
            raise ValueError("REQUIRED_DEVICE must be one of auto|cuda|mps|cpu")
        return v

    @field_validator("output_mode")
    @classmethod
    def validate_output_mode(cls, v: str) -> str:
        if v not in OUTPUT_MODES:
            raise ValueError("OUTPUT_MODE must be one of cutout|mask")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
