"""
FastAPI layer exposing background removal.

Endpoints:
 - GET /health
 - POST /remove-bg
"""

from __future__ import annotations

from functools import lru_cache
import logging

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from . import config
from .environment import get_environment
from .errors import (
    BackgroundRemovalError,
    InvalidSource,
    ModelUnavailable,
    UnsupportedEnvironment,
)
from .pipeline import BackgroundRemover

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Background Removal Service", version="0.1.0")


class RemoveBgRequest(BaseModel):
    imageUri: str


class RemoveBgResponse(BaseModel):
    outputUri: str
    mode: str


@lru_cache()
def get_remover() -> BackgroundRemover:
    return BackgroundRemover(settings=config.get_settings(), environment=get_environment())


def _status_for(exc: BackgroundRemovalError) -> int:
    if isinstance(exc, InvalidSource):
        return 400
    if isinstance(exc, (UnsupportedEnvironment, ModelUnavailable)):
        return 503
    return 500


@app.get("/health")
def health(remover: BackgroundRemover = Depends(get_remover)):
    env = remover.environment
    return {
        "status": "ok" if env.supported else "unsupported",
        "device": str(env.device),
        "modelCache": remover.settings.model_cache,
    }


@app.post("/remove-bg", response_model=RemoveBgResponse)
async def remove_bg(body: RemoveBgRequest, remover: BackgroundRemover = Depends(get_remover)):
    try:
        output = await remover.remove_background_async(body.imageUri)
    except BackgroundRemovalError as exc:
        logger.warning("Background removal failed for %s: %s", body.imageUri, exc)
        raise HTTPException(status_code=_status_for(exc), detail=exc.to_payload()) from exc

    return RemoveBgResponse(outputUri=output, mode=remover.settings.output_mode)
