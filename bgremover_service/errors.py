"""
Error taxonomy for the background-removal pipeline.

Every stage raises exactly one of these kinds and short-circuits the rest of
the pipeline. None of them are retried.
"""

from __future__ import annotations

from typing import Dict, Optional


class BackgroundRemovalError(Exception):
    """Base class; carries a short category tag plus a human-readable message."""

    kind = "BackgroundRemovalError"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.kind}: {self.message} ({self.cause})"
        return f"{self.kind}: {self.message}"

    def to_payload(self) -> Dict[str, str]:
        message = self.message
        if self.cause is not None:
            message = f"{message}: {self.cause}"
        return {"code": self.kind, "message": message}


class UnsupportedEnvironment(BackgroundRemovalError):
    kind = "UnsupportedEnvironment"


class ModelUnavailable(BackgroundRemovalError):
    kind = "ModelUnavailable"


class InvalidSource(BackgroundRemovalError):
    kind = "InvalidSource"


class BufferAllocationFailed(BackgroundRemovalError):
    kind = "BufferAllocationFailed"


class InferenceFailed(BackgroundRemovalError):
    kind = "InferenceFailed"


class MaskConstructionFailed(BackgroundRemovalError):
    kind = "MaskConstructionFailed"


class EncodingFailed(BackgroundRemovalError):
    kind = "EncodingFailed"


class WriteFailed(BackgroundRemovalError):
    kind = "WriteFailed"
