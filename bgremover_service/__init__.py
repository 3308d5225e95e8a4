"""
Background removal service package.

Exposes the single-pass segmentation pipeline (load, normalize, infer,
materialize the mask, export a PNG) and the FastAPI application serving it.
"""
