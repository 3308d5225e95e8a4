"""
Quick local test helper: runs the background-removal pipeline on a local
image and prints where the PNG was written. This bypasses the API layer.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bgremover_service import config
from bgremover_service.errors import BackgroundRemovalError
from bgremover_service.pipeline import BackgroundRemover


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove the background from a local image")
    parser.add_argument("--input", required=True, help="Path or URI of the input image")
    parser.add_argument("--output-dir", help="Directory to write the PNG (defaults to the temp dir)")
    parser.add_argument("--mode", choices=["cutout", "mask"], help="Write the cutout or only the mask")
    parser.add_argument("--model", help="Path to the segmentation model asset")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    overrides = {}
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir)
    if args.mode:
        overrides["output_mode"] = args.mode
    if args.model:
        overrides["model_path"] = Path(args.model)
    settings = config.Settings(**overrides)
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    with BackgroundRemover(settings=settings) as remover:
        try:
            output = remover.remove_background(args.input)
        except BackgroundRemovalError as exc:
            print(f"{exc.kind}: {exc.to_payload()['message']}", file=sys.stderr)
            return 1
    print(f"Wrote output to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
