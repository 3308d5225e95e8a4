"""
Batch/queue worker.

Queue integrations (Redis, Kafka, a DB table) pull image references and hand
them to `process_batch`. The worker stays framework agnostic: it only needs a
`BackgroundRemover` and returns one outcome per item in input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import BackgroundRemovalError
from .pipeline import BackgroundRemover

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    input_uri: str


@dataclass
class BatchResult:
    input_uri: str
    output_path: Optional[str] = None
    error: Optional[Dict[str, str]] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def process_batch(items: Iterable[BatchItem], remover: BackgroundRemover) -> List[BatchResult]:
    """
    Process a batch of images concurrently on the remover's worker pool.

    A failing item is reported in its own result and does not stop the rest.
    """
    items = list(items)
    futures = [remover.submit(item.input_uri) for item in items]

    results: List[BatchResult] = []
    for item, future in zip(items, futures):
        try:
            output_path = future.result()
        except BackgroundRemovalError as exc:
            logger.warning("Batch item %s failed: %s", item.input_uri, exc)
            results.append(BatchResult(input_uri=item.input_uri, error=exc.to_payload()))
            continue
        except Exception as exc:  # noqa: BLE001
            logger.exception("Batch item %s failed unexpectedly: %s", item.input_uri, exc)
            error = {"code": type(exc).__name__, "message": str(exc)}
            results.append(BatchResult(input_uri=item.input_uri, error=error))
            continue
        logger.info("Processed batch item %s -> %s", item.input_uri, output_path)
        results.append(BatchResult(input_uri=item.input_uri, output_path=output_path))
    return results
