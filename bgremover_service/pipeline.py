"""
High-level background-removal pipeline.

`BackgroundRemover.remove_background` is the main entry point used by the
HTTP API, the batch worker and the local script. Orchestration is linear:
environment gate -> load -> pixel buffer -> model -> mask -> PNG on disk.
Each stage raises a `BackgroundRemovalError` subclass and nothing after it
runs.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
import logging
from threading import Lock
from typing import Callable, Optional

from . import config
from .environment import EnvironmentReport, probe_environment
from .exporter import compose, encode_png, output_path_for, write_artifact
from .inference import SegmentationEngine
from .loader import load_source_image
from .model_loader import ModelProvider
from .postprocessing import MaskOptions, materialize_mask
from .preprocessing import RenderContext

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[Optional[str], Optional[BaseException]], None]


class BackgroundRemover:
    """
    Owns everything one pipeline invocation needs: settings, the probed
    environment, the render context and the model provider.

    Instances are safe to share between threads; each call allocates its own
    buffers and only the read-only shared model (when enabled) is reused.
    """

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        environment: Optional[EnvironmentReport] = None,
        context: Optional[RenderContext] = None,
        models: Optional[ModelProvider] = None,
    ):
        self.settings = settings or config.get_settings()
        self.environment = environment or probe_environment(self.settings)
        self.context = context or RenderContext.from_settings(self.settings)
        self.models = models or ModelProvider(self.settings, self.environment.device)
        self.mask_options = MaskOptions.from_settings(self.settings)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = Lock()

    def warmup(self) -> None:
        """Load the shared model ahead of the first request."""
        self.environment.ensure_supported()
        self.models.warmup()

    def remove_background(self, uri: str) -> str:
        """
        Run the full pipeline on ``uri`` and return the written PNG's path
        (or ``file://`` URI when `return_file_uri` is set).

        Raises:
            BackgroundRemovalError: tagged with the failing stage's kind.
        """
        self.environment.ensure_supported()

        source = load_source_image(uri, self.settings)
        buffer = self.context.render(source)

        model = self.models.acquire()
        engine = SegmentationEngine.from_settings(model, self.environment.device, self.settings)
        result = engine.run(buffer)

        mask = materialize_mask(result, source.width, source.height, self.context, self.mask_options)
        output = compose(source, mask, self.settings.output_mode)
        png_bytes = encode_png(output, self.context)

        path = write_artifact(png_bytes, output_path_for(source.name, self.settings.output_dir))
        logger.info(
            "Background removed: %s -> %s (%dx%d)", source.uri, path, source.width, source.height
        )
        if self.settings.return_file_uri:
            return path.resolve().as_uri()
        return str(path)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            with self._executor_lock:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.settings.worker_threads,
                        thread_name_prefix="bgremover",
                    )
        return self._executor

    def submit(self, uri: str, callback: Optional[CompletionCallback] = None) -> Future:
        """
        Run the pipeline on a worker thread.

        The returned future resolves exactly once. When ``callback`` is given
        it is called exactly once with ``(path, None)`` or ``(None, error)``.
        Cancellation is not supported: once a worker picks the call up it
        runs to completion.
        """
        future = self._get_executor().submit(self.remove_background, uri)
        if callback is not None:

            def _resolve(done: Future) -> None:
                if done.cancelled():
                    callback(None, CancelledError())
                    return
                error = done.exception()
                if error is not None:
                    callback(None, error)
                else:
                    callback(done.result(), None)

            future.add_done_callback(_resolve)
        return future

    async def remove_background_async(self, uri: str) -> str:
        """Awaitable form of `remove_background`; the work runs off the event loop."""
        return await asyncio.wrap_future(self.submit(uri))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "BackgroundRemover":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
