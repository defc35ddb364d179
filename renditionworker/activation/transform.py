"""How the caller's transform callback is driven over the renditions."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any, Callable, Optional

from renditionworker.core.logger import setup_logger

if TYPE_CHECKING:
    from .orchestrator import RenditionOrchestrator

logger = setup_logger(__name__)

# callback(source, rendition)
RenditionCallback = Callable[..., Any]
# callback(source, renditions, out_directory)
BatchCallback = Callable[..., Any]


class PerRenditionTransform:
    """Invokes the callback once per rendition, sequentially or on a thread pool."""

    def __init__(self, callback: RenditionCallback, parallel: bool = False, max_workers: Optional[int] = None):
        if not callable(callback):
            raise TypeError("renditionCallback must be a function")
        self.callback = callback
        self.parallel = parallel
        self.max_workers = max_workers

    def run(self, orchestrator: "RenditionOrchestrator") -> None:
        renditions = orchestrator.registry.pending()
        logger.info("Generating %d renditions%s", len(renditions), " in parallel" if self.parallel else "")

        if not self.parallel or len(renditions) < 2:
            for rendition in renditions:
                orchestrator.process_rendition(rendition, self.callback)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="rendition") as executor:
            futures = {
                executor.submit(orchestrator.process_rendition, rendition, self.callback): rendition
                for rendition in renditions
            }
            for future in as_completed(futures):
                rendition = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.error_trace("Rendition %s failed unexpectedly: %s", rendition.index, e)
                    orchestrator.rendition_failure(rendition, e)


class BatchTransform:
    """Invokes the callback once with all renditions and the output directory."""

    def __init__(self, callback: BatchCallback):
        if not callable(callback):
            raise TypeError("renditionsCallback must be a function")
        self.callback = callback

    def run(self, orchestrator: "RenditionOrchestrator") -> None:
        orchestrator.process_batch(self.callback)
