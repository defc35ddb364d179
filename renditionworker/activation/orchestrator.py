"""Drives one activation: prepare, generate renditions, report, clean up.

``RenditionOrchestrator`` owns everything belonging to the activation (work
directories, renditions, timers, metrics). Each rendition ends with exactly one
``rendition_created`` or ``rendition_failed`` event, whatever happens to the
others, and ``finalize`` always runs.
"""

from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from renditionworker.config import env as env_config
from renditionworker.core.errors import (
    ClassifiedError,
    GenericError,
    InvalidStateTransitionError,
    RenditionFormatUnsupportedError,
    location_of,
    message_of,
    reason_of,
)
from renditionworker.core.logger import rendition_logger, setup_logger
from renditionworker.core.models import (
    ActivationOptions,
    ProcessingResult,
    Rendition,
    RenditionOutcome,
    RenditionState,
    Source,
    WorkRequest,
    redact_instructions,
)
from renditionworker.core.state import ActivationState, ActivationStateMachine
from renditionworker.core.timer import (
    ACTIVATION,
    DOWNLOAD,
    POST_PROCESSING,
    PROCESSING,
    UPLOAD,
    Timer,
    TimerSet,
)
from renditionworker.postprocess import adjust_for_worker_capability, needs_post_process, probe
from renditionworker.storage import StorageClient, get_storage_client
from renditionworker.storage.datauri import rendition_as_data_uri

from . import metadata as rendition_metadata
from .events import EventSink, MetricsSink, RenditionEvents
from .metrics import (
    METRIC_RENDITION,
    METRIC_TIMEOUT,
    ActivationMetrics,
    DeadlineTimer,
    ResourceSampler,
    duration_sec,
)
from .registry import RenditionRegistry
from .source import SourcePreparer
from .transform import BatchTransform, PerRenditionTransform
from .validate import declared_renditions, validate_parameters
from .workspace import Workspace

logger = setup_logger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


class RenditionOrchestrator:
    def __init__(
        self,
        request: WorkRequest,
        options: Optional[ActivationOptions] = None,
        events: Optional[EventSink] = None,
        metrics: Optional[MetricsSink] = None,
        storage_factory: Callable[[Optional[str]], StorageClient] = get_storage_client,
        workspace: Optional[Workspace] = None,
        on_timeout: Optional[Callable[[], None]] = None,
    ):
        self.start_time = time.time()
        self.request = request
        self.options = options or ActivationOptions()
        self.events = RenditionEvents(events)
        self.metrics = ActivationMetrics(metrics)
        self.storage_factory = storage_factory
        self.workspace = workspace or Workspace.for_activation()
        self.on_timeout = on_timeout
        self.post_processor = self.options.post_processor
        self.action_name = env_config.ACTION_NAME

        self.state = ActivationStateMachine()
        self.timers = TimerSet()
        self.deadline = DeadlineTimer(self._on_deadline)
        self.sampler = ResourceSampler()

        self.source: Optional[Source] = None
        self.registry: Optional[RenditionRegistry] = None
        self.rendition_errors: List[Tuple[Rendition, BaseException]] = []
        self.total_renditions_size = 0
        self.image_post_processed: Optional[bool] = None
        self._lock = Lock()
        self._cleanup_result: Optional[bool] = None
        self._result: Optional[ProcessingResult] = None

    # -- public strategies ------------------------------------------------

    def process_one_at_a_time(self, callback: Callable[..., Any]) -> ProcessingResult:
        """Call ``callback(source, rendition)`` for each rendition."""
        return self.run(PerRenditionTransform(callback, self.options.parallel, self.options.max_workers))

    def process_all_at_once(self, callback: Callable[..., Any]) -> ProcessingResult:
        """Call ``callback(source, renditions, out_directory)`` once."""
        return self.run(BatchTransform(callback))

    def run(self, transform) -> ProcessingResult:
        if self.state.state != ActivationState.INIT:
            raise InvalidStateTransitionError(self.state.state.value, ActivationState.PREPARING.value)

        try:
            self.prepare()
        except Exception as err:
            self._fail_activation(err)
            err.result = self.finalize()
            raise

        try:
            transform.run(self)
        except Exception as err:
            logger.error_trace("Processing failed: %s", err)
            self.state.transition(ActivationState.FATAL)
            for rendition in self.registry.pending():
                self.rendition_failure(rendition, err)
        finally:
            result = self.finalize()
        return result

    # -- phases -------------------------------------------------------------

    def prepare(self) -> None:
        self.state.transition(ActivationState.PREPARING)
        self.timers.timer(ACTIVATION).start()
        logger.info("Worker %s preparing request %s", self.action_name, self.request.request_id)

        self._add_startup_metrics()
        self.sampler.start()

        source, instructions = validate_parameters(self.request.source, self.request.renditions)

        self.workspace.create()
        self.registry = RenditionRegistry(instructions, self.workspace.out_dir)
        for rendition in self.registry:
            rendition.post_process = self.post_processor is not None
        self.deadline.arm()

        download_timer = self.timers.timer(DOWNLOAD).start()
        try:
            preparer = SourcePreparer(self.storage_factory, self.options.disable_source_download)
            self.source = preparer.prepare(source, self.workspace.in_dir)
        finally:
            download_timer.stop()
        logger.info("Source prepared in %s seconds", download_timer)

        self.state.transition(ActivationState.PROCESSING)

    def finalize(self) -> ProcessingResult:
        """Stop background work, remove directories, report and build the result."""
        if self._result is not None:
            return self._result

        self.state.transition(ActivationState.FINALIZING)
        self.deadline.cancel()
        resource_metrics = self.sampler.finish()
        cleaned = self.cleanup()
        self.timers.stop_all()

        # Every rendition must have been reported by now
        if self.registry is not None:
            for rendition in self.registry.pending():
                if rendition.mark_terminal(RenditionState.FAILED):
                    logger.warning("Rendition %s finished without result", rendition.index)
                    self.events.failed(rendition.instructions_for_event(), None, UNKNOWN_ERROR_MESSAGE)

        callback_duration = self.timers.total(PROCESSING)
        post_processing_duration = self.timers.total(POST_PROCESSING)
        self.metrics.add(
            **resource_metrics,
            duration=self.timers.total(ACTIVATION) or 0.0,
            downloadDuration=self.timers.total(DOWNLOAD) or 0.0,
            callbackProcessingDuration=callback_duration or 0.0,
            postProcessingDuration=post_processing_duration or 0.0,
            processingDuration=(callback_duration or 0.0) + (post_processing_duration or 0.0),
            uploadDuration=self.timers.total(UPLOAD) or 0.0,
            totalRenditionsSize=self.total_renditions_size,
        )
        if self.image_post_processed is not None:
            self.metrics.add(imagePostProcess=self.image_post_processed)
        aggregate = self.metrics.send_activation()

        self._result = ProcessingResult(
            request_id=self.request.request_id,
            source=self._source_summary(),
            renditions=self._outcomes(),
            errors=self._error_summaries(),
            metrics=aggregate,
            environment_corrupted=not cleaned,
        )
        if not cleaned:
            logger.error("Cleanup was not successful, the environment must not be reused")
        self.state.transition(ActivationState.DONE)
        return self._result

    def cleanup(self) -> bool:
        """Remove the work directories. Only the first call touches the disk."""
        if self._cleanup_result is None:
            self._cleanup_result = self.workspace.cleanup()
        return self._cleanup_result

    # -- per rendition ----------------------------------------------------

    def process_rendition(self, rendition: Rendition, callback: Callable[..., Any]) -> None:
        log = rendition_logger(logger, rendition.index)
        callback_timer = self.timers.timer(PROCESSING, rendition.index)
        try:
            self.prepare_post_process(rendition)

            log.info("Generating %s", rendition.name)
            log.debug("Instructions for rendition callback: %s", redact_instructions(rendition.instructions))
            callback_timer.start()
            try:
                callback(self.source, rendition)
            finally:
                callback_timer.stop()

            if not self.options.disable_rendition_upload and not rendition.exists():
                log.info("No rendition found after callback processing at: %s", rendition.path)
                raise GenericError(
                    f"No rendition generated for {rendition.id()}", f"{self.action_name}_process_norendition"
                )
        except Exception as err:
            log.warning("Callback processing failed after %s seconds: %s", callback_timer, message_of(err))
            self.rendition_failure(rendition, err)
            return

        log.info("Callback generated rendition in %s seconds: %s", callback_timer, rendition.name)
        if self.post_process(rendition):
            self.complete(rendition)

    def process_batch(self, callback: Callable[..., Any]) -> None:
        for rendition in self.registry.pending():
            try:
                self.prepare_post_process(rendition)
            except Exception as err:
                self.rendition_failure(rendition, err)

        renditions = self.registry.pending()
        callback_timer = self.timers.timer(PROCESSING)
        logger.info("Generating all %d renditions", len(renditions))
        callback_timer.start()
        try:
            callback(self.source, renditions, self.workspace.out_dir)
        except Exception as err:
            callback_timer.stop()
            logger.warning("Processing failed after %s seconds: %s", callback_timer, message_of(err))
            # One metric for the whole batch, but one event per rendition since
            # it cannot be known which renditions were generated
            self.metrics.handle_error(
                err,
                f"{self.action_name}_batchProcess",
                {"processingDuration": callback_timer.current_duration()},
            )
            for rendition in renditions:
                self.rendition_failure(rendition, err, skip_metrics=True)
            return
        callback_timer.stop()
        logger.info("Processing finished successfully after %s seconds", callback_timer)

        for rendition in renditions:
            if not self.post_process(rendition):
                continue
            if self.options.disable_rendition_upload or rendition.exists():
                self.complete(rendition)
            else:
                rendition_logger(logger, rendition.index).info("No rendition found at: %s", rendition.path)
                self.rendition_failure(
                    rendition,
                    GenericError(
                        f"No rendition generated for {rendition.id()}", f"{self.action_name}_batchProcess_norendition"
                    ),
                )

    def prepare_post_process(self, rendition: Rendition) -> None:
        """Ask the callback for a format it can produce when it cannot make the requested one."""
        adjusted = adjust_for_worker_capability(rendition.instructions, self.options.supported_rendition_formats)
        if adjusted is None:
            return
        if self.post_processor is None:
            raise RenditionFormatUnsupportedError(f"Unsupported rendition format {rendition.instructions.get('fmt')}")
        rendition_logger(logger, rendition.index).info(
            "Worker cannot produce %s, generating %s for post-processing",
            rendition.instructions.get("fmt"),
            adjusted.get("fmt"),
        )
        rendition.change_instructions(adjusted)
        rendition.post_process = True

    def should_post_process(self, rendition: Rendition) -> bool:
        if not rendition.post_process or self.post_processor is None:
            return False
        if not rendition.exists():
            return False
        return needs_post_process(rendition.original_instructions, probe(rendition.path))

    def post_process(self, rendition: Rendition) -> bool:
        """Run the post-processor if needed. False if the rendition failed."""
        log = rendition_logger(logger, rendition.index)
        timer = self.timers.timer(POST_PROCESSING, rendition.index)
        timer.start()
        try:
            if not self.should_post_process(rendition):
                timer.stop()
                self._note_post_process(False)
                return True

            self._note_post_process(True)
            intermediate = rendition.path
            rendition.restore_original_instructions()
            rendition.path = self.workspace.post_dir / rendition.name
            log.info("Post-processing %s => post/%s", intermediate.name, rendition.name)

            self.post_processor(intermediate, rendition, rendition.instructions)
            timer.stop()
            if not rendition.exists():
                raise GenericError(f"Post-processing did not generate {rendition.name}", "sdk_post_process")
            log.info("Post-processing %s finished successfully in %s seconds", rendition.name, timer)
            return True
        except Exception as err:
            timer.stop()
            log.warning("Post-processing %s failed after %s seconds: %s", rendition.name, timer, message_of(err))
            if not isinstance(err, ClassifiedError):
                err = GenericError(message_of(err), "sdk_post_process")
            self.rendition_failure(rendition, err)
            return False

    def complete(self, rendition: Rendition) -> None:
        """Upload (or embed) the rendition and report it."""
        if self.options.disable_rendition_upload:
            try:
                self.rendition_success(rendition)
            except Exception as err:
                self.rendition_failure(rendition, err)
            return

        upload_timer = self.timers.timer(UPLOAD, rendition.index)
        try:
            if rendition.should_embed_in_event():
                self.rendition_success(rendition, embed=True)
                return

            target_url = rendition.target if isinstance(rendition.target, str) else None
            upload_timer.start()
            try:
                self.storage_factory(target_url).upload(rendition)
            finally:
                upload_timer.stop()
            self.rendition_success(rendition)
        except Exception as err:
            self.rendition_failure(rendition, err)

    def rendition_success(self, rendition: Rendition, embed: bool = False) -> None:
        if rendition.is_terminal:
            return

        instructions = rendition.instructions_for_event()
        meta = rendition_metadata.extract(rendition.path).to_event() if rendition.exists() else {}
        data = rendition_as_data_uri(rendition) if embed else None

        if not rendition.mark_terminal(RenditionState.CREATED):
            return
        rendition.metadata = meta
        self.events.created(instructions, meta, data)

        size = meta.get(rendition_metadata.REPO_SIZE) or 0
        with self._lock:
            self.total_renditions_size += size

        callback_timer = self.timers.timer(PROCESSING, rendition.index)
        post_timer = self.timers.timer(POST_PROCESSING, rendition.index)
        self.metrics.send(
            METRIC_RENDITION,
            {
                **instructions,
                "renditionName": instructions.get("name"),
                "renditionFormat": instructions.get("fmt"),
                "downloadDuration": self.timers.total(DOWNLOAD),
                "callbackProcessingDuration": callback_timer.current_duration(),
                "postProcessingDuration": post_timer.current_duration(),
                "processingDuration": Timer.current_sum(callback_timer, post_timer),
                "uploadDuration": self.timers.timer(UPLOAD, rendition.index).current_duration(),
                "renditionDuration": self._rendition_duration(),
                "size": size,
            },
        )
        rendition_logger(logger, rendition.index).info("Rendition %s created", rendition.name)

    def rendition_failure(self, rendition: Rendition, err: BaseException, skip_metrics: bool = False) -> None:
        # Only the error carried by the rendition's event is part of the result
        if not rendition.mark_terminal(RenditionState.FAILED):
            return
        with self._lock:
            self.rendition_errors.append((rendition, err))

        rendition_logger(logger, rendition.index).error(
            "Rendition failed (%s): %s", reason_of(err), message_of(err)
        )
        instructions = rendition.instructions_for_event()
        self.events.failed(instructions, err)

        if not skip_metrics:
            callback_timer = self.timers.timer(PROCESSING, rendition.index)
            post_timer = self.timers.timer(POST_PROCESSING, rendition.index)
            self.metrics.handle_error(
                err,
                f"{self.action_name}_process",
                {
                    **instructions,
                    "renditionName": instructions.get("name"),
                    "renditionFormat": instructions.get("fmt"),
                    "callbackProcessingDuration": callback_timer.current_duration(),
                    "postProcessingDuration": post_timer.current_duration(),
                    "processingDuration": Timer.current_sum(callback_timer, post_timer),
                    "renditionDuration": self._rendition_duration(),
                },
            )

    # -- failures outside renditions -------------------------------------

    def _fail_activation(self, err: BaseException) -> None:
        """Prepare failed: every declared rendition fails with the same error."""
        logger.error("Preparing the activation failed (%s): %s", reason_of(err), message_of(err))
        self.state.transition(ActivationState.FATAL)
        self.metrics.handle_error(err, f"{self.action_name}_prepare")

        if self.registry is None:
            self.registry = RenditionRegistry(declared_renditions(self.request.renditions), self.workspace.out_dir)
        for rendition in self.registry.pending():
            self.rendition_failure(rendition, err, skip_metrics=True)

    def _on_deadline(self) -> None:
        elapsed = self.timers.elapsed(ACTIVATION) or 0.0
        # Armed only once the registry exists
        for rendition in self.registry.pending():
            if rendition.mark_terminal(RenditionState.FAILED):
                self.events.failed(
                    rendition.instructions_for_event(),
                    None,
                    f"Processing timed out for rendition fmt='{rendition.instructions.get('fmt')}' "
                    f"without result after {elapsed:.3f} seconds.",
                )

        self.metrics.send(METRIC_TIMEOUT, {**self.metrics.aggregate, "duration": elapsed})
        if self.on_timeout is not None:
            self.on_timeout()

    # -- helpers ----------------------------------------------------------

    def _add_startup_metrics(self) -> None:
        times = self.request.times or {}
        processing_start = times.get("gateway") or times.get("process")
        renditions = self.request.renditions
        self.metrics.add(
            startWorkerDuration=duration_sec(processing_start, self.start_time * 1000),
            gatewayToProcessDuration=duration_sec(times.get("gateway"), times.get("process")),
            processToCoreDuration=duration_sec(times.get("process"), times.get("core")),
            renditionCount=len(renditions) if isinstance(renditions, list) else None,
        )
        if self.request.params.get("predictedRunDuration") is not None:
            self.metrics.add(predictedRunDuration=self.request.params["predictedRunDuration"])

    def _rendition_duration(self) -> float:
        times = self.request.times or {}
        start = times.get("gateway") or times.get("process")
        started_at = float(start) / 1000.0 if start else self.start_time
        return time.time() - started_at

    def _note_post_process(self, applied: bool) -> None:
        with self._lock:
            self.image_post_processed = bool(self.image_post_processed) or applied

    def _source_summary(self) -> Optional[Dict[str, Any]]:
        if self.source is not None:
            return self.source.summary()
        source = self.request.source
        if isinstance(source, dict):
            return {"name": source.get("name"), "mimetype": source.get("mimetype"), "size": source.get("size")}
        return None

    def _outcomes(self) -> List[RenditionOutcome]:
        if self.registry is None:
            return []
        errors: Dict[int, BaseException] = {}
        for rendition, err in self.rendition_errors:
            # The first error is the one reported in the event
            errors.setdefault(id(rendition), err)
        outcomes = []
        for rendition in self.registry:
            err = errors.get(id(rendition)) if rendition.state == RenditionState.FAILED else None
            outcomes.append(
                RenditionOutcome(
                    index=rendition.index,
                    id=rendition.id(),
                    name=rendition.name,
                    instructions=rendition.instructions_for_event(),
                    state=rendition.state,
                    metadata=dict(rendition.metadata),
                    error_reason=reason_of(err) if rendition.state == RenditionState.FAILED else None,
                    error_message=message_of(err) if err is not None else None,
                )
            )
        return outcomes

    def _error_summaries(self) -> List[Dict[str, Any]]:
        return [
            {
                "rendition": rendition.index,
                "reason": reason_of(err),
                "message": message_of(err),
                "location": location_of(err, f"{self.action_name}_process"),
            }
            for rendition, err in self.rendition_errors
        ]
