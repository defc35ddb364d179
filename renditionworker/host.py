"""Entry points used by worker hosts.

``worker()`` and ``batch_worker()`` wrap a transform callback into a
``main(params)`` callable that runs one activation and returns its result.
The host process exits when an activation leaves the environment unusable.
"""

from __future__ import annotations

import copy
import os
import sys
import warnings
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from renditionworker.activation.events import EventSink, MetricsSink
from renditionworker.activation.orchestrator import RenditionOrchestrator
from renditionworker.core.logger import setup_logger
from renditionworker.core.models import ActivationOptions, ProcessingResult, Rendition, Source, WorkRequest

logger = setup_logger(__name__)

CLEANUP_FAILED_EXIT_CODE = 100
TIMEOUT_EXIT_CODE = 101

OptionsLike = Union[ActivationOptions, Mapping[str, Any], None]


def _options(options: OptionsLike) -> ActivationOptions:
    if isinstance(options, ActivationOptions):
        return options
    return ActivationOptions.from_dict(options)


def _exit_on_timeout() -> None:
    logger.error("Activation timed out, exiting with code %d", TIMEOUT_EXIT_CODE)
    # Called from the deadline timer thread, sys.exit would only end that thread
    os._exit(TIMEOUT_EXIT_CODE)


def check_environment(result: Optional[ProcessingResult]) -> None:
    """Exit the process if cleanup failed, leftover files could leak into later activations."""
    if result is not None and result.environment_corrupted:
        logger.error("Cleanup was not successful, exiting to prevent further use for activations")
        sys.exit(CLEANUP_FAILED_EXIT_CODE)


def run_activation(
    params: Mapping[str, Any],
    options: OptionsLike,
    strategy: Callable[[RenditionOrchestrator], ProcessingResult],
    events: Optional[EventSink] = None,
    metrics: Optional[MetricsSink] = None,
) -> Dict[str, Any]:
    orchestrator = RenditionOrchestrator(
        WorkRequest.from_params(params),
        _options(options),
        events=events,
        metrics=metrics,
        on_timeout=_exit_on_timeout,
    )
    try:
        result = strategy(orchestrator)
    except Exception as err:
        check_environment(getattr(err, "result", None))
        raise
    check_environment(result)
    return result.to_dict()


def worker(
    callback: Callable[[Optional[Source], Rendition], Any],
    options: OptionsLike = None,
    events: Optional[EventSink] = None,
    metrics: Optional[MetricsSink] = None,
) -> Callable[[Mapping[str, Any]], Dict[str, Any]]:
    """Wrap ``callback(source, rendition)`` into a ``main(params)`` entry point."""
    if not callable(callback):
        raise TypeError("renditionCallback must be a function")

    def main(params: Mapping[str, Any]) -> Dict[str, Any]:
        return run_activation(
            params, options, lambda o: o.process_one_at_a_time(callback), events=events, metrics=metrics
        )

    return main


def batch_worker(
    callback: Callable[[Optional[Source], List[Rendition], Any], Any],
    options: OptionsLike = None,
    events: Optional[EventSink] = None,
    metrics: Optional[MetricsSink] = None,
) -> Callable[[Mapping[str, Any]], Dict[str, Any]]:
    """Wrap ``callback(source, renditions, out_directory)`` into a ``main(params)`` entry point."""
    if not callable(callback):
        raise TypeError("renditionsCallback must be a function")

    def main(params: Mapping[str, Any]) -> Dict[str, Any]:
        return run_activation(
            params, options, lambda o: o.process_all_at_once(callback), events=events, metrics=metrics
        )

    return main


# Legacy API --------------------------------------------------------------


def _legacy_rendition(rendition: Rendition) -> Dict[str, Any]:
    mapped = copy.deepcopy(rendition.instructions)
    mapped["name"] = rendition.name
    return mapped


def _legacy_args(options: Any, worker_fn: Optional[Callable]) -> tuple:
    # Old signature allowed the callback in place of the options
    if callable(options) and worker_fn is None:
        return {}, options
    return options, worker_fn


def process(params: Mapping[str, Any], options: Any = None, worker_fn: Optional[Callable] = None) -> Dict[str, Any]:
    """Deprecated: ``worker_fn(source_path, renditions, out_directory)``, use ``batch_worker``."""
    warnings.warn("process() is deprecated, use batch_worker() instead", DeprecationWarning, stacklevel=2)
    options, worker_fn = _legacy_args(options, worker_fn)

    def callback(source, renditions, out_directory):
        return worker_fn(source.path if source else None, [_legacy_rendition(r) for r in renditions], out_directory)

    return batch_worker(callback, options)(params)


def for_each_rendition(
    params: Mapping[str, Any], options: Any = None, worker_fn: Optional[Callable] = None
) -> Dict[str, Any]:
    """Deprecated: ``worker_fn(source, rendition, directory)``, use ``worker``."""
    warnings.warn("for_each_rendition() is deprecated, use worker() instead", DeprecationWarning, stacklevel=2)
    options, worker_fn = _legacy_args(options, worker_fn)
    resolved = _options(options)

    def callback(source, rendition):
        if source is None:
            worker_source = None
        elif resolved.disable_source_download:
            # Source was not downloaded, the worker gets its url
            worker_source = source.url
        else:
            worker_source = source.path
        return worker_fn(worker_source, _legacy_rendition(rendition), rendition.directory)

    return worker(callback, resolved)(params)
