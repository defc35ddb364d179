"""Rendition outcome events and the transports they are sent through."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol, Tuple

from renditionworker.core.errors import message_of, reason_of
from renditionworker.core.logger import setup_logger

logger = setup_logger(__name__)

RENDITION_CREATED = "rendition_created"
RENDITION_FAILED = "rendition_failed"


class EventSink(Protocol):
    def send(self, event_type: str, payload: Dict[str, Any]) -> None:
        ...


class MetricsSink(Protocol):
    def send(self, name: str, payload: Dict[str, Any]) -> None:
        ...


def _loggable(payload: Dict[str, Any]) -> str:
    # Embedded rendition data can be large
    shown = {k: ("<data>" if k == "data" else v) for k, v in payload.items()}
    return json.dumps(shown, default=str, sort_keys=True)


class LoggingEventSink:
    """Default event transport: writes events to the log."""

    def send(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info("Event %s: %s", event_type, _loggable(payload))


class LoggingMetricsSink:
    def send(self, name: str, payload: Dict[str, Any]) -> None:
        logger.info("Metric %s: %s", name, _loggable(payload))


class RecordingSink:
    """Keeps everything sent to it in memory, usable as event or metrics sink."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def send(self, name: str, payload: Dict[str, Any]) -> None:
        self.sent.append((name, payload))

    def of_type(self, name: str) -> List[Dict[str, Any]]:
        return [payload for sent_name, payload in self.sent if sent_name == name]


class RenditionEvents:
    """Builds event payloads and hands them to the sink.

    Transport failures are logged and never fail the rendition.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()

    def _send(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self.sink.send(event_type, payload)
        except Exception as e:
            logger.error_trace("Sending %s event failed: %s", event_type, e)

    def created(self, instructions: Dict[str, Any], metadata: Dict[str, Any], data: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"rendition": instructions, "metadata": metadata}
        if data is not None:
            payload["data"] = data
        self._send(RENDITION_CREATED, payload)

    def failed(self, instructions: Dict[str, Any], err: Optional[BaseException], message: Optional[str] = None) -> None:
        self._send(
            RENDITION_FAILED,
            {
                "rendition": instructions,
                "errorReason": reason_of(err),
                "errorMessage": message if message is not None else message_of(err),
            },
        )
