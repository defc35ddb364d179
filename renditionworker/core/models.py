"""Data model of a single activation: request, options, source and renditions."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from renditionworker.core.errors import WorkRequestError

RENDITION_BASENAME = "rendition"
SOURCE_BASENAME = "source"

# Largest embedBinaryLimit honoured for inlining a rendition into its event
EMBED_LIMIT_MAX = 32 * 1024


@dataclass(frozen=True)
class WorkRequest:
    """Immutable description of the work requested from one activation.

    ``renditions`` is kept as given (after a deep copy) so that a malformed
    value can still be reported by validation instead of failing here.
    """

    source: Any
    renditions: Any
    request_id: Optional[str] = None
    times: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "WorkRequest":
        if params is not None and not isinstance(params, Mapping):
            raise WorkRequestError(f"Activation parameters must be an object, not {type(params).__name__}")
        params = copy.deepcopy(dict(params or {}))
        return cls(
            source=params.get("source"),
            renditions=params.get("renditions"),
            request_id=params.get("requestId"),
            times=params.get("times") or {},
            params=params,
        )


@dataclass
class ActivationOptions:
    disable_source_download: bool = False
    disable_rendition_upload: bool = False
    parallel: bool = False
    max_workers: Optional[int] = None
    supported_rendition_formats: Optional[List[str]] = None
    # Callable(intermediate_path, rendition, instructions) writing rendition.path
    post_processor: Optional[Callable[..., Any]] = None

    @classmethod
    def from_dict(cls, options: Optional[Mapping[str, Any]]) -> "ActivationOptions":
        """Build options from the camelCase mapping hosts pass around."""
        options = dict(options or {})
        # Old misspelled option
        disable_download = options.get("disableSourceDownload") or options.get("disableSourceDownloadSource")
        return cls(
            disable_source_download=bool(disable_download),
            disable_rendition_upload=bool(options.get("disableRenditionUpload")),
            parallel=bool(options.get("parallel")),
            max_workers=options.get("maxWorkers"),
            supported_rendition_formats=options.get("supportedRenditionFormats"),
            post_processor=options.get("postProcessor"),
        )


@dataclass(frozen=True)
class Source:
    name: str
    path: Path
    url: Optional[str] = None
    type: Optional[str] = None
    size: Optional[int] = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {"name": self.name, "mimetype": self.type, "size": self.size}


class RenditionState(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    FAILED = "failed"


class Rendition:
    """One requested output of the activation."""

    def __init__(self, instructions: Dict[str, Any], directory: Path, index: int = 0):
        self.instructions = instructions
        self.directory = Path(directory)
        self.index = index
        self.target = instructions.get("target")
        self.metadata: Dict[str, Any] = {}
        self.post_process = False
        self._original_instructions: Optional[Dict[str, Any]] = None
        self._path: Optional[Path] = None
        self._state = RenditionState.PENDING
        self._state_lock = Lock()

    @staticmethod
    def rendition_filename(extension: Optional[str], index: int = 0) -> str:
        if extension:
            return f"{RENDITION_BASENAME}{index}.{extension}"
        return f"{RENDITION_BASENAME}{index}"

    @property
    def name(self) -> str:
        return self.rendition_filename(self.instructions.get("fmt"), self.index)

    @property
    def path(self) -> Path:
        return self._path or self.directory / self.name

    @path.setter
    def path(self, value: Path) -> None:
        self._path = Path(value)

    def id(self) -> Any:
        return self.instructions.get("name") or self.index

    def exists(self) -> bool:
        return self.path.is_file()

    def size(self) -> int:
        return self.path.stat().st_size

    # -- terminal state -------------------------------------------------

    @property
    def state(self) -> RenditionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state != RenditionState.PENDING

    def mark_terminal(self, outcome: RenditionState) -> bool:
        """Move to a terminal state. Only the first caller gets True."""
        if outcome == RenditionState.PENDING:
            raise ValueError("Terminal outcome must be created or failed")
        with self._state_lock:
            if self._state != RenditionState.PENDING:
                return False
            self._state = outcome
            return True

    # -- instructions ---------------------------------------------------

    def change_instructions(self, new_instructions: Dict[str, Any]) -> None:
        if self._original_instructions is None:
            self._original_instructions = self.instructions
        self.instructions = new_instructions

    @property
    def original_instructions(self) -> Dict[str, Any]:
        return self._original_instructions or self.instructions

    def restore_original_instructions(self) -> None:
        if self._original_instructions is not None:
            self.instructions = self._original_instructions
            self._original_instructions = None

    def instructions_for_event(self) -> Dict[str, Any]:
        return redact_instructions(self.original_instructions)

    def should_embed_in_event(self) -> bool:
        limit = self.instructions.get("embedBinaryLimit")
        # bool is an int subclass but never a valid limit
        if not isinstance(limit, int) or isinstance(limit, bool):
            return False
        return limit <= EMBED_LIMIT_MAX and self.size() <= limit

    def __repr__(self) -> str:
        return f"Rendition(index={self.index}, name={self.name!r}, state={self._state.value})"

    @classmethod
    def for_each(cls, instructions: Sequence[Dict[str, Any]], directory: Path) -> List["Rendition"]:
        return [cls(item, directory, index) for index, item in enumerate(instructions)]


def redact_instructions(instructions: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``instructions`` safe to put in events (no target, no userData)."""
    redacted = dict(instructions)
    redacted.pop("target", None)
    redacted.pop("userData", None)
    return redacted


@dataclass
class RenditionOutcome:
    index: int
    id: Any
    name: str
    instructions: Dict[str, Any]
    state: RenditionState
    metadata: Dict[str, Any] = field(default_factory=dict)
    error_reason: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ProcessingResult:
    """What the activation produced, built once in finalize."""

    request_id: Optional[str]
    source: Optional[Dict[str, Any]]
    renditions: List[RenditionOutcome] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    environment_corrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "source": self.source,
            "renditions": [
                {
                    "name": outcome.name,
                    "instructions": outcome.instructions,
                    "state": outcome.state.value,
                    "metadata": outcome.metadata,
                }
                for outcome in self.renditions
            ],
            "renditionErrors": self.errors,
            "metrics": self.metrics,
            "environmentCorrupted": self.environment_corrupted,
        }


def source_filename(extension: Optional[str]) -> str:
    if extension:
        return f"{SOURCE_BASENAME}{extension}"
    return SOURCE_BASENAME


def split_extension(name: Optional[str]) -> str:
    if not name:
        return ""
    return os.path.splitext(name)[1]
