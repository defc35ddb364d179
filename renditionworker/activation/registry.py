"""Builds the activation's renditions from validated instructions."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

from renditionworker.core.models import Rendition


class RenditionRegistry:
    """Ordered, index-addressed set of renditions sharing one output directory."""

    def __init__(self, instructions: Sequence[Dict[str, Any]], directory: Path):
        self.directory = Path(directory)
        self._renditions: List[Rendition] = Rendition.for_each(list(instructions), self.directory)

    def __iter__(self) -> Iterator[Rendition]:
        return iter(self._renditions)

    def __len__(self) -> int:
        return len(self._renditions)

    def __getitem__(self, index: int) -> Rendition:
        return self._renditions[index]

    @property
    def renditions(self) -> List[Rendition]:
        return list(self._renditions)

    def pending(self) -> List[Rendition]:
        return [r for r in self._renditions if not r.is_terminal]
