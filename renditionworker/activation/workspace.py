"""Per-activation working directories: ``<base>/<activation id>/{in,out,post}``."""

from __future__ import annotations

import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from renditionworker.config import env as env_config
from renditionworker.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Workspace:
    base: Path
    in_dir: Path
    out_dir: Path
    post_dir: Path

    @classmethod
    def for_activation(cls, activation_id: Optional[str] = None, base_dir: Optional[Path] = None) -> "Workspace":
        """Work directories for one activation.

        Without an explicit ``activation_id`` the directory name gets a random
        suffix, so activations sharing a process or a millisecond never share it.
        """
        root = Path(base_dir if base_dir is not None else env_config.WORK_BASE_DIR)
        if not activation_id:
            activation_id = f"{env_config.activation_id()}-{uuid.uuid4().hex}"
        base = (root / activation_id).resolve()
        return cls(base=base, in_dir=base / "in", out_dir=base / "out", post_dir=base / "post")

    def create(self) -> None:
        # Leftovers of an earlier run with the same activation id
        if self.base.exists():
            shutil.rmtree(self.base)
        for directory in (self.in_dir, self.out_dir, self.post_dir):
            directory.mkdir(parents=True, exist_ok=True)
        logger.debug("Created work directories under %s", self.base)

    def cleanup(self) -> bool:
        """Remove the whole activation directory.

        Returns False when the directory could not be removed, in which case the
        host environment must be considered corrupted. A directory that does not
        exist counts as removed.
        """
        if not self.base.exists():
            return True
        try:
            shutil.rmtree(self.base)
        except OSError as e:
            logger.error_trace("Error while cleaning up work directories %s: %s", self.base, e)
            return False
        logger.debug("Removed work directories under %s", self.base)
        return True
