"""Post-processing of worker generated renditions.

This package exposes a small facade; callers should import from
``renditionworker.postprocess`` rather than the submodules.
"""

from .decision import ALWAYS_POST_PROCESS, adjust_for_worker_capability, needs_post_process
from .formats import WORKER_FORMAT_PRIORITY, normalize_format
from .image import image_post_process
from .probe import estimate_jpeg_quality, probe

__all__ = [
    "ALWAYS_POST_PROCESS",
    "WORKER_FORMAT_PRIORITY",
    "adjust_for_worker_capability",
    "estimate_jpeg_quality",
    "image_post_process",
    "needs_post_process",
    "normalize_format",
    "probe",
]
