"""Size-based routing between the whole-object and block upload paths."""

import stat
from pathlib import Path
from typing import Optional, Tuple, Union

from loguru import logger

from domains.transfer.models import UploadPlan

SMALL_FILE_THRESHOLD = 1024 * 1024  # 1 MiB, inclusive


class SizeRouter:
    """Classify files as Small or Large by their length on disk."""

    def __init__(self, threshold: int = SMALL_FILE_THRESHOLD):
        self.threshold = threshold

    def plan_for_size(self, size: int) -> UploadPlan:
        return UploadPlan.SMALL if size <= self.threshold else UploadPlan.LARGE

    def classify_with_size(self, path: Union[str, Path]) -> Optional[Tuple[UploadPlan, int]]:
        """
        Stat ``path`` and pick an upload plan.

        Returns:
            (plan, size), or None when the file is gone or is not a regular file
        """
        try:
            stats = Path(path).stat()
        except FileNotFoundError:
            logger.debug(f"File vanished before classification: {path}")
            return None

        if not stat.S_ISREG(stats.st_mode):
            logger.debug(f"Not a regular file, skipping: {path}")
            return None

        return self.plan_for_size(stats.st_size), stats.st_size

    def classify(self, path: Union[str, Path]) -> Optional[UploadPlan]:
        """Return the upload plan for ``path`` or None if it no longer exists."""
        result = self.classify_with_size(path)
        return result[0] if result else None
