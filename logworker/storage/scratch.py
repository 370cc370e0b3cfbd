"""Process-wide scratch area for downloaded log files with auto-cleanup."""

import logging
import os
import tempfile
import time
from typing import Optional

logger = logging.getLogger(__name__)


class ScratchArea:
    """Local copies of source files. Shared by every job in the process.

    File names combine job id, a millisecond timestamp and the original
    basename, so concurrent jobs (or a redelivered job) never collide.
    """

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: int = 2):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "log-processor")
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def path_for(self, job_id: str, locator: str) -> str:
        basename = os.path.basename(locator.rstrip("/")) or "upload.log"
        stamp = int(time.time() * 1000)
        return os.path.join(self._base_dir, f"job-{job_id}-{stamp}-{basename}")

    def remove(self, path: Optional[str]) -> bool:
        """Delete a scratch file. Returns False (and logs) on failure."""
        if not path or not os.path.exists(path):
            return True
        try:
            os.remove(path)
        except OSError as exc:
            logger.error("Error cleaning up scratch file %s: %s", path, exc)
            return False
        logger.debug("Removed scratch file %s", path)
        return True

    def cleanup_expired(self) -> int:
        """Remove scratch files older than TTL. Returns count of removed files."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            path = os.path.join(self._base_dir, entry)
            if not os.path.isfile(path):
                continue
            if now - os.path.getmtime(path) > self._ttl_seconds and self.remove(path):
                removed += 1
        return removed
