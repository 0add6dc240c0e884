import logging
import time
from pathlib import Path
from typing import Callable, Iterable

from compresso.infrastructure.atomic_output import TEMP_SUFFIX


class HousekeepingService:
    """Removes temporary files left behind by crashed runs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path, older_than_seconds: float = 24 * 3600) -> int:
        """Deletes ``.*.compresso.tmp`` files in ``directory`` older than the threshold."""
        if not directory.is_dir():
            return 0
        removed = 0
        now = self.clock()
        for path in directory.glob(f".*{TEMP_SUFFIX}"):
            try:
                if not path.is_file():
                    continue
                if now - path.stat().st_mtime < older_than_seconds:
                    continue
                path.unlink()
                removed += 1
                self.logger.info(f"HOUSEKEEPING: removed stale temp file {path}")
            except OSError as e:
                self.logger.warning(f"HOUSEKEEPING: could not remove {path}: {e}")
        return removed

    def cleanup_directories(self, directories: Iterable[Path], older_than_seconds: float) -> int:
        seen = set()
        total = 0
        for directory in directories:
            if directory in seen:
                continue
            seen.add(directory)
            total += self.cleanup_temp_files(directory, older_than_seconds)
        return total
