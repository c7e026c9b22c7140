import logging
import os
from pathlib import Path


class HousekeepingService:
    """Removes partial outputs left behind by an interrupted run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes all .tmp files in the directory. Returns the count removed."""
        removed = 0
        for root, dirs, files in os.walk(directory):
            for file in files:
                if not file.endswith(".tmp"):
                    continue
                try:
                    (Path(root) / file).unlink()
                    removed += 1
                except OSError as e:
                    self.logger.debug(f"Cannot remove stale temp file {file}: {e}")
        if removed:
            self.logger.info(f"Removed {removed} stale .tmp files from {directory}")
        return removed
