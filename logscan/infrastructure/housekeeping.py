import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Suffix of partially written copies; nothing else in a copy folder is ever removed
PART_SUFFIX = ".logscan-part"

class HousekeepingService:
    """Service for cleaning up files left behind by an interrupted run."""

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes leftover partial copies in the directory. Returns the number removed."""
        removed = 0
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.endswith(PART_SUFFIX):
                    try:
                        (Path(root) / file).unlink()
                        removed += 1
                    except OSError as exc:
                        logger.warning(f"Cannot remove stale partial copy {Path(root) / file}: {exc}")
        if removed:
            logger.info(f"Removed {removed} stale partial copies from {directory}")
        return removed
