import logging
import os
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

from logscan.domain.errors import LocationAccessError
from logscan.domain.models import FileInfo, FilterParams, Location, LocationType
from logscan.infrastructure.filesystem import FileSystemBackend

logger = logging.getLogger(__name__)


class LocalFileSystem(FileSystemBackend):
    """Recursively scans a local (or mounted network) directory."""

    location_type = LocationType.LOCAL

    def list_files(
        self,
        location: Location,
        filter_params: FilterParams,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[FileInfo]:
        root_dir = Path(location.path)
        if not root_dir.exists():
            raise LocationAccessError(f"Base directory {root_dir} not found")
        if not root_dir.is_dir():
            raise LocationAccessError(f"Base directory {root_dir} is not a directory")
        if not os.access(root_dir, os.R_OK | os.X_OK):
            raise LocationAccessError(f"Access denied to {root_dir}")

        def on_walk_error(error: OSError):
            if Path(error.filename or "") == root_dir:
                raise LocationAccessError(f"Cannot list {root_dir}: {error}")
            logger.debug(f"{location.code}: skipping unreadable directory {error.filename}: {error}")

        result: List[FileInfo] = []
        for root, dirs, files in os.walk(str(root_dir), onerror=on_walk_error):
            if should_stop is not None and should_stop():
                logger.info(f"{location.code}: listing interrupted at {root} (stop requested)")
                break
            root_path = Path(root)
            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                rel_path = file_path.relative_to(root_dir).as_posix()
                try:
                    stat = file_path.stat()
                except OSError:
                    # Skip files we can't access (vanished, broken symlink)
                    continue
                modified = datetime.fromtimestamp(stat.st_mtime)
                if not filter_params.matches(rel_path, modified):
                    continue
                result.append(FileInfo(
                    path=file_path.as_posix(),
                    location_code=location.code,
                    host=location.host,
                    size=stat.st_size,
                    modified=modified,
                ))
        return result

    def open(self, file: FileInfo, location: Location) -> BinaryIO:
        return open(file.path, "rb")
