import logging
from typing import Optional

from logscan.domain.errors import LocationAccessError
from logscan.domain.models import DirInfo, Location, ScanContext
from logscan.infrastructure.filesystem import FileSystemSelector
from logscan.pipeline.results import ResultAggregator

logger = logging.getLogger(__name__)


class DirectoryScanner:
    """Lists the matching files of one location (stage 1 unit of work)."""

    def __init__(self, selector: FileSystemSelector, results: ResultAggregator):
        self.selector = selector
        self.results = results

    def process(self, location: Location, context: ScanContext) -> Optional[DirInfo]:
        if self.results.is_stopping():
            logger.info(f"{location.code}: skipped (stop requested)")
            return None

        backend = self.selector.select(location.type)
        try:
            files = backend.list_files(location, context.filter_params, self.results.is_stopping)
        except LocationAccessError as exc:
            # Base directory missing, access denied, host unreachable
            logger.info(f"{location.code} {location.path} error: {exc}")
            return None
        if self.results.is_stopping():
            logger.info(f"{location.code}: partial listing discarded (stop requested)")
            return None
        logger.info(f"{location.code} {location.path} {len(files)} files selected")

        if not files:
            return None

        files = sorted(files, key=lambda f: f.path.lower())
        self.results.add_files_to_process(len(files))
        return DirInfo(
            location_code=location.code,
            location_type=location.type,
            host=location.host,
            root_path=location.path,
            common_path=context.common_path,
            files=files,
        )
