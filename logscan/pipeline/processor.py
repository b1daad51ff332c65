import functools
import io
import logging
from typing import List, Optional

from logscan.config.registry import LocationRegistry
from logscan.domain.errors import LocationAccessError
from logscan.domain.models import DirInfo, FileData, FileInfo, LogEvent, ScanContext
from logscan.infrastructure.filesystem import FileSystemSelector
from logscan.pipeline.matching import RecordMatcher
from logscan.pipeline.results import ResultAggregator

logger = logging.getLogger(__name__)


class _Abandoned(Exception):
    """Raised inside the record loop when a stop was requested."""


class FileProcessor:
    """Reads one file, extracts matching records and decides whether to package it."""

    def __init__(self, selector: FileSystemSelector, results: ResultAggregator, locations: LocationRegistry):
        self.selector = selector
        self.results = results
        self.locations = locations

    def process(self, file: FileInfo, dir_info: DirInfo, context: ScanContext) -> Optional[FileData]:
        if self.results.is_stopping():
            return None

        location = self.locations.get_by_code(dir_info.location_code)
        if location is None:
            logger.warning(f"{file.path}: location {dir_info.location_code} no longer configured")
            return None
        backend = self.selector.select(location.type)
        matcher = RecordMatcher(context.pattern, context.search_text)

        events: List[LogEvent] = []
        matched = False
        if matcher.selects_records:
            try:
                events = self._scan(backend.open(file, location), file, matcher, context)
            except (OSError, LocationAccessError) as exc:
                logger.warning(f"{file.host}:{file.path} read error: {exc}")
                return None
            except _Abandoned:
                logger.info(f"{file.host}:{file.path} abandoned (stop requested)")
                return None
            matched = bool(events)
        else:
            # No line rule: every file that passed the listing filter is selected
            matched = True

        self.results.add_all(events)
        self.results.add_processed_file()
        if matched:
            self.results.add_selected_file()
            logger.debug(f"{file.host}:{file.path} selected, {len(events)} events")

        if not (matched or context.always_package):
            return None
        return FileData(
            file=file,
            zip_path=f"{file.host}/{backend.relative_path(file, dir_info.common_path)}",
            open_content=functools.partial(backend.open, file, location),
        )

    def _scan(self, raw, file: FileInfo, matcher: RecordMatcher, context: ScanContext) -> List[LogEvent]:
        events: List[LogEvent] = []
        window = context.filter_params
        encoding = context.pattern.encoding
        with io.TextIOWrapper(raw, encoding=encoding, errors="replace", newline=None) as stream:
            for line_number, text in matcher.records(stream):
                if self.results.is_stopping():
                    raise _Abandoned()
                if not matcher.matches(text):
                    continue
                timestamp = matcher.parse_timestamp(text)
                if timestamp is not None and not window.in_window(timestamp):
                    continue
                events.append(LogEvent(
                    timestamp=timestamp or file.modified,
                    file=file.path,
                    location=file.location_code,
                    host=file.host,
                    line_number=line_number,
                    text=text,
                ))
        return events
