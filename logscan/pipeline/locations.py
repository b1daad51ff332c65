import logging
import posixpath
import threading
from collections import deque
from typing import Deque, List, Optional

from logscan.config.registry import LocationRegistry, PatternRegistry
from logscan.domain.errors import ConfigurationError
from logscan.domain.models import FilterParams, JobParameters, Location, ScanContext

logger = logging.getLogger(__name__)


def parse_location_ids(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def common_path(paths: List[str]) -> str:
    """Longest common directory of the given roots ('' when they share none)."""
    normalized = [p.replace("\\", "/").rstrip("/") or "/" for p in paths]
    if not normalized:
        return ""
    try:
        result = posixpath.commonpath(normalized)
    except ValueError:
        # Mix of absolute and relative roots
        return ""
    return "" if result == "/" else result


class LocationSource:
    """Supplies the job's locations one at a time, in input order.

    The id list is resolved on the first read() against the location
    registry; unknown ids are logged and dropped, group codes expand to their
    members, and every location is produced once. read() returns None when
    the sequence is exhausted. close() forgets the resolved state so the
    source starts over on the next read().
    """

    def __init__(self, locations: LocationRegistry, patterns: PatternRegistry, params: JobParameters):
        self.locations = locations
        self.patterns = patterns
        self.params = params
        self._lock = threading.Lock()
        self._pending: Optional[Deque[Location]] = None
        self._context: Optional[ScanContext] = None

    @property
    def context(self) -> ScanContext:
        with self._lock:
            self._ensure_resolved()
            return self._context

    def read(self) -> Optional[Location]:
        with self._lock:
            self._ensure_resolved()
            if not self._pending:
                return None
            location = self._pending.popleft()
        logger.info(f"Location {location.code} ({location.type.value}) {location.host}:{location.path}")
        return location

    def resolve(self) -> List[Location]:
        """Resolves the id list without consuming it."""
        resolved: List[Location] = []
        seen = set()
        for location_id in parse_location_ids(self.params.locations):
            group = self.locations.get_group(location_id)
            if group is not None:
                candidates = group
            else:
                location = self.locations.get_by_code(location_id)
                if location is None:
                    logger.warning(f"Location with id '{location_id}' not found")
                    continue
                candidates = [location]
            for location in candidates:
                if location.code in seen:
                    continue
                seen.add(location.code)
                resolved.append(location)
        return resolved

    def close(self):
        with self._lock:
            self._pending = None
            self._context = None

    def _ensure_resolved(self):
        if self._pending is not None:
            return
        pattern = self.patterns.get_by_code(self.params.pattern_code)
        if pattern is None:
            raise ConfigurationError(f"Log pattern '{self.params.pattern_code}' not found")
        resolved = self.resolve()
        if not resolved:
            logger.warning(f"No locations resolved from '{self.params.locations}'")
        self._context = ScanContext(
            pattern=pattern,
            filter_params=FilterParams(
                includes=pattern.includes,
                date_from=self.params.date_from,
                date_to=self.params.date_to,
            ),
            common_path=common_path([loc.path for loc in resolved]),
            search_text=self.params.search_text or None,
            always_package=self.params.always_package,
        )
        logger.info(
            f"Job parameters: pattern={pattern.code}, from={self.params.date_from}, "
            f"to={self.params.date_to}, locations={len(resolved)}, common_path='{self._context.common_path}'"
        )
        self._pending = deque(resolved)
