"""Read-only lookup services over the configured locations and log patterns.

Both registries are built once from `AppConfig` and handed to the pipeline
components that need them; nothing resolves them globally.
"""

from typing import Dict, List, Optional

from logscan.config.models import AppConfig
from logscan.domain.models import Location, LogPattern


class LocationRegistry:
    """Location lookup by code, plus named groups of locations."""

    def __init__(self, locations: List[Location], groups: Optional[Dict[str, List[str]]] = None):
        self._locations: Dict[str, Location] = {loc.code: loc for loc in locations}
        self._groups: Dict[str, List[str]] = {k: list(v) for k, v in (groups or {}).items()}

    @classmethod
    def from_config(cls, config: AppConfig) -> "LocationRegistry":
        locations = [Location(**entry.model_dump()) for entry in config.locations]
        return cls(locations, config.groups)

    def get_by_code(self, code: str) -> Optional[Location]:
        return self._locations.get(code)

    def get_group(self, code: str) -> Optional[List[Location]]:
        """Members of the group named code, in declared order (None if no such group)."""
        members = self._groups.get(code)
        if members is None:
            return None
        return [self._locations[m] for m in members if m in self._locations]

    def get_all(self) -> List[Location]:
        return list(self._locations.values())

    def group_codes(self) -> List[str]:
        return list(self._groups)


class PatternRegistry:
    """Log pattern lookup by code; get_all() keeps declaration order."""

    def __init__(self, patterns: List[LogPattern]):
        self._patterns: Dict[str, LogPattern] = {p.code: p for p in patterns}

    @classmethod
    def from_config(cls, config: AppConfig) -> "PatternRegistry":
        return cls([LogPattern(**entry.model_dump()) for entry in config.patterns])

    def get_by_code(self, code: str) -> Optional[LogPattern]:
        return self._patterns.get(code)

    def get_all(self) -> List[LogPattern]:
        return list(self._patterns.values())
