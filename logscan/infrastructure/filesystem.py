"""Filesystem backend abstraction.

A backend lists the files of one `Location` that satisfy `FilterParams`,
computes paths relative to a base directory, and opens file content. The
selector dispatches on `LocationType` once per location.
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Dict, List, Optional

from logscan.domain.errors import ConfigurationError
from logscan.domain.models import FileInfo, FilterParams, Location, LocationType


def relative_to(path: str, base_path: str) -> str:
    """POSIX path below base_path, or the full path without its leading / if outside it."""
    base = base_path.rstrip("/")
    if base and (path == base or path.startswith(base + "/")):
        path = path[len(base):]
    return path.lstrip("/")


class FileSystemBackend(ABC):
    """Capability set shared by local and remote backends."""

    location_type: LocationType

    @abstractmethod
    def list_files(
        self,
        location: Location,
        filter_params: FilterParams,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[FileInfo]:
        """List files under location.path matching filter_params.

        Listing ends early, with a partial result, once should_stop returns
        True. Raises LocationAccessError when the root cannot be listed.
        """
        ...

    @abstractmethod
    def open(self, file: FileInfo, location: Location) -> BinaryIO:
        """Open file content for reading. Raises LocationAccessError or OSError."""
        ...

    def relative_path(self, file: FileInfo, base_path: str) -> str:
        return relative_to(file.path, base_path)


class FileSystemSelector:
    """Selects the backend serving a location type."""

    def __init__(self, backends: List[FileSystemBackend]):
        self._backends: Dict[LocationType, FileSystemBackend] = {b.location_type: b for b in backends}

    def select(self, location_type: LocationType) -> FileSystemBackend:
        backend = self._backends.get(location_type)
        if backend is None:
            raise ConfigurationError(f"No filesystem backend for location type {location_type.value}")
        return backend
