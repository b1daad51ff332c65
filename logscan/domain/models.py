from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from logscan.domain.globbing import matches_includes


def local_naive(moment: Optional[datetime]) -> Optional[datetime]:
    """Converts an aware datetime to naive local time; naive values are already local."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


class LocationType(str, Enum):
    LOCAL = "local"
    SFTP = "sftp"


class JobState(str, Enum):
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    type: LocationType = LocationType.LOCAL
    host: str = "localhost"
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    path: str
    description: str = ""


class LogPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    description: str = ""
    includes: List[str] = Field(default_factory=list)
    regex: Optional[str] = None
    record_start: Optional[str] = None
    timestamp_regex: Optional[str] = None
    timestamp_format: Optional[str] = None
    case_sensitive: bool = True
    encoding: str = "utf-8"


class FilterParams(BaseModel):
    """Include globs plus an inclusive modification-time window."""

    model_config = ConfigDict(frozen=True)

    includes: List[str] = Field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("date_from", "date_to")
    @classmethod
    def validate_window(cls, v: Optional[datetime]) -> Optional[datetime]:
        # File mtimes are naive local time
        return local_naive(v)

    def in_window(self, moment: datetime) -> bool:
        if self.date_from is not None and moment < self.date_from:
            return False
        if self.date_to is not None and moment > self.date_to:
            return False
        return True

    def matches(self, relative_path: str, modified: datetime) -> bool:
        return matches_includes(relative_path, self.includes) and self.in_window(modified)


class FileInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    location_code: str
    host: str
    size: int = Field(ge=0)
    modified: datetime

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


class DirInfo(BaseModel):
    """Files matched under one location, sorted case-insensitively by path."""

    location_code: str
    location_type: LocationType
    host: str
    root_path: str
    common_path: str = ""
    files: List[FileInfo]

    @field_validator("files")
    @classmethod
    def validate_files(cls, v: List[FileInfo]) -> List[FileInfo]:
        if not v:
            raise ValueError("DirInfo requires at least one file")
        return sorted(v, key=lambda f: f.path.lower())


class FileData(BaseModel):
    """A file selected for packaging and its destination inside the output."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    file: FileInfo
    zip_path: str
    open_content: Callable[[], BinaryIO]


class LogEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    file: str
    location: str
    host: str = "localhost"
    line_number: int = 0
    text: str


class JobParameters(BaseModel):
    pattern_code: str
    locations: str
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search_text: Optional[str] = None
    save_to_archive: bool = False
    archive_path: Optional[Path] = None
    copy_path: Optional[Path] = None
    always_package: bool = False

    @field_validator("date_from", "date_to")
    @classmethod
    def validate_window(cls, v: Optional[datetime]) -> Optional[datetime]:
        return local_naive(v)


class ScanContext(BaseModel):
    """Values resolved once per run and shared read-only by both stages."""

    model_config = ConfigDict(frozen=True)

    pattern: LogPattern
    filter_params: FilterParams
    common_path: str = ""
    search_text: Optional[str] = None
    always_package: bool = False
