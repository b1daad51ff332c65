import codecs
import os
import re
from typing import List, Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from logscan.domain.models import LocationType


def default_threads() -> int:
    """Worker pool size used by both pipeline stages: available CPUs x 2."""
    return (os.cpu_count() or 1) * 2


class GeneralConfig(BaseModel):
    threads: int = Field(default_factory=default_threads, gt=0)
    prefetch_factor: int = Field(default=2, ge=1)
    max_results: int = Field(default=1000, ge=1)
    always_package: bool = False
    io_timeout_s: float = Field(default=30.0, gt=0)
    shutdown_grace_s: float = Field(default=10.0, ge=0)
    checkpoint_path: Optional[str] = None
    log_path: str = "/tmp/logscan/logscan.log"
    debug: bool = False


class LocationConfig(BaseModel):
    code: str = Field(min_length=1)
    type: LocationType = LocationType.LOCAL
    host: str = "localhost"
    port: Optional[int] = Field(default=None, gt=0, le=65535)
    user: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    path: str = Field(min_length=1)
    description: str = ""

    @model_validator(mode="after")
    def validate_remote(self):
        if self.type == LocationType.SFTP and self.host in ("", "localhost"):
            raise ValueError(f"Location {self.code}: sftp locations require a host")
        return self


class PatternConfig(BaseModel):
    code: str = Field(min_length=1)
    description: str = ""
    includes: List[str] = Field(default_factory=list)
    regex: Optional[str] = None
    record_start: Optional[str] = None
    timestamp_regex: Optional[str] = None
    timestamp_format: Optional[str] = None
    case_sensitive: bool = True
    encoding: str = "utf-8"

    @field_validator("regex", "record_start", "timestamp_regex")
    @classmethod
    def validate_regex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid regular expression {v!r}: {exc}")
        return v

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f"Unknown encoding {v!r}")
        return v

    @model_validator(mode="after")
    def validate_timestamp(self):
        if self.timestamp_regex and not self.timestamp_format:
            raise ValueError(f"Pattern {self.code}: timestamp_regex requires timestamp_format")
        return self


class UiConfig(BaseModel):
    """Dashboard display configuration."""
    refresh_per_second: int = Field(default=4, ge=1, le=30)
    recent_events: int = Field(default=10, ge=1, le=100)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    locations: List[LocationConfig] = Field(default_factory=list)
    groups: Dict[str, List[str]] = Field(default_factory=dict)
    patterns: List[PatternConfig] = Field(default_factory=list)
    ui: UiConfig = Field(default_factory=UiConfig)

    @model_validator(mode="after")
    def validate_references(self):
        codes = [loc.code for loc in self.locations]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate location codes: {duplicates}")
        pattern_codes = [p.code for p in self.patterns]
        duplicates = sorted({c for c in pattern_codes if pattern_codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate pattern codes: {duplicates}")
        known = set(codes)
        for group, members in self.groups.items():
            if group in known:
                raise ValueError(f"Group {group} clashes with a location code")
            missing = [m for m in members if m not in known]
            if missing:
                raise ValueError(f"Group {group} references unknown locations: {missing}")
        return self
