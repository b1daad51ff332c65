import os
import time
from datetime import datetime

import pytest
import yaml

from logscan.config.models import AppConfig
from logscan.config.registry import LocationRegistry, PatternRegistry
from logscan.domain.models import (
    FilterParams,
    JobParameters,
    Location,
    LocationType,
    LogPattern,
    ScanContext,
)
from logscan.infrastructure.event_bus import EventBus
from logscan.infrastructure.filesystem import FileSystemSelector
from logscan.infrastructure.local_fs import LocalFileSystem
from logscan.pipeline.results import ResultAggregator

# ============================================================================
# Helpers
# ============================================================================

def _write_log(path, lines, mtime=None):
    """Writes lines to path (creating parents) and optionally sets its mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if mtime is not None:
        ts = time.mktime(mtime.timetuple())
        os.utime(path, (ts, ts))
    return path


def _make_context(pattern, common_path="", search_text=None, always_package=False, date_from=None, date_to=None):
    return ScanContext(
        pattern=pattern,
        filter_params=FilterParams(includes=pattern.includes, date_from=date_from, date_to=date_to),
        common_path=common_path,
        search_text=search_text,
        always_package=always_package,
    )

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def error_pattern():
    return LogPattern(
        code="errors",
        includes=["*.log"],
        regex=r"\bERROR\b",
        record_start=r"^\d{4}-\d{2}-\d{2} ",
        timestamp_regex=r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})",
        timestamp_format="%Y-%m-%d %H:%M:%S",
    )


@pytest.fixture
def sample_config(tmp_path):
    """Returns a sample AppConfig with two local locations and a group."""
    return AppConfig(
        general={
            "threads": 2,
            "prefetch_factor": 2,
            "max_results": 100,
            "shutdown_grace_s": 5,
            "log_path": str(tmp_path / "logs" / "logscan.log"),
        },
        locations=[
            {"code": "app1", "path": str(tmp_path / "srv" / "app1")},
            {"code": "app2", "path": str(tmp_path / "srv" / "app2")},
        ],
        groups={"apps": ["app1", "app2"]},
        patterns=[
            {
                "code": "errors",
                "includes": ["*.log"],
                "regex": r"\bERROR\b",
                "record_start": r"^\d{4}-\d{2}-\d{2} ",
                "timestamp_regex": r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})",
                "timestamp_format": "%Y-%m-%d %H:%M:%S",
            },
            {"code": "nothing", "includes": ["*.log"], "regex": "THIS_NEVER_APPEARS"},
            {"code": "all", "includes": ["*.log"]},
        ],
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "logscan.yaml"

    content = {
        'general': {
            'threads': 2,
            'max_results': 50,
            'log_path': str(tmp_path / "logs" / "logscan.log"),
        },
        'locations': {
            'app1': {'path': str(tmp_path / "srv" / "app1"), 'description': 'first app'},
            'remote': {'type': 'sftp', 'host': 'logs.example.com', 'user': 'reader', 'path': '/var/log'},
        },
        'groups': {'all-apps': ['app1', 'remote']},
        'patterns': {
            'errors': {'includes': ['*.log'], 'regex': '\\bERROR\\b'},
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# Pipeline Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def results(event_bus):
    return ResultAggregator(max_results=100, event_bus=event_bus)


@pytest.fixture
def selector():
    return FileSystemSelector([LocalFileSystem()])


@pytest.fixture
def registries(sample_config):
    return LocationRegistry.from_config(sample_config), PatternRegistry.from_config(sample_config)


@pytest.fixture
def app_files(tmp_path):
    """Log files under two application roots: app1 has matches, app2 has no *.log files."""
    srv = tmp_path / "srv"
    when = datetime(2024, 3, 1, 12, 0, 0)
    _write_log(srv / "app1" / "server.log", [
        "2024-03-01 10:00:00 INFO started",
        "2024-03-01 10:05:00 ERROR connection refused",
        "java.net.ConnectException: refused",
        "    at Socket.connect",
        "2024-03-01 10:06:00 INFO retrying",
    ], mtime=when)
    _write_log(srv / "app1" / "sub" / "Worker.log", [
        "2024-03-01 11:00:00 ERROR worker crashed",
    ], mtime=when)
    _write_log(srv / "app1" / "access.log", [
        "2024-03-01 11:30:00 INFO GET /",
    ], mtime=when)
    _write_log(srv / "app2" / "notes.txt", ["ERROR but not a log file"], mtime=when)
    return srv


def _local_location(code, path):
    return Location(code=code, type=LocationType.LOCAL, path=str(path))


def _job(pattern_code="errors", locations="app1,app2", **kwargs):
    return JobParameters(pattern_code=pattern_code, locations=locations, **kwargs)


@pytest.fixture
def write_log():
    return _write_log


@pytest.fixture
def make_context():
    return _make_context


@pytest.fixture
def local_location():
    return _local_location


@pytest.fixture
def job():
    """Builds JobParameters; defaults to the errors pattern over app1,app2."""
    return _job

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
