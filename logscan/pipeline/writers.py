"""Result sinks for selected files.

ArchiveWriter packs files into one ZIP archive. Compression runs in the
calling worker thread into a spooled "scatter" file; only the merge of the
finished entry into the archive stream is serialized, under the archive lock.
FolderCopyWriter mirrors the zip paths below a folder. Both sinks write every
zip path at most once.
"""

import logging
import os
import shutil
import tempfile
import threading
import zipfile
import zlib
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from logscan.domain.errors import ArchiveError, ConfigurationError, LogScanError, WriteError
from logscan.domain.models import FileData, JobParameters
from logscan.infrastructure.housekeeping import PART_SUFFIX

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024
SPOOL_MAX_SIZE = 8 * 1024 * 1024


def zip_date_time(moment: datetime):
    # ZIP timestamps cannot represent dates before 1980
    if moment.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return moment.timetuple()[:6]


class ResultSink(ABC):
    """One output target of the result writer."""

    def open(self):
        pass

    @abstractmethod
    def write(self, items: Sequence[FileData]):
        ...

    def close(self):
        pass


class _ClaimedPaths:
    """Concurrent set of zip paths already written by a sink."""

    def __init__(self):
        self._lock = threading.Lock()
        self._paths = set()

    def claim(self, zip_path: str) -> bool:
        with self._lock:
            if zip_path in self._paths:
                return False
            self._paths.add(zip_path)
            return True

    def release(self, zip_path: str):
        with self._lock:
            self._paths.discard(zip_path)

    def clear(self):
        with self._lock:
            self._paths.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class ArchiveWriter(ResultSink):
    """Writes selected files into a single ZIP archive from many threads."""

    def __init__(
        self,
        path: Path,
        compress_level: int = 6,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.path = Path(path)
        self.compress_level = compress_level
        self.should_stop = should_stop or (lambda: False)
        self._claimed = _ClaimedPaths()
        self._archive_lock = threading.Lock()
        self._zip: Optional[zipfile.ZipFile] = None
        self._closed = False

    @property
    def entry_count(self) -> int:
        with self._archive_lock:
            return len(self._zip.filelist) if self._zip is not None else 0

    def open(self):
        with self._archive_lock:
            self._ensure_open()

    def write(self, items: Sequence[FileData]):
        for item in items:
            if not self._claimed.claim(item.zip_path):
                logger.warning(f"File {item.zip_path} is already in archive. Skipping")
                continue
            logger.info(f"Saving {item.file.path} to {item.zip_path}")
            try:
                self._write_entry(item)
            except BaseException:
                self._claimed.release(item.zip_path)
                raise

    def close(self):
        with self._archive_lock:
            if self._closed:
                return
            self._closed = True
            zf, self._zip = self._zip, None
            if zf is None:
                return
            try:
                zf.close()
            except OSError as exc:
                raise ArchiveError(f"Cannot finish archive {self.path}: {exc}") from exc
            logger.info(f"Archive {self.path} closed, {len(zf.filelist)} entries")

    def _ensure_open(self) -> zipfile.ZipFile:
        if self._closed:
            raise ArchiveError(f"Archive {self.path} is already closed")
        if self._zip is None:
            logger.info(f"Result file {self.path.absolute()}")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if self.path.exists():
                    self.path.unlink()
                self._zip = zipfile.ZipFile(self.path, "w", zipfile.ZIP_DEFLATED, allowZip64=True)
            except OSError as exc:
                raise ArchiveError(f"Cannot create archive {self.path}: {exc}") from exc
        return self._zip

    def _write_entry(self, item: FileData):
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as scatter:
            crc, file_size, compress_size = self._compress(item, scatter)
            if self.should_stop():
                logger.info(f"{item.zip_path} not merged (stop requested)")
                return
            scatter.seek(0)
            self._merge(item, scatter, crc, file_size, compress_size)

    def _compress(self, item: FileData, scatter):
        """Raw deflate of the content into scatter; returns (crc, size, compressed size).

        Reading ends early once should_stop is set; the caller then drops the entry.
        """
        compressor = zlib.compressobj(self.compress_level, zlib.DEFLATED, -zlib.MAX_WBITS)
        crc = 0
        file_size = 0
        compress_size = 0
        try:
            with item.open_content() as source:
                while not self.should_stop():
                    chunk = source.read(COPY_BUFFER_SIZE)
                    if not chunk:
                        break
                    crc = zlib.crc32(chunk, crc)
                    file_size += len(chunk)
                    data = compressor.compress(chunk)
                    compress_size += len(data)
                    scatter.write(data)
        except (OSError, LogScanError) as exc:
            raise WriteError(f"Cannot read {item.file.host}:{item.file.path}: {exc}") from exc
        data = compressor.flush()
        compress_size += len(data)
        scatter.write(data)
        return crc, file_size, compress_size

    def _merge(self, item: FileData, scatter, crc: int, file_size: int, compress_size: int):
        zinfo = zipfile.ZipInfo(item.zip_path, date_time=zip_date_time(item.file.modified))
        zinfo.compress_type = zipfile.ZIP_DEFLATED
        zinfo.external_attr = 0o644 << 16
        zinfo.CRC = crc
        zinfo.file_size = file_size
        zinfo.compress_size = compress_size
        zip64 = file_size > zipfile.ZIP64_LIMIT or compress_size > zipfile.ZIP64_LIMIT

        with self._archive_lock:
            zf = self._ensure_open()
            try:
                # Same bookkeeping ZipFile.open(mode="w") does for one entry. Uses
                # private ZipFile members present in CPython 3.9 through 3.13.
                zf.fp.seek(zf.start_dir)
                zinfo.header_offset = zf.fp.tell()
                zf._writecheck(zinfo)
                zf._didModify = True
                zf.fp.write(zinfo.FileHeader(zip64))
                shutil.copyfileobj(scatter, zf.fp, COPY_BUFFER_SIZE)
                zf.filelist.append(zinfo)
                zf.NameToInfo[zinfo.filename] = zinfo
                zf.start_dir = zf.fp.tell()
            except OSError as exc:
                raise WriteError(f"Cannot add {item.zip_path} to {self.path}: {exc}") from exc


class FolderCopyWriter(ResultSink):
    """Copies selected files below a folder, mirroring their zip paths."""

    def __init__(self, folder: Path):
        self.folder = Path(folder)
        self._claimed = _ClaimedPaths()

    def open(self):
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteError(f"Cannot create output folder {self.folder}: {exc}") from exc
        logger.info(f"Copy folder {self.folder.absolute()}")

    def write(self, items: Sequence[FileData]):
        for item in items:
            if not self._claimed.claim(item.zip_path):
                logger.warning(f"File {item.zip_path} is already copied. Skipping")
                continue
            try:
                self._copy(item)
            except BaseException:
                self._claimed.release(item.zip_path)
                raise

    def _copy(self, item: FileData):
        dest = self.folder.joinpath(*item.zip_path.split("/"))
        tmp_path = dest.with_name(dest.name + PART_SUFFIX)
        logger.info(f"Copying {item.file.path} to {dest}")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with item.open_content() as source, open(tmp_path, "wb") as target:
                shutil.copyfileobj(source, target, COPY_BUFFER_SIZE)
            os.replace(tmp_path, dest)
        except (OSError, LogScanError) as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise WriteError(f"Cannot copy {item.file.path} to {dest}: {exc}") from exc


class ResultWriter:
    """Fans every call out to all sinks; the first failure is raised after dispatch."""

    def __init__(self, sinks: Optional[List[ResultSink]] = None):
        self.sinks: List[ResultSink] = list(sinks or [])

    def __bool__(self) -> bool:
        return bool(self.sinks)

    def open(self):
        self._dispatch("open", lambda sink: sink.open())

    def write(self, items: Sequence[FileData]):
        if items:
            self._dispatch("write", lambda sink: sink.write(items))

    def close(self):
        self._dispatch("close", lambda sink: sink.close())

    def _dispatch(self, action: str, call: Callable[[ResultSink], None]):
        first_error: Optional[Exception] = None
        for sink in self.sinks:
            try:
                call(sink)
            except Exception as exc:
                logger.error(f"{type(sink).__name__}.{action} failed: {exc}")
                if first_error is None:
                    first_error = exc
        if first_error is None:
            return
        if isinstance(first_error, (ArchiveError, WriteError)):
            raise first_error
        raise WriteError(f"{action} failed: {first_error}") from first_error


def build_result_writer(
    params: JobParameters,
    should_stop: Optional[Callable[[], bool]] = None,
) -> ResultWriter:
    """Sinks for the job's output options; no sinks means a search-only run."""
    sinks: List[ResultSink] = []
    if params.save_to_archive:
        if params.archive_path is None:
            raise ConfigurationError("save_to_archive requires an archive path")
        sinks.append(ArchiveWriter(params.archive_path, should_stop=should_stop))
    if params.copy_path is not None:
        sinks.append(FolderCopyWriter(params.copy_path))
    return ResultWriter(sinks)
