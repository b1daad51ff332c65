"""Remote backend listing and reading files over SFTP.

Connections go through fsspec's SFTP filesystem (paramiko underneath). Each
listing opens its own connection and closes it when done; each opened file
owns a connection that is closed together with the stream.
"""

import io
import logging
from datetime import datetime, timezone
from typing import Any, BinaryIO, Callable, List, Optional

import fsspec
import paramiko

from logscan.domain.errors import LocationAccessError
from logscan.domain.models import FileInfo, FilterParams, Location, LocationType, local_naive
from logscan.infrastructure.filesystem import FileSystemBackend, relative_to

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22


def _coerce_mtime(value: Any) -> datetime:
    """Normalise an fsspec mtime (aware/naive UTC datetime or epoch seconds) to naive local time."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return local_naive(value)
    return datetime.fromtimestamp(float(value or 0))


# socket timeouts are OSErrors
CONNECTION_ERRORS = (OSError, EOFError, paramiko.SSHException)


class _RemoteStream(io.RawIOBase):
    """Readable stream that also closes the SFTP connection it came from."""

    def __init__(self, handle: BinaryIO, on_close: Callable[[], None]):
        super().__init__()
        self._handle = handle
        self._on_close = on_close

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._handle.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        return n

    def close(self):
        if self.closed:
            return
        try:
            self._handle.close()
        finally:
            self._on_close()
            super().close()


class SftpFileSystem(FileSystemBackend):
    """Lists and reads files on a remote host over SFTP."""

    location_type = LocationType.SFTP

    def __init__(self, timeout: float = 30.0, filesystem_factory: Optional[Callable[..., Any]] = None):
        self.timeout = timeout
        self._factory = filesystem_factory or fsspec.filesystem

    def _connect(self, location: Location):
        try:
            fs = self._factory(
                "sftp",
                host=location.host,
                port=location.port or DEFAULT_PORT,
                username=location.user,
                password=location.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                skip_instance_cache=True,
            )
        except CONNECTION_ERRORS as exc:
            raise LocationAccessError(f"Cannot connect to {location.host}:{location.port or DEFAULT_PORT}: {exc}") from exc
        ftp = getattr(fs, "ftp", None)
        if ftp is not None:
            ftp.get_channel().settimeout(self.timeout)
        return fs

    @staticmethod
    def _disconnect(fs) -> None:
        client = getattr(fs, "client", None)
        if client is None:
            return
        try:
            client.close()
        except CONNECTION_ERRORS as exc:
            logger.debug(f"Error closing SFTP connection: {exc}")

    def list_files(
        self,
        location: Location,
        filter_params: FilterParams,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[FileInfo]:
        root = location.path.rstrip("/") or "/"
        fs = self._connect(location)
        try:
            if not fs.isdir(root):
                raise LocationAccessError(f"Base directory {root} not found on {location.host}")
            entries = fs.find(root, detail=True)
            result: List[FileInfo] = []
            for path in sorted(entries):
                if should_stop is not None and should_stop():
                    logger.info(f"{location.code}: listing interrupted (stop requested)")
                    break
                info = entries[path]
                if info.get("type") != "file":
                    continue
                full_path = path if path.startswith("/") else "/" + path
                modified = _coerce_mtime(info.get("mtime"))
                rel_path = relative_to(full_path, root)
                if not filter_params.matches(rel_path, modified):
                    continue
                result.append(FileInfo(
                    path=full_path,
                    location_code=location.code,
                    host=location.host,
                    size=int(info.get("size") or 0),
                    modified=modified,
                ))
            return result
        except CONNECTION_ERRORS as exc:
            raise LocationAccessError(f"Cannot list {root} on {location.host}: {exc}") from exc
        finally:
            self._disconnect(fs)

    def open(self, file: FileInfo, location: Location) -> BinaryIO:
        fs = self._connect(location)
        try:
            handle = fs.open(file.path, "rb")
        except CONNECTION_ERRORS as exc:
            self._disconnect(fs)
            raise LocationAccessError(f"Cannot open {file.path} on {location.host}: {exc}") from exc
        return io.BufferedReader(_RemoteStream(handle, lambda: self._disconnect(fs)))

