import io
import logging
import threading
import zipfile
from datetime import datetime

import pytest

from logscan.domain.errors import ArchiveError, WriteError
from logscan.domain.models import FileData, FileInfo
from logscan.pipeline.writers import COPY_BUFFER_SIZE, ArchiveWriter, zip_date_time


def _item(zip_path, content, modified=datetime(2024, 3, 1, 10, 30, 15)):
    info = FileInfo(path="/srv/" + zip_path, location_code="app1", host="localhost", size=len(content), modified=modified)
    return FileData(file=info, zip_path=zip_path, open_content=lambda: io.BytesIO(content))


def test_writes_valid_deflated_entries(tmp_path):
    archive = tmp_path / "out" / "result.zip"
    writer = ArchiveWriter(archive)
    writer.open()
    writer.write([_item("localhost/a.log", b"alpha\n" * 1000), _item("localhost/sub/b.log", b"beta\n")])
    writer.close()

    with zipfile.ZipFile(archive) as zf:
        assert zf.testzip() is None
        assert zf.namelist() == ["localhost/a.log", "localhost/sub/b.log"]
        assert zf.read("localhost/a.log") == b"alpha\n" * 1000
        info = zf.getinfo("localhost/a.log")
        assert info.compress_type == zipfile.ZIP_DEFLATED
        assert info.compress_size < info.file_size
        assert info.date_time == (2024, 3, 1, 10, 30, 14)


def test_empty_file_entry(tmp_path):
    archive = tmp_path / "result.zip"
    writer = ArchiveWriter(archive)
    writer.write([_item("localhost/empty.log", b"")])
    writer.close()

    with zipfile.ZipFile(archive) as zf:
        assert zf.read("localhost/empty.log") == b""


def test_duplicate_zip_path_written_once(tmp_path, caplog):
    archive = tmp_path / "result.zip"
    writer = ArchiveWriter(archive)
    with caplog.at_level(logging.WARNING):
        writer.write([_item("localhost/a.log", b"first")])
        writer.write([_item("localhost/a.log", b"second")])
    writer.close()

    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["localhost/a.log"]
        assert zf.read("localhost/a.log") == b"first"
    assert "already in archive" in caplog.text


def test_concurrent_writers_produce_consistent_archive(tmp_path):
    archive = tmp_path / "result.zip"
    writer = ArchiveWriter(archive)
    writer.open()
    payloads = {f"localhost/f{i:03d}.log": (f"line {i}\n" * (i + 1) * 50).encode() for i in range(64)}
    names = list(payloads)

    def worker(index):
        # every path is offered by two threads
        for name in names[index::8] + names[(index + 1) % 8::8]:
            writer.write([_item(name, payloads[name])])

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    writer.close()

    with zipfile.ZipFile(archive) as zf:
        assert zf.testzip() is None
        assert sorted(zf.namelist()) == sorted(names)
        for name, payload in payloads.items():
            assert zf.read(name) == payload


def test_existing_target_is_replaced(tmp_path):
    archive = tmp_path / "result.zip"
    archive.write_bytes(b"stale, not a zip")
    writer = ArchiveWriter(archive)
    writer.open()
    writer.close()

    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == []


def test_close_is_idempotent_and_final(tmp_path):
    writer = ArchiveWriter(tmp_path / "result.zip")
    writer.write([_item("localhost/a.log", b"x")])
    writer.close()
    writer.close()

    with pytest.raises(ArchiveError):
        writer.write([_item("localhost/b.log", b"y")])


def test_open_failure_is_archive_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a folder")
    writer = ArchiveWriter(blocker / "result.zip")
    with pytest.raises(ArchiveError):
        writer.open()


def test_unreadable_content_is_write_error(tmp_path):
    def broken():
        raise OSError("connection reset")

    info = FileInfo(path="/srv/a.log", location_code="app1", host="localhost", size=1, modified=datetime(2024, 1, 1))
    writer = ArchiveWriter(tmp_path / "result.zip")
    writer.open()
    with pytest.raises(WriteError):
        writer.write([FileData(file=info, zip_path="localhost/a.log", open_content=broken)])
    writer.write([_item("localhost/a.log", b"retry works")])
    writer.close()

    with zipfile.ZipFile(tmp_path / "result.zip") as zf:
        assert zf.read("localhost/a.log") == b"retry works"


def test_stop_requested_leaves_no_entry(tmp_path):
    stop = threading.Event()
    writer = ArchiveWriter(tmp_path / "result.zip", should_stop=stop.is_set)
    writer.open()
    writer.write([_item("localhost/a.log", b"kept")])
    stop.set()
    writer.write([_item("localhost/b.log", b"dropped")])
    writer.close()

    with zipfile.ZipFile(tmp_path / "result.zip") as zf:
        assert zf.testzip() is None
        assert zf.namelist() == ["localhost/a.log"]


def test_zip_date_time_clamps_before_1980():
    assert zip_date_time(datetime(1970, 1, 1)) == (1980, 1, 1, 0, 0, 0)
    assert zip_date_time(datetime(2024, 3, 1, 10, 30, 15)) == (2024, 3, 1, 10, 30, 15)


def test_stop_during_compression_stops_reading(tmp_path):
    stop = threading.Event()

    class StoppingSource(io.BytesIO):
        reads = 0

        def read(self, size=-1):
            StoppingSource.reads += 1
            stop.set()
            return super().read(size)

    content = b"x" * (3 * COPY_BUFFER_SIZE)
    info = FileInfo(path="/srv/big.log", location_code="app1", host="localhost", size=len(content), modified=datetime(2024, 3, 1))
    writer = ArchiveWriter(tmp_path / "result.zip", should_stop=stop.is_set)
    writer.open()
    writer.write([FileData(file=info, zip_path="localhost/big.log", open_content=lambda: StoppingSource(content))])
    writer.close()

    assert StoppingSource.reads == 1
    with zipfile.ZipFile(tmp_path / "result.zip") as zf:
        assert zf.namelist() == []


def test_zipfile_members_used_by_merge_exist(tmp_path):
    with zipfile.ZipFile(tmp_path / "internals.zip", "w") as zf:
        for name in ("fp", "start_dir", "filelist", "NameToInfo", "_writecheck", "_didModify"):
            assert hasattr(zf, name), name
    assert hasattr(zipfile.ZipInfo, "FileHeader")
