from pathlib import Path
from unittest.mock import patch

from logscan.infrastructure.housekeeping import PART_SUFFIX, HousekeepingService

def test_housekeeping_cleanup_partial_copies(tmp_path):
    (tmp_path / f"server.log{PART_SUFFIX}").write_text("data")
    (tmp_path / "server.log").write_text("data")
    (tmp_path / "subdir").mkdir()
    (tmp_path / "subdir" / f"worker.log{PART_SUFFIX}").write_text("data")

    service = HousekeepingService()
    removed = service.cleanup_temp_files(tmp_path)

    assert removed == 2
    assert not (tmp_path / f"server.log{PART_SUFFIX}").exists()
    assert (tmp_path / "server.log").exists()
    assert not (tmp_path / "subdir" / f"worker.log{PART_SUFFIX}").exists()

def test_housekeeping_keeps_unrelated_tmp_files(tmp_path):
    (tmp_path / "foo.tmp").write_text("user data")
    (tmp_path / "localhost").mkdir()
    (tmp_path / "localhost" / "rotated.log.tmp").write_text("copied log")

    assert HousekeepingService().cleanup_temp_files(tmp_path) == 0
    assert (tmp_path / "foo.tmp").exists()
    assert (tmp_path / "localhost" / "rotated.log.tmp").exists()

def test_housekeeping_missing_directory(tmp_path):
    assert HousekeepingService().cleanup_temp_files(tmp_path / "missing") == 0

def test_housekeeping_handles_oserror(tmp_path):
    f = tmp_path / f"protected{PART_SUFFIX}"
    f.write_text("data")

    service = HousekeepingService()
    with patch.object(Path, 'unlink', side_effect=OSError("Permission denied")):
        # Should not raise exception
        assert service.cleanup_temp_files(tmp_path) == 0
        assert f.exists()
