from pathlib import Path
from unittest.mock import patch

from vbt.infrastructure.housekeeping import HousekeepingService


def test_housekeeping_cleanup_tmp(tmp_path):
    (tmp_path / "file1.tmp").write_text("data")
    (tmp_path / "file2.mp4").write_text("data")
    (tmp_path / "subdir").mkdir()
    (tmp_path / "subdir" / "file3.tmp").write_text("data")

    service = HousekeepingService()
    removed = service.cleanup_temp_files(tmp_path)

    assert removed == 2
    assert not (tmp_path / "file1.tmp").exists()
    assert (tmp_path / "file2.mp4").exists()
    assert not (tmp_path / "subdir" / "file3.tmp").exists()


def test_housekeeping_empty_dir(tmp_path):
    assert HousekeepingService().cleanup_temp_files(tmp_path) == 0


def test_housekeeping_handles_oserror(tmp_path):
    f = tmp_path / "protected.tmp"
    f.write_text("data")

    service = HousekeepingService()
    with patch.object(Path, "unlink", side_effect=OSError("Permission denied")):
        assert service.cleanup_temp_files(tmp_path) == 0
        assert f.exists()
