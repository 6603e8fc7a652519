"""
Unit tests for compression module (backrotate/backup/compression.py).

Tests archive creation for all supported formats (tar, tar.gz, tar.bz2, tar.xz, zip).
"""

import os
import tarfile
import zipfile
from datetime import datetime, timezone

import pytest

from backrotate.backup.compression import (
    create_archive,
    generate_archive_filename,
    strip_archive_extension,
    get_archive_size,
    list_archive_members,
)
from backrotate.backup.errors import ArchiveCreationError


class TestCreateArchive:
    """Test create_archive function with different formats."""

    @pytest.mark.parametrize("compression_format,expected_extension", [
        ("zip", ".zip"),
        ("tar.gz", ".tar.gz"),
        ("tar.bz2", ".tar.bz2"),
        ("tar.xz", ".tar.xz"),
        ("tar", ".tar"),
    ])
    def test_create_archive_all_formats(self, temp_files, tmp_path, compression_format, expected_extension):
        """Test creating archives in all supported formats."""
        archive_path = create_archive(
            [str(temp_files / "test_file1.txt")],
            str(tmp_path / "test_archive"),
            compression_format
        )

        assert archive_path.endswith(expected_extension)
        assert os.path.exists(archive_path)
        assert os.path.getsize(archive_path) > 0

    def test_multiple_paths_go_into_one_archive(self, source_dirs, tmp_path):
        """Every input path ends up in the same single archive."""
        out_dir = tmp_path / "out"
        out_dir.mkdir()

        archive_path = create_archive([str(p) for p in source_dirs], str(out_dir / "combined"), "tar.gz")

        assert os.listdir(out_dir) == ["combined.tar.gz"]
        members = list_archive_members(archive_path)
        assert "dirA" in members
        assert "dirA/vault.db" in members
        assert "dirB/attachments/doc.txt" in members

    def test_zip_contains_every_path(self, source_dirs, tmp_path):
        archive_path = create_archive([str(p) for p in source_dirs], str(tmp_path / "combined"), "zip")

        members = list_archive_members(archive_path)
        assert "dirA" in members
        assert "dirA/config.json" in members
        assert "dirB/attachments/doc.txt" in members

    def test_archive_preserves_input_order(self, temp_files, tmp_path):
        paths = [str(temp_files / "test_file2.log"), str(temp_files / "test_file1.txt")]

        archive_path = create_archive(paths, str(tmp_path / "ordered"), "tar")

        assert list_archive_members(archive_path) == ["test_file2.log", "test_file1.txt"]

    def test_empty_path_list_creates_no_file(self, tmp_path):
        """Test that an empty source list fails without touching disk."""
        with pytest.raises(ArchiveCreationError, match="No source paths"):
            create_archive([], str(tmp_path / "empty"), "tar.gz")

        assert os.listdir(tmp_path) == []

    def test_missing_path_removes_partial_archive(self, temp_files, tmp_path):
        output = tmp_path / "partial"

        with pytest.raises(ArchiveCreationError, match="does not exist"):
            create_archive(
                [str(temp_files / "test_file1.txt"), str(temp_files / "missing.txt")],
                str(output),
                "tar.gz"
            )

        assert not (tmp_path / "partial.tar.gz").exists()

    def test_sources_are_not_modified(self, temp_files, tmp_path):
        source = temp_files / "test_file1.txt"
        before = (source.read_bytes(), source.stat().st_mtime)

        create_archive([str(source)], str(tmp_path / "archive"), "tar.gz")

        assert source.exists()
        assert (source.read_bytes(), source.stat().st_mtime) == before

    def test_invalid_format_raises_value_error(self, temp_files, tmp_path):
        with pytest.raises(ValueError, match="Invalid compression format"):
            create_archive([str(temp_files / "test_file1.txt")], str(tmp_path / "x"), "rar")

    def test_tar_contents_round_trip(self, temp_files, tmp_path):
        archive_path = create_archive([str(temp_files / "nested")], str(tmp_path / "nested"), "tar.xz")

        with tarfile.open(archive_path, "r:xz") as tar:
            member = tar.extractfile("nested/test_file3.txt")
            assert member.read() == b"Nested test content"

    def test_zip_single_file_arcname(self, temp_files, tmp_path):
        archive_path = create_archive([str(temp_files / "test_file1.txt")], str(tmp_path / "single"), "zip")

        with zipfile.ZipFile(archive_path) as zipf:
            assert zipf.namelist() == ["test_file1.txt"]


class TestArchiveHelpers:
    """Test filename and size helpers."""

    def test_generate_archive_filename_uses_utc_timestamp(self):
        now = datetime(2024, 1, 15, 9, 30, 5, tzinfo=timezone.utc)

        filename = generate_archive_filename("vault", "tar.gz", now)

        assert filename == "vault-20240115_093005.tar.gz"

    def test_generate_archive_filename_sanitizes_job_name(self):
        now = datetime(2024, 1, 15, tzinfo=timezone.utc)

        filename = generate_archive_filename("my job/prod", "zip", now)

        assert filename.startswith("my_job_prod-")
        assert filename.endswith(".zip")

    def test_same_second_names_collide(self):
        """Two runs within the same second produce the same name (accepted limitation)."""
        first = datetime(2024, 1, 15, 9, 30, 5, 100, tzinfo=timezone.utc)
        second = datetime(2024, 1, 15, 9, 30, 5, 900000, tzinfo=timezone.utc)

        assert generate_archive_filename("vault", "tar", first) == generate_archive_filename("vault", "tar", second)

    @pytest.mark.parametrize("filename,expected", [
        ("backup-20240115_093005.tar.gz", "backup-20240115_093005"),
        ("backup.tar.bz2", "backup"),
        ("backup.tar.xz", "backup"),
        ("backup.tar", "backup"),
        ("backup.zip", "backup"),
        ("backup.bin", "backup"),
    ])
    def test_strip_archive_extension(self, filename, expected):
        assert strip_archive_extension(filename) == expected

    def test_get_archive_size(self, sample_archive):
        assert get_archive_size(str(sample_archive)) == sample_archive.stat().st_size

    def test_get_archive_size_missing_file(self, tmp_path):
        with pytest.raises(ArchiveCreationError, match="not found"):
            get_archive_size(str(tmp_path / "nope.tar.gz"))

    def test_list_archive_members_unreadable(self, tmp_path):
        bogus = tmp_path / "bogus.tar.gz"
        bogus.write_bytes(b"not an archive")

        with pytest.raises(ArchiveCreationError):
            list_archive_members(str(bogus))
