"""Tests for manifest module."""

import pytest

from src.dlwatch.exceptions import ManifestError
from src.dlwatch.manifest import parse_manifest, read_manifest, write_manifest
from src.dlwatch.models import ManifestStatus


class TestParseManifest:
    """Tests for parse_manifest."""

    def test_skips_blank_and_comment_lines(self):
        text = "# batch 7\nx.txt\n\n  y.txt  \n#z.txt\n"
        assert parse_manifest(text) == ["x.txt", "y.txt"]

    def test_windows_line_endings(self):
        assert parse_manifest("a.txt\r\nb.txt\r\n") == ["a.txt", "b.txt"]


class TestWriteManifest:
    """Tests for write_manifest."""

    def test_writes_one_name_per_line(self, tmp_path):
        path = tmp_path / "batch" / "manifest.txt"

        manifest = write_manifest(["x.txt", "report*.pdf"], path)

        assert path.read_text(encoding="utf-8") == "x.txt\nreport*.pdf\n"
        assert manifest.names == ["x.txt", "report*.pdf"]
        assert manifest.directory == path.parent
        assert all(e.status == ManifestStatus.PENDING for e in manifest)

    def test_explicit_directory(self, tmp_path):
        manifest = write_manifest(["x.txt"], tmp_path / "m.txt", directory=tmp_path / "dl")
        assert manifest.directory == tmp_path / "dl"

    def test_rejects_multiline_entry(self, tmp_path):
        with pytest.raises(ValueError):
            write_manifest(["a.txt\nb.txt"], tmp_path / "m.txt")

    def test_rejects_empty_entry(self, tmp_path):
        with pytest.raises(ValueError):
            write_manifest(["   "], tmp_path / "m.txt")

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ManifestError):
            write_manifest(["a.txt"], blocker / "m.txt")


class TestReadManifest:
    """Tests for read_manifest."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "m.txt"
        write_manifest(["x.txt", "y.txt"], path)

        manifest = read_manifest(path)

        assert manifest.names == ["x.txt", "y.txt"]
        assert manifest.manifest_path == path
        assert len(manifest) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError):
            read_manifest(tmp_path / "missing.txt")

    def test_invalid_encoding(self, tmp_path):
        path = tmp_path / "m.txt"
        path.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(ManifestError):
            read_manifest(path)
