"""Tests for directories module."""

import pytest
import sys
from pathlib import Path

from src.dlwatch import directories
from src.dlwatch.directories import (
    ensure_directory,
    get_default_download_directory,
    get_potential_download_directories,
    has_insufficient_disk_space,
    read_xdg_download_dir,
    resolve_download_directory,
)


@pytest.fixture
def fake_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_DOWNLOAD_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.delenv("DLWATCH_DOWNLOAD_DIR", raising=False)
    return home


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX directory layout")


class TestReadXdgDownloadDir:
    """Tests for read_xdg_download_dir."""

    def test_not_configured(self, fake_home):
        assert read_xdg_download_dir(fake_home) is None

    def test_user_dirs_file(self, fake_home):
        config = fake_home / ".config"
        config.mkdir()
        (config / "user-dirs.dirs").write_text(
            '# written by xdg-user-dirs-update\n'
            'XDG_DESKTOP_DIR="$HOME/Desktop"\n'
            'XDG_DOWNLOAD_DIR="$HOME/Telechargements"\n'
        )

        assert read_xdg_download_dir(fake_home) == fake_home / "Telechargements"

    def test_environment_variable_wins(self, fake_home, monkeypatch):
        monkeypatch.setenv("XDG_DOWNLOAD_DIR", "$HOME/dl")
        assert read_xdg_download_dir(fake_home) == fake_home / "dl"


class TestDefaultDownloadDirectory:
    """Tests for get_default_download_directory."""

    def test_env_override(self, fake_home, tmp_path, monkeypatch):
        override = tmp_path / "override"
        override.mkdir()
        monkeypatch.setenv("DLWATCH_DOWNLOAD_DIR", str(override))

        assert get_default_download_directory() == override

    def test_env_override_must_exist(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setenv("DLWATCH_DOWNLOAD_DIR", str(tmp_path / "missing"))
        monkeypatch.setattr(directories, "get_platform_download_directory", lambda: None)

        result = get_default_download_directory(cwd=tmp_path)

        assert result == tmp_path / "downloads"

    @posix_only
    def test_home_downloads(self, fake_home):
        (fake_home / "Downloads").mkdir()
        assert get_default_download_directory() == fake_home / "Downloads"

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="XDG lookup")
    def test_localized_candidate(self, fake_home):
        (fake_home / "Descargas").mkdir()
        assert get_default_download_directory() == fake_home / "Descargas"

    def test_fallback_created(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setattr(directories, "get_platform_download_directory", lambda: None)
        work = tmp_path / "work"
        work.mkdir()

        result = get_default_download_directory(cwd=work)

        assert result == work / "downloads"
        assert result.is_dir()


class TestResolveDownloadDirectory:
    """Tests for resolve_download_directory."""

    def test_explicit_wins(self, fake_home, tmp_path):
        assert resolve_download_directory(tmp_path) == tmp_path

    def test_explicit_string(self, fake_home, tmp_path):
        assert resolve_download_directory(str(tmp_path)) == tmp_path

    def test_explicit_is_not_created(self, fake_home, tmp_path):
        missing = tmp_path / "missing"
        assert resolve_download_directory(missing) == missing
        assert not missing.exists()


class TestPotentialDirectories:
    """Tests for get_potential_download_directories."""

    @posix_only
    def test_lists_existing_candidates(self, fake_home):
        (fake_home / "Downloads").mkdir()
        (fake_home / "Desktop").mkdir()

        result = get_potential_download_directories()

        assert result[0] == fake_home / "Downloads"
        assert fake_home / "Desktop" in result
        assert fake_home / "Descargas" not in result
        assert len(result) == len(set(result))


class TestFilesystemHelpers:
    """Tests for ensure_directory and has_insufficient_disk_space."""

    def test_ensure_directory_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b"
        assert ensure_directory(target) is True
        assert target.is_dir()

    def test_ensure_directory_existing(self, tmp_path):
        assert ensure_directory(tmp_path) is True

    def test_ensure_directory_blocked_by_file(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert ensure_directory(blocker / "sub") is False

    def test_disk_space(self, tmp_path):
        assert has_insufficient_disk_space(tmp_path, 1) is False
        assert has_insufficient_disk_space(tmp_path, 1 << 62) is True

    def test_disk_space_unknown(self, tmp_path):
        assert has_insufficient_disk_space(tmp_path / "missing", 1 << 62) is False
