"""Tests for config module."""

import pytest
from pathlib import Path

from src.dlwatch.config import DownloadConfig


class TestDownloadConfig:
    """Tests for DownloadConfig class."""

    def test_default_values(self):
        config = DownloadConfig()
        assert config.timeout_ms == 30000
        assert config.stability_ms == 2000
        assert config.poll_interval_ms == 500
        assert config.stability_probe_interval_ms == 100
        assert config.verify_integrity is True
        assert config.force_polling is False
        assert config.download_dir is None
        assert config.download_dir_env == "DLWATCH_DOWNLOAD_DIR"

    def test_default_temp_suffixes(self):
        config = DownloadConfig()
        for suffix in (".crdownload", ".part", ".download", ".partial", ".tmp", ".temp"):
            assert suffix in config.temp_suffixes
        assert "~" in config.temp_prefixes

    def test_custom_values(self, tmp_path):
        config = DownloadConfig(
            timeout_ms=1000,
            stability_ms=300,
            download_dir=str(tmp_path),
        )
        assert config.timeout_ms == 1000
        assert config.stability_ms == 300
        assert config.download_dir == tmp_path

    def test_rejects_negative_timeout(self):
        with pytest.raises(ValueError):
            DownloadConfig(timeout_ms=-1)

    def test_rejects_zero_poll_interval(self):
        with pytest.raises(ValueError):
            DownloadConfig(poll_interval_ms=0)

    def test_copy_is_independent(self):
        config = DownloadConfig()
        pinned = config.copy()

        config.timeout_ms = 5
        config.temp_suffixes.append(".opdownload")

        assert pinned.timeout_ms == 30000
        assert ".opdownload" not in pinned.temp_suffixes


class TestConfigFromEnv:
    """Tests for DownloadConfig.from_env."""

    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DLWATCH_TIMEOUT_MS", "1234")
        monkeypatch.setenv("DLWATCH_STABILITY_MS", "250")
        monkeypatch.setenv("DLWATCH_POLL_INTERVAL_MS", "50")
        monkeypatch.setenv("DLWATCH_VERIFY_INTEGRITY", "false")
        monkeypatch.setenv("DLWATCH_FORCE_POLLING", "yes")
        monkeypatch.setenv("DLWATCH_DOWNLOAD_DIR", str(tmp_path))

        config = DownloadConfig.from_env()

        assert config.timeout_ms == 1234
        assert config.stability_ms == 250
        assert config.poll_interval_ms == 50
        assert config.verify_integrity is False
        assert config.force_polling is True
        assert config.download_dir == tmp_path

    def test_defaults_when_unset(self, monkeypatch):
        for name in ("TIMEOUT_MS", "STABILITY_MS", "POLL_INTERVAL_MS", "DOWNLOAD_DIR"):
            monkeypatch.delenv(f"DLWATCH_{name}", raising=False)

        config = DownloadConfig.from_env()

        assert config.timeout_ms == 30000
        assert config.download_dir is None

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("DLWATCH_TIMEOUT_MS", "soon")
        with pytest.raises(ValueError):
            DownloadConfig.from_env()

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("MYAPP_TIMEOUT_MS", "10")
        config = DownloadConfig.from_env(prefix="MYAPP_")
        assert config.timeout_ms == 10
        assert config.download_dir_env == "MYAPP_DOWNLOAD_DIR"
