"""Tests for the cloudfont CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from cloudfont.audit import audit_event
from cloudfont.cli import main
from cloudfont.config import AgentConfig, save_config
from cloudfont.downloader import Downloader
from cloudfont.errors import CapabilityUnavailableError
from cloudfont.models import SecureCacheConfig
from cloudfont.secure_cache import SecureCache

from conftest import FakeBridge


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_home(agent_home: Path) -> Path:
    """Agent home whose config keeps the access monitor off."""
    save_config(agent_home, AgentConfig(cache=SecureCacheConfig(enable_file_watcher=False)))
    return agent_home


@pytest.fixture(autouse=True)
def _restore_root_handlers():
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in [h for h in root.handlers if h not in before]:
        root.removeHandler(handler)
        handler.close()


class TestSession:
    """Tests for ``cloudfont session``."""

    def test_session_syncs_and_cleans_up(self, runner, cli_home: Path, catalog_dir: Path):
        bridge = FakeBridge()
        with patch("cloudfont.runtime.load_bridge", return_value=bridge):
            result = runner.invoke(
                main,
                ["session", "--home", str(cli_home), "--catalog-dir", str(catalog_dir), "--no-hold"],
            )

        assert result.exit_code == 0, result.output
        assert "Synced" in result.output
        assert "Session ended" in result.output
        assert bridge.registered == []
        assert SecureCache(cli_home).list_cached_files() == []

    def test_session_without_capability(self, runner, cli_home: Path, catalog_dir: Path):
        with patch(
            "cloudfont.runtime.load_bridge",
            side_effect=CapabilityUnavailableError("fc-cache not found"),
        ):
            result = runner.invoke(
                main,
                ["session", "--home", str(cli_home), "--catalog-dir", str(catalog_dir), "--no-hold"],
            )

        assert result.exit_code == 1
        assert "Startup failed" in result.output

    def test_session_missing_catalog(self, runner, cli_home: Path, tmp_path: Path):
        with patch("cloudfont.runtime.load_bridge", return_value=FakeBridge()):
            result = runner.invoke(
                main,
                ["session", "--home", str(cli_home), "--catalog-dir", str(tmp_path / "nope"), "--no-hold"],
            )

        assert result.exit_code == 1
        assert "Catalog unavailable" in result.output

    def test_interrupted_sync_still_cleans_up(self, runner, cli_home: Path, catalog_dir: Path):
        """Ctrl+C in the middle of a --no-hold sync withdraws what was registered."""
        bridge = FakeBridge()
        real_fetch = Downloader.fetch
        calls = []

        def interrupt_second(self, url, timeout_ms):
            calls.append(url)
            if len(calls) == 2:
                raise KeyboardInterrupt
            return real_fetch(self, url, timeout_ms)

        with patch("cloudfont.runtime.load_bridge", return_value=bridge), patch.object(
            Downloader, "fetch", interrupt_second
        ):
            result = runner.invoke(
                main,
                ["session", "--home", str(cli_home), "--catalog-dir", str(catalog_dir), "--no-hold"],
            )

        assert result.exit_code != 0
        assert len(calls) == 2
        assert bridge.registered == []
        assert SecureCache(cli_home).list_cached_files() == []


class TestCatalog:
    """Tests for ``cloudfont catalog``."""

    def test_lists_fonts(self, runner, cli_home: Path, catalog_dir: Path):
        result = runner.invoke(
            main, ["catalog", "--home", str(cli_home), "--catalog-dir", str(catalog_dir)]
        )
        assert result.exit_code == 0, result.output
        assert "AcmeSans-Bold" in result.output
        assert "Acme Type" in result.output

    def test_empty_catalog(self, runner, cli_home: Path, tmp_path: Path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = runner.invoke(main, ["catalog", "--home", str(cli_home), "--catalog-dir", str(empty)])
        assert result.exit_code == 0
        assert "No purchased fonts" in result.output


class TestCache:
    """Tests for ``cloudfont cache``."""

    def test_status(self, runner, cli_home: Path):
        result = runner.invoke(main, ["cache", "status", "--home", str(cli_home)])
        assert result.exit_code == 0, result.output
        assert "Secure Cache" in result.output
        assert "Cached files" in result.output

    def test_purge_without_capability(self, runner, cli_home: Path):
        cache = SecureCache(cli_home, SecureCacheConfig(enable_file_watcher=False))
        cache.initialize_secure_directory()
        leftover = cache.write_font_bytes(cache.get_secure_file_path("old", ".ttf"), b"x")

        with patch(
            "cloudfont.cli.cache.load_bridge",
            side_effect=CapabilityUnavailableError("fc-cache not found"),
        ):
            result = runner.invoke(main, ["cache", "purge", "--home", str(cli_home)])

        assert result.exit_code == 0, result.output
        assert "Cache wiped" in result.output
        assert not leftover.exists()

    def test_purge_withdraws_registrations(self, runner, cli_home: Path):
        bridge = FakeBridge()
        bridge.registered.append(Path("/tmp/leftover.tmp"))
        with patch("cloudfont.cli.cache.load_bridge", return_value=bridge):
            result = runner.invoke(main, ["cache", "purge", "--home", str(cli_home)])

        assert result.exit_code == 0, result.output
        assert bridge.registered == []


class TestAudit:
    """Tests for ``cloudfont audit``."""

    def test_shows_entries(self, runner, cli_home: Path):
        audit_event(cli_home, "FONT_REGISTERED", "Registered Acme Sans")
        result = runner.invoke(main, ["audit", "--home", str(cli_home)])
        assert result.exit_code == 0
        assert "FONT_REGISTERED" in result.output

    def test_empty(self, runner, cli_home: Path):
        result = runner.invoke(main, ["audit", "--home", str(cli_home)])
        assert "No audit entries" in result.output


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output
