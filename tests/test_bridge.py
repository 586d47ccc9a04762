"""Tests for the fontconfig registration bridge."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cloudfont.bridge import FontBridge, FontconfigBridge, load_bridge
from cloudfont.config import AgentConfig
from cloudfont.errors import CapabilityUnavailableError


@pytest.fixture
def font_file(tmp_path: Path) -> Path:
    path = tmp_path / "cache" / "3f9a0c21d4e7b618.tmp"
    path.parent.mkdir()
    path.write_bytes(b"\x00\x01\x00\x00")
    return path


@pytest.fixture
def fc_bridge(tmp_path: Path) -> FontconfigBridge:
    bridge = FontconfigBridge(tmp_path / "fonts")
    bridge.initialize()
    return bridge


class TestFontconfigBridge:
    """Tests for publishing fonts through a session directory."""

    def test_satisfies_protocol(self, fc_bridge):
        assert isinstance(fc_bridge, FontBridge)

    def test_session_dir_is_visible(self, fc_bridge):
        """fontconfig skips dot directories."""
        assert not fc_bridge.session_dir.name.startswith(".")
        assert fc_bridge.session_dir.is_dir()

    def test_register_links_font(self, fc_bridge, font_file):
        assert fc_bridge.register(font_file) is True
        link = fc_bridge.session_dir / font_file.name
        assert link.is_symlink()
        assert link.resolve() == font_file.resolve()

    def test_unregister_removes_link(self, fc_bridge, font_file):
        fc_bridge.register(font_file)
        assert fc_bridge.unregister(font_file) is True
        assert fc_bridge.registered_paths() == []
        assert font_file.exists()

    def test_unregister_unknown(self, fc_bridge, font_file):
        assert fc_bridge.unregister(font_file) is False

    def test_unregister_all_sweeps_session(self, fc_bridge, font_file, tmp_path: Path):
        other = tmp_path / "cache" / "other.tmp"
        other.write_bytes(b"OTTO")
        fc_bridge.register(font_file)
        fc_bridge.register(other)

        result = fc_bridge.unregister_all()

        assert result.success == 2
        assert result.failed == 0
        assert fc_bridge.registered_paths() == []

    def test_unregister_all_without_session_dir(self, tmp_path: Path):
        bridge = FontconfigBridge(tmp_path / "never-created")
        result = bridge.unregister_all()
        assert (result.success, result.failed) == (0, 0)

    def test_failed_refresh_rolls_back(self, tmp_path: Path, font_file):
        bridge = FontconfigBridge(tmp_path / "fonts", fc_cache="/usr/bin/fc-cache")
        bridge.initialize()
        failed = MagicMock(returncode=1, stderr="boom")

        with patch("cloudfont.bridge.subprocess.run", return_value=failed) as run:
            assert bridge.register(font_file) is False

        run.assert_called_once()
        assert run.call_args.args[0] == ["/usr/bin/fc-cache", "-f", str(tmp_path / "fonts")]
        assert bridge.registered_paths() == []

    def test_refresh_timeout(self, tmp_path: Path, font_file):
        bridge = FontconfigBridge(tmp_path / "fonts", fc_cache="/usr/bin/fc-cache")
        bridge.initialize()
        with patch(
            "cloudfont.bridge.subprocess.run",
            side_effect=subprocess.TimeoutExpired("fc-cache", 30),
        ):
            assert bridge.register(font_file) is False


class TestLoadBridge:
    """Tests for loading the capability at startup."""

    def test_missing_fc_cache(self, tmp_path: Path):
        with patch("cloudfont.bridge.shutil.which", return_value=None):
            with pytest.raises(CapabilityUnavailableError, match="fc-cache"):
                load_bridge(AgentConfig(fonts_dir=tmp_path / "fonts"))

    def test_uses_configured_fonts_dir(self, tmp_path: Path):
        config = AgentConfig(fonts_dir=tmp_path / "fonts", session_name="test-session")
        with patch("cloudfont.bridge.shutil.which", return_value="/usr/bin/fc-cache"):
            bridge = load_bridge(config)

        assert bridge.session_dir == tmp_path / "fonts" / "test-session"
        assert bridge.session_dir.is_dir()

    def test_uncreatable_session_dir(self, tmp_path: Path):
        blocker = tmp_path / "fonts"
        blocker.write_text("not a dir")
        with patch("cloudfont.bridge.shutil.which", return_value="/usr/bin/fc-cache"):
            with pytest.raises(CapabilityUnavailableError, match="session directory"):
                load_bridge(AgentConfig(fonts_dir=blocker))
