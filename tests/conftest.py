"""Shared test fixtures for cloudfont."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from cloudfont.models import SecureCacheConfig, UnregisterAllResult

TTF_BYTES = b"\x00\x01\x00\x00" + b"\x00" * 60
OTF_BYTES = b"OTTO" + b"\x00" * 60


class FakeBridge:
    """In-memory registration capability.

    ``refuse`` makes register/unregister return False; ``explode``
    makes them raise. ``stuck`` paths survive ``unregister_all``.
    """

    def __init__(self) -> None:
        self.registered: list[Path] = []
        self.refuse = False
        self.explode: Optional[Exception] = None
        self.stuck: set[Path] = set()
        self.unregister_all_calls = 0

    def register(self, path: Path) -> bool:
        if self.explode is not None:
            raise self.explode
        if self.refuse:
            return False
        self.registered.append(Path(path))
        return True

    def unregister(self, path: Path) -> bool:
        if self.explode is not None:
            raise self.explode
        if self.refuse or Path(path) not in self.registered:
            return False
        self.registered.remove(Path(path))
        return True

    def unregister_all(self) -> UnregisterAllResult:
        self.unregister_all_calls += 1
        if self.explode is not None:
            raise self.explode
        result = UnregisterAllResult()
        for path in list(self.registered):
            if path in self.stuck:
                result.failed += 1
                continue
            self.registered.remove(path)
            result.success += 1
        return result


@pytest.fixture
def agent_home(tmp_path: Path) -> Path:
    """Provide a temporary agent home directory for testing."""
    home = tmp_path / ".cloud-font-agent"
    home.mkdir()
    return home


@pytest.fixture
def quiet_cache_config() -> SecureCacheConfig:
    """Everything on except the background access monitor."""
    return SecureCacheConfig(enable_file_watcher=False)


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def secure_cache(agent_home: Path, quiet_cache_config: SecureCacheConfig):
    from cloudfont.secure_cache import SecureCache

    cache = SecureCache(agent_home, quiet_cache_config, home=agent_home, session_salt="test-salt")
    cache.initialize_secure_directory()
    yield cache
    cache.stop_monitor()


@pytest.fixture
def manager(bridge: FakeBridge, secure_cache, agent_home: Path):
    from cloudfont.font_manager import FontLifecycleManager

    return FontLifecycleManager(bridge, secure_cache, home=agent_home)


@pytest.fixture
def cached_font(secure_cache):
    """Write a TTF into the cache and return a factory ``(font_id) -> Path``."""

    def _make(font_id: str, data: bytes = TTF_BYTES) -> Path:
        path = secure_cache.get_secure_file_path(font_id, ".ttf")
        return secure_cache.write_font_bytes(path, data)

    return _make


@pytest.fixture
def catalog_dir(tmp_path: Path) -> Path:
    """A local provider tree with three fonts across two providers."""
    root = tmp_path / "catalog"
    acme = root / "acme"
    acme.mkdir(parents=True)
    (acme / "info.json").write_text('{"displayName": "Acme Type"}')
    (acme / "AcmeSans-Bold.otf").write_bytes(OTF_BYTES)
    (acme / "AcmeSans-Regular.ttf").write_bytes(TTF_BYTES)
    (acme / "README.txt").write_text("not a font")

    zeta = root / "zeta"
    zeta.mkdir()
    (zeta / "ZetaSerif.ttf").write_bytes(TTF_BYTES)

    (root / ".hidden").mkdir()
    (root / ".hidden" / "Secret.ttf").write_bytes(TTF_BYTES)
    return root
