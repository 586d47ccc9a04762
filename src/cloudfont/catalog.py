"""
Purchased-font catalog.

Local mode scans a provider tree:

    <catalog_dir>/
    ├── acme/
    │   ├── info.json          # {"displayName": "Acme Type"}
    │   ├── AcmeSans-Regular.otf
    │   └── AcmeSans-Bold.otf
    └── ...

Remote mode asks ``<catalog_url>/fonts`` for a JSON list.
Either way the result is an ordered list of CatalogFont.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import requests
from pydantic import ValidationError

from .config import AgentConfig
from .downloader import SUPPORTED_EXTENSIONS
from .errors import CatalogError
from .models import CatalogFont

logger = logging.getLogger("cloudfont.catalog")

PROVIDER_INFO = "info.json"
CATALOG_TIMEOUT = 30


class CatalogClient:
    """Lists the fonts the user is licensed to sync.

    Args:
        config: Agent configuration (mode, directory, API URL).
        session: Optional ``requests.Session`` for remote mode.
    """

    def __init__(
        self,
        config: AgentConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._session = session

    def fetch_purchased_fonts(self) -> list[CatalogFont]:
        """Return the catalog in display order.

        Raises:
            CatalogError: If the catalog cannot be read.
        """
        if self._config.catalog_mode == "remote":
            return self._fetch_remote()
        return self._fetch_local()

    def _fetch_local(self) -> list[CatalogFont]:
        root = self._config.catalog_dir
        if root is None:
            raise CatalogError("No local catalog directory configured")
        root = Path(root).expanduser()
        if not root.is_dir():
            raise CatalogError(f"Catalog directory not found: {root}")

        fonts: list[CatalogFont] = []
        for provider_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            if provider_dir.name.startswith("."):
                continue
            provider_name = self._provider_display_name(provider_dir)
            for font_file in sorted(provider_dir.iterdir()):
                if font_file.suffix.lower() not in SUPPORTED_EXTENSIONS:
                    continue
                fonts.append(CatalogFont(
                    id=f"{provider_dir.name}/{font_file.name}",
                    display_name=font_file.stem,
                    download_url=font_file.resolve().as_uri(),
                    file_size=font_file.stat().st_size,
                    provider=provider_dir.name,
                    provider_display_name=provider_name,
                ))

        logger.info("Found %d font(s) in local catalog %s", len(fonts), root)
        return fonts

    def _provider_display_name(self, provider_dir: Path) -> str:
        info_file = provider_dir / PROVIDER_INFO
        if info_file.exists():
            try:
                info = json.loads(info_file.read_text(encoding="utf-8"))
                return info.get("displayName") or provider_dir.name
            except (json.JSONDecodeError, OSError, AttributeError) as exc:
                logger.warning("Ignoring unreadable %s: %s", info_file, exc)
        return provider_dir.name

    def _fetch_remote(self) -> list[CatalogFont]:
        url = self._config.catalog_url.rstrip("/") + "/fonts"
        session = self._session or requests.Session()
        try:
            resp = session.get(url, timeout=CATALOG_TIMEOUT)
        except requests.RequestException as exc:
            raise CatalogError(f"Catalog request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise CatalogError(f"Catalog {url}: {resp.status_code} {resp.text}")

        try:
            items = resp.json()
            return [CatalogFont.model_validate(item) for item in items]
        except (ValueError, TypeError, ValidationError) as exc:
            raise CatalogError(f"Malformed catalog response from {url}: {exc}") from exc
