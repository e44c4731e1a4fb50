from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from transit_mcp.infrastructure.fetcher import DEFAULT_TIMEOUT


@dataclass(frozen=True)
class Settings:
    """Process configuration, read once from the environment."""

    access_token: str = ""
    challenge_token: str = ""
    cache_dir: Path = Path.home() / ".cache" / "transit_mcp"
    data_dir: Path = Path.home() / ".local" / "share" / "transit_mcp"
    locale: str = "ja"
    http_timeout: float = DEFAULT_TIMEOUT

    @property
    def challenge_key(self) -> str:
        """Consumer key for api-challenge.odpt.org (falls back to the access token)."""
        return self.challenge_token or self.access_token

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "LineData"

    @property
    def kv_path(self) -> Path:
        return self.data_dir / "timetables.json"

    @classmethod
    def from_env(cls) -> Settings:
        defaults = cls()
        return cls(
            access_token=os.environ.get("ODPT_ACCESS_TOKEN", ""),
            challenge_token=os.environ.get("ODPT_CHALLENGE_TOKEN", ""),
            cache_dir=Path(os.environ.get("TRANSIT_CACHE_DIR", str(defaults.cache_dir))).expanduser(),
            data_dir=Path(os.environ.get("TRANSIT_DATA_DIR", str(defaults.data_dir))).expanduser(),
            locale=os.environ.get("TRANSIT_LOCALE", "ja").strip() or "ja",
            http_timeout=float(os.environ.get("HTTP_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )
