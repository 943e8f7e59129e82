"""File-backed key/value mirror of the aggregate and the user settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DEFAULT_SITE_PASSWORD


logger = logging.getLogger(__name__)

DATA_KEY = "golfData"
SETTINGS_KEY = "golfSettings"


@dataclass
class UserSettings:
    site_password: str = DEFAULT_SITE_PASSWORD
    github_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"sitePassword": self.site_password, "githubToken": self.github_token}

    @classmethod
    def from_dict(cls, row: Any, default_password: str = DEFAULT_SITE_PASSWORD) -> "UserSettings":
        if not isinstance(row, dict):
            return cls(site_password=default_password)
        token = str(row.get("githubToken") or "").strip()
        return cls(
            site_password=str(row.get("sitePassword") or "").strip() or default_password,
            github_token=token or None,
        )


class LocalCache:
    """Whole-value JSON storage, one file per key, surviving restarts.

    ``read`` returns ``None`` when a key was never written (or its file can no
    longer be parsed); ``write`` always overwrites the complete value.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def read(self, key: str) -> Any:
        path = self.path_for(key)
        try:
            if not path.exists():
                return None
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable local cache %s: %s", path, exc)
            return None

    def write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(value, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise RuntimeError(f"Failed to write local cache {path}") from exc

    def read_data(self) -> Optional[Dict[str, Any]]:
        value = self.read(DATA_KEY)
        return value if isinstance(value, dict) else None

    def write_data(self, document: Dict[str, Any]) -> None:
        self.write(DATA_KEY, document)

    def read_settings(self, default_password: str = DEFAULT_SITE_PASSWORD) -> UserSettings:
        return UserSettings.from_dict(self.read(SETTINGS_KEY), default_password)

    def write_settings(self, settings: UserSettings) -> None:
        self.write(SETTINGS_KEY, settings.to_dict())
