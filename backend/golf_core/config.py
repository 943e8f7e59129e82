from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_SITE_PASSWORD = "golf2025"
DEFAULT_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class Config:
    """Runtime settings, normally read from the environment by ``load_config``."""

    data_dir: Path
    api_url: str = DEFAULT_API_URL
    github_token: Optional[str] = None
    site_password: str = DEFAULT_SITE_PASSWORD
    http_timeout: float = 10.0


def load_config() -> Config:
    data_dir = os.getenv("GOLF_DATA_DIR")
    timeout_raw = os.getenv("GOLF_HTTP_TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if timeout_raw else 10.0
    except ValueError:
        timeout = 10.0

    return Config(
        data_dir=Path(data_dir) if data_dir else Path(__file__).parent.parent / "data",
        api_url=os.getenv("GITHUB_API_URL", DEFAULT_API_URL),
        github_token=os.getenv("GITHUB_TOKEN") or None,
        site_password=os.getenv("GOLF_SITE_PASSWORD") or DEFAULT_SITE_PASSWORD,
        http_timeout=timeout,
    )
