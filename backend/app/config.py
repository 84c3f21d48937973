"""
Service configuration.

Values come from environment variables; `config` is the process-wide instance.
"""

import os
from pathlib import Path
from typing import Optional

STEAM_PUBLISHED_FILE_DETAILS_URL = (
    "https://api.steampowered.com/ISteamRemoteStorage/GetPublishedFileDetails/v1/"
)


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


class Config:
    def __init__(self) -> None:
        # Server
        self.host = os.getenv("HOST", "127.0.0.1")
        self.port = int(os.getenv("PORT", "9002"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # Storage
        self.data_dir = Path(os.getenv("ADDONMGR_DATA_DIR", "data"))
        self.log_dir = Path(os.getenv("ADDONMGR_LOG_DIR", "logs"))

        # Game layout
        self.game_subdir = os.getenv("ADDONMGR_GAME_SUBDIR", "left4dead2")

        # Steam Web API (no timeout unless explicitly configured)
        self.steam_api_url = os.getenv("STEAM_API_URL", STEAM_PUBLISHED_FILE_DETAILS_URL)
        self.steam_api_timeout = _optional_float(os.getenv("STEAM_API_TIMEOUT"))

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"


config = Config()
