from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from infrastructure.http.relay import DEFAULT_PROBE_URL


@dataclass(frozen=True)
class Settings:
    db_path: str = "bets.db"
    discord_token: Optional[str] = None
    telegram_token: Optional[str] = None
    owner_id: Optional[str] = None
    log_level: str = "INFO"
    relay_probe_url: str = DEFAULT_PROBE_URL
    sgd666_secret: str = ""
    one789_secret: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            db_path=os.environ.get("DB_PATH", "bets.db"),
            discord_token=os.environ.get("DISCORD_TOKEN"),
            telegram_token=os.environ.get("TELEGRAM_TOKEN"),
            owner_id=os.environ.get("OWNER_ID"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            relay_probe_url=os.environ.get("RELAY_PROBE_URL", DEFAULT_PROBE_URL),
            sgd666_secret=os.environ.get("SGD666_SECRET", ""),
            one789_secret=os.environ.get("ONE789_SECRET", ""),
        )

    def require(self, name: str) -> str:
        value = getattr(self, name)
        if not value:
            raise RuntimeError(f"{name.upper()} environment variable is not set.")
        return value
