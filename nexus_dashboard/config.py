"""Runtime settings, read from the environment (or a .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_API_BASE = "https://disease.sh/v3/covid-19"
DEFAULT_MODEL = "openai:gpt-4o"


def _default_identity_path() -> Path:
    return Path.home() / ".nexus_dashboard" / "identity.json"


@dataclass(frozen=True)
class Settings:
    api_base: str = DEFAULT_API_BASE
    refresh_seconds: float = 300.0
    history_days: int | str = 30
    fetch_timeout: float = 10.0
    stream_timeout: float = 60.0
    notification_ttl: float = 5.0
    notification_limit: int = 5
    table_limit: int = 100
    model: str = DEFAULT_MODEL
    identity_path: Path = field(default_factory=_default_identity_path)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from NEXUS_* variables, loading .env without overriding."""
        load_dotenv()

        history = os.getenv("NEXUS_HISTORY_DAYS", "30").strip()
        identity_path = os.getenv("NEXUS_IDENTITY_PATH")

        return cls(
            api_base=os.getenv("NEXUS_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            refresh_seconds=float(os.getenv("NEXUS_REFRESH_SECONDS", "300")),
            history_days=history if history == "all" else int(history),
            fetch_timeout=float(os.getenv("NEXUS_FETCH_TIMEOUT", "10")),
            stream_timeout=float(os.getenv("NEXUS_STREAM_TIMEOUT", "60")),
            notification_ttl=float(os.getenv("NEXUS_NOTIFICATION_TTL", "5")),
            notification_limit=int(os.getenv("NEXUS_NOTIFICATION_LIMIT", "5")),
            table_limit=int(os.getenv("NEXUS_TABLE_LIMIT", "100")),
            model=os.getenv("NEXUS_MODEL", DEFAULT_MODEL),
            identity_path=(
                Path(identity_path).expanduser()
                if identity_path
                else _default_identity_path()
            ),
        )
