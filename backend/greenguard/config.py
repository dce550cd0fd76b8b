from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

_TRUE = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in _TRUE


def env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return float(val.strip())
    except ValueError:
        return default


def env_str(*names: str, default: Optional[str] = None) -> Optional[str]:
    """First non-empty value among `names`."""
    for name in names:
        val = os.getenv(name)
        if val is not None and val.strip():
            return val.strip()
    return default


@dataclass
class Settings:
    database_url: str = "sqlite:///greenguard.db"

    openweather_api_key: Optional[str] = None
    electricitymaps_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model_id: str = "gemini-1.5-flash"

    # Per-source budgets (seconds)
    weather_timeout_s: float = 4.0
    grid_timeout_s: float = 4.0
    ai_timeout_s: float = 12.0

    ai_enabled: bool = True
    offline_mode: bool = False
    demo_mode: bool = False

    # Readings averaged into the historical baseline
    history_window: int = 10

    allowed_origins: str = "*"
    log_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        demo_mode = env_flag("DEMO_MODE", False)
        offline_mode = env_flag("OFFLINE_MODE", False) or env_flag("DEMO_OFFLINE", False)
        return cls(
            database_url=env_str("DATABASE_URL", default=cls.database_url),
            openweather_api_key=env_str("OPENWEATHER_API_KEY"),
            electricitymaps_api_key=env_str("ELECTRICITYMAPS_API_KEY"),
            gemini_api_key=env_str("GEMINI_API_KEY", "GOOGLE_API_KEY"),
            gemini_model_id=env_str("GEMINI_MODEL_ID", default=cls.gemini_model_id),
            weather_timeout_s=env_float("WEATHER_TIMEOUT_S", cls.weather_timeout_s),
            grid_timeout_s=env_float("GRID_TIMEOUT_S", cls.grid_timeout_s),
            ai_timeout_s=env_float("AI_TIMEOUT_S", cls.ai_timeout_s),
            ai_enabled=env_flag("AI_ENABLED", not offline_mode),
            offline_mode=offline_mode,
            demo_mode=demo_mode,
            history_window=max(1, env_int("HISTORY_WINDOW", cls.history_window)),
            allowed_origins=env_str("ALLOWED_ORIGINS", default="*"),
            log_dir=env_str("LOG_DIR"),
            log_level=env_str("LOG_LEVEL", default="INFO").upper(),
        )
