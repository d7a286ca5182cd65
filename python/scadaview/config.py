"""Settings loaded from the environment, optionally seeded from a ``.env`` file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_API_URL = "https://api.anywherescada.com/graphql"
DEFAULT_WS_URL = "wss://api.anywherescada.com/graphql"


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    api_url: str
    ws_url: str
    tick_interval: float  # seconds between realtime window re-resolutions
    request_timeout: float

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "ANYWHERESCADA_API_KEY is not set. Add it to your .env file.")
        return self.api_key


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def get_settings(env_file: str | None = None) -> Settings:
    # Real environment variables win over the env file.
    env_file = env_file or os.getenv("SCADAVIEW_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        api_key=os.getenv("ANYWHERESCADA_API_KEY") or None,
        api_url=os.getenv("ANYWHERESCADA_API_URL", DEFAULT_API_URL),
        ws_url=os.getenv("ANYWHERESCADA_WS_URL", DEFAULT_WS_URL),
        tick_interval=_float_env("SCADAVIEW_TICK_INTERVAL", 1.0),
        request_timeout=_float_env("SCADAVIEW_REQUEST_TIMEOUT", 30.0),
    )
