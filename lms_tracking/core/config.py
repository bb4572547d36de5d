"""Service settings, read once from the environment at import time.

Every value is validated up front so a bad deployment fails at start-up
instead of on the first request that needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
RollupMode = Literal["inline", "detached", "queued"]

_APP_ENVS = ("dev", "test", "prod")
_LOG_LEVELS = ("debug", "info", "warning", "error")
_ROLLUP_MODES = ("inline", "detached", "queued")


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _choice(name: str, default: str, allowed: tuple[str, ...]) -> str:
    value = _env(name, default).lower()
    if value not in allowed:
        raise ValueError(f"{name} must be {'|'.join(allowed)} (got {value!r})")
    return value


def _optional_url(name: str) -> str | None:
    return _env(name) or None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    rollup_mode: RollupMode = "detached"
    store_timeout_seconds: float = 5.0
    identity_service_url: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    port_raw = _env("PORT", "8000")
    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    timeout_raw = _env("STORE_TIMEOUT_SECONDS", "5")
    try:
        store_timeout = float(timeout_raw)
    except ValueError:
        raise ValueError(
            f"STORE_TIMEOUT_SECONDS must be a number (got {timeout_raw!r})"
        ) from None
    if store_timeout <= 0:
        raise ValueError(
            f"STORE_TIMEOUT_SECONDS must be positive (got {timeout_raw!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=_choice("APP_ENV", "dev", _APP_ENVS),
        log_level=_choice("LOG_LEVEL", "info", _LOG_LEVELS),
        log_json=_env("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=_optional_url("DATABASE_URL"),
        redis_url=_optional_url("REDIS_URL"),
        rollup_mode=_choice("ROLLUP_MODE", "detached", _ROLLUP_MODES),
        store_timeout_seconds=store_timeout,
        identity_service_url=_optional_url("IDENTITY_SERVICE_URL"),
    )


SETTINGS = load_settings()
