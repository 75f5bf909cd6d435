"""Configuration constants for the Points Bank engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///pointsbank.db"
DEFAULT_TIMEZONE = "Asia/Shanghai"
DEFAULT_DAILY_EXCHANGE_CAP = 3
DEFAULT_EXCHANGE_PRICE = 10
DEFAULT_MAX_RETRIES = 5


def _int_setting(env: Mapping[str, str], key: str, default: int, *, minimum: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}.") from exc
    if value < minimum:
        raise ValueError(f"{key} must be at least {minimum}, got {value}.")
    return value


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime settings, usually read from the environment."""

    database_url: str = DEFAULT_DATABASE_URL
    timezone: str = DEFAULT_TIMEZONE
    daily_exchange_cap: int = DEFAULT_DAILY_EXCHANGE_CAP
    exchange_price: int = DEFAULT_EXCHANGE_PRICE
    max_retries: int = DEFAULT_MAX_RETRIES
    log_path: Optional[Path] = None

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {self.timezone!r}.") from exc
        if self.daily_exchange_cap < 0:
            raise ValueError("daily_exchange_cap cannot be negative.")
        if self.exchange_price <= 0:
            raise ValueError("exchange_price must be positive.")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1.")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        source = os.environ if env is None else env
        log_path = (source.get("POINTSBANK_LOG_PATH") or "").strip()
        return cls(
            database_url=(source.get("POINTSBANK_DATABASE_URL") or DEFAULT_DATABASE_URL).strip(),
            timezone=(source.get("POINTSBANK_TIMEZONE") or DEFAULT_TIMEZONE).strip(),
            daily_exchange_cap=_int_setting(
                source, "POINTSBANK_DAILY_EXCHANGE_CAP", DEFAULT_DAILY_EXCHANGE_CAP, minimum=0
            ),
            exchange_price=_int_setting(source, "POINTSBANK_EXCHANGE_PRICE", DEFAULT_EXCHANGE_PRICE, minimum=1),
            max_retries=_int_setting(source, "POINTSBANK_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=1),
            log_path=Path(log_path) if log_path else None,
        )


SETTINGS = Settings.from_env()

__all__ = [
    "DEFAULT_DATABASE_URL",
    "DEFAULT_TIMEZONE",
    "DEFAULT_DAILY_EXCHANGE_CAP",
    "DEFAULT_EXCHANGE_PRICE",
    "DEFAULT_MAX_RETRIES",
    "SETTINGS",
    "Settings",
]
